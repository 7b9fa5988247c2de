"""AdAudit - Ad Metric Engine.

Computes per-ad KPIs from a single insights row, and the run summary from
the processed rows. Every ratio is guarded so it yields 0, never NaN/inf.
"""

import math
from typing import Any, Dict, List

from app.models.import_models import AdMetrics, ImportSummary, ProcessedAdRow

PURCHASE_ACTION_TYPES = frozenset(
    {"purchase", "omni_purchase", "offline_conversion.purchase"}
)


def _safe_float(value: Any) -> float:
    """Safely convert a value to a finite float."""
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return result if math.isfinite(result) else 0.0


def _safe_int(value: Any) -> int:
    return int(_safe_float(value))


def _sum_actions(actions: Any, types: frozenset) -> float:
    if not isinstance(actions, list):
        return 0.0
    return sum(
        _safe_float(a.get("value"))
        for a in actions
        if isinstance(a, dict) and a.get("action_type") in types
    )


def _first_action_value(actions: Any) -> int:
    if isinstance(actions, list) and actions and isinstance(actions[0], dict):
        return _safe_int(actions[0].get("value"))
    return 0


def compute_ad_metrics(insights: Dict[str, Any]) -> AdMetrics:
    """Derive spend, conversion and video-funnel KPIs from one insights row."""
    insights = insights if isinstance(insights, dict) else {}
    spend = _safe_float(insights.get("spend"))
    impressions = _safe_int(insights.get("impressions"))

    purchases = int(_sum_actions(insights.get("actions"), PURCHASE_ACTION_TYPES))
    revenue = _sum_actions(insights.get("action_values"), PURCHASE_ACTION_TYPES)

    # No purchases: the whole spend is the cost of the (missing) acquisition
    cpa = spend / purchases if purchases > 0 else (spend if spend > 0 else 0.0)
    roas = revenue / spend if spend > 0 and revenue > 0 else 0.0

    # Video plays stand in for 3-second views
    video3s = _first_action_value(insights.get("video_play_actions"))
    video50 = _first_action_value(insights.get("video_p50_watched_actions"))

    hook_rate = video3s / impressions * 100 if impressions > 0 else 0.0
    hold_rate = video50 / video3s * 100 if video3s > 0 else 0.0

    return AdMetrics(
        spend=spend,
        impressions=impressions,
        purchases=purchases,
        purchase_revenue=revenue,
        cpa=cpa,
        roas=roas,
        hook_rate=hook_rate,
        hold_rate=hold_rate,
        video3s=video3s,
        video25=_first_action_value(insights.get("video_p25_watched_actions")),
        video50=video50,
        video75=_first_action_value(insights.get("video_p75_watched_actions")),
        video100=_first_action_value(insights.get("video_p100_watched_actions")),
    )


def metric_fields(metrics: AdMetrics) -> Dict[str, Any]:
    """Row fields for a metrics object, formatted the way the audit sheet shows them."""
    return {
        "spend": f"{metrics.spend:.2f}",
        "impressions": metrics.impressions,
        "cpa": f"{metrics.cpa:.2f}",
        "roas": f"{metrics.roas:.2f}",
        "purchase_revenue": f"{metrics.purchase_revenue:.2f}",
        "hook_rate": f"{metrics.hook_rate:.1f}",
        "hold_rate": f"{metrics.hold_rate:.1f}",
        "purchases": metrics.purchases,
        "video3s": metrics.video3s,
        "video25": metrics.video25,
        "video50": metrics.video50,
        "video75": metrics.video75,
        "video100": metrics.video100,
    }


def build_summary(rows: List[ProcessedAdRow]) -> ImportSummary:
    """Aggregate every row that went through processing.

    Rows whose asset extraction failed still carry real metrics and count;
    unprocessed placeholders are left out.
    """
    ok = [r for r in rows if not r.is_unprocessed]
    if not ok:
        return ImportSummary()

    count = len(ok)
    spends = [_safe_float(r.spend) for r in ok]
    return ImportSummary(
        total_spend=round(sum(spends), 2),
        total_purchase_revenue=round(sum(_safe_float(r.purchase_revenue) for r in ok), 2),
        total_impressions=sum(r.impressions for r in ok),
        total_purchases=sum(r.purchases for r in ok),
        average_cpa=round(sum(_safe_float(r.cpa) for r in ok) / count, 4),
        average_roas=round(sum(_safe_float(r.roas) for r in ok) / count, 4),
        average_hook_rate=round(sum(_safe_float(r.hook_rate) for r in ok) / count, 4),
        average_hold_rate=round(sum(_safe_float(r.hold_rate) for r in ok) / count, 4),
        highest_spend=max(spends),
        lowest_spend=min(spends),
    )
