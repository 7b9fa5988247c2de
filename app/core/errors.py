"""AdAudit - Run-Level Import Errors.

Raised only when no ad list can be produced at all; per-ad failures
never surface here. ``status_code`` is the HTTP status the API returns.
"""


class AdImportError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class CollectionNotFoundError(AdImportError):
    status_code = 404


class BrandNotFoundError(AdImportError):
    status_code = 404


class AuditNotFoundError(AdImportError):
    status_code = 404


class IntegrationNotConfiguredError(AdImportError):
    status_code = 400


class AdAccountNotConfiguredError(AdImportError):
    status_code = 400


class InvalidRequestError(AdImportError):
    status_code = 400


class ResultPersistenceError(AdImportError):
    status_code = 500
