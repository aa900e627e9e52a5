from typing import Optional, List


# -------------------------------
# BASE ERROR
# -------------------------------

class FinanceError(Exception):
    status_code = 500
    title = "Error"

    def __init__(self, message: str = "", details: Optional[List[str]] = None):
        super().__init__(message or self.title)
        self.message = message or self.title
        self.details = details or []


# -------------------------------
# CALLER ERRORS
# -------------------------------

class ValidationError(FinanceError):
    status_code = 400
    title = "Validation failed"


class UnauthorizedError(FinanceError):
    status_code = 401
    title = "Unauthorized access"


class NotFoundError(FinanceError):
    status_code = 404
    title = "Resource not found"


class ConflictError(FinanceError):
    status_code = 409
    title = "Resource conflict"


# -------------------------------
# STORAGE ERRORS
# -------------------------------

class StorageError(FinanceError):
    """Disk I/O failed for one collection file.

    Carries the collection id and the underlying exception so callers can log
    both. Callers must not assume any part of the operation succeeded.
    """

    status_code = 500
    title = "Storage failure"

    def __init__(self, file_id: str, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message or f"Storage failure on {file_id}")
        self.file_id = file_id
        self.cause = cause


class StorageReadError(StorageError):
    title = "Corrupt collection file"


class LockTimeoutError(StorageError):
    status_code = 503
    title = "Collection is busy"
