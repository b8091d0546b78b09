"""
Error Taxonomy

Every failure surfaced to callers is one of these. The API layer maps each
class to its HTTP status and renders {"success": false, "message": ...}.
"""


class LedgerbookError(Exception):
    """Base class for bookkeeping errors"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerbookError):
    """Malformed or unbalanced input"""
    status_code = 400


class NotFoundError(LedgerbookError):
    """Missing tenant-scoped resource"""
    status_code = 404


class ConflictError(LedgerbookError):
    """Uniqueness or referential conflict, e.g. a duplicate voucher number"""
    status_code = 409


class InternalError(LedgerbookError):
    """Unexpected failure"""
    status_code = 500
