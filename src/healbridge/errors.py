"""Domain exceptions raised by services and mapped to HTTP responses in app.py."""


class HealBridgeError(Exception):
    """Base class for errors that surface to API callers."""

    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ConflictError(HealBridgeError):
    status_code = 409
    default_detail = "Conflict"


class UnauthorizedError(HealBridgeError):
    status_code = 401
    default_detail = "Unauthorized"


class NotFoundError(HealBridgeError):
    status_code = 404
    default_detail = "Not found"


class ConversationBusyError(ConflictError):
    """Every optimistic append attempt lost to a concurrent turn."""

    default_detail = "Conversation is being updated by another request, please retry"


class TwoFactorNotImplementedError(HealBridgeError):
    status_code = 501
    default_detail = "Two-factor verification is not available yet"
