"""
Error taxonomy shared by the adapters, the session core and the HTTP layer.

Every failure that crosses an operation boundary (sign-in, save, fetch,
generate) is one of these, so callers can turn it into a user-visible notice.
"""


class ChatIQError(Exception):
    """Base class for all user-reportable failures."""

    status_code = 500
    default_message = "An unexpected error occurred."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthFailure(ChatIQError):
    """Identity operation rejected (sign-in, token verification, sign-out)."""

    status_code = 401
    default_message = "Authentication failed."


class StorageFailure(ChatIQError):
    """Conversation store read/write/delete rejected."""

    status_code = 502
    default_message = "Could not reach chat history storage."


class ApiFailure(ChatIQError):
    """Model call failed, or was rejected/blocked by content policy."""

    status_code = 502
    default_message = "The model endpoint did not return a response."


class ConfigurationFailure(ChatIQError):
    """Missing credentials or config. Fatal: interactive operations stay disabled."""

    status_code = 503
    default_message = "Application failed to initialize. Please refresh."
