"""Error taxonomy shared by the chat services."""


class ChatError(Exception):
    """Base class for errors raised by the chat services."""


class ValidationError(ChatError):
    """Malformed request. Raised before anything is persisted."""


class NotFoundError(ChatError):
    """A referenced thread, message or file does not exist."""


class CancellationError(ChatError):
    """A generation was pre-empted or explicitly stopped."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason


class GenerationError(ChatError):
    """The model invocation failed before or during streaming."""
