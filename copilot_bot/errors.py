from __future__ import annotations


class CopilotBotError(Exception):
    """Base class for errors raised inside the message pipeline."""


class ConfigUnavailable(CopilotBotError):
    """The allow-list or instruction lookup could not be answered."""


class GenerationError(CopilotBotError):
    """The language-model backend failed or returned nothing usable."""


class PersistenceError(CopilotBotError):
    """A memory store read or write failed."""


class DeliveryError(CopilotBotError):
    def __init__(self, message: str, *, chunks_sent: int = 0, chunks_total: int = 0) -> None:
        super().__init__(message)
        self.chunks_sent = chunks_sent
        self.chunks_total = chunks_total


class ChannelAlreadyAllowed(CopilotBotError):
    """Raised when an active allow-list entry already exists for a channel."""
