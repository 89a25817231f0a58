"""Discord copilot bot: channel messages in, language-model replies out, with bounded per-channel memory."""

__version__ = "0.1.0"
