from .client import CopilotDiscordBot

__all__ = ["CopilotDiscordBot"]
