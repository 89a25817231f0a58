from .manager import MemoryManager, MemoryWriteResult, format_memory_for_context
from .models import ChannelAllowlistEntry, ConversationMemory, MessageEntry, RollingWindow, SystemInstructions
from .store import MemoryStore
from .summary import SummaryGenerator

__all__ = [
    "ChannelAllowlistEntry",
    "ConversationMemory",
    "MemoryManager",
    "MemoryStore",
    "MemoryWriteResult",
    "MessageEntry",
    "RollingWindow",
    "SummaryGenerator",
    "SystemInstructions",
    "format_memory_for_context",
]
