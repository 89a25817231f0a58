from .channels import MemoryChannelsMixin
from .conversations import MemoryConversationsMixin
from .instructions import MemoryInstructionsMixin
from .schema import MemorySchemaMixin

__all__ = [
    "MemoryChannelsMixin",
    "MemoryConversationsMixin",
    "MemoryInstructionsMixin",
    "MemorySchemaMixin",
]
