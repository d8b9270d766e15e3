from artisan_buddy.memory.events import EventEmitter
from artisan_buddy.memory.pruning import PruneResult, prune_memory
from artisan_buddy.memory.response_cache import KeyValueCache
from artisan_buddy.memory.session_manager import SessionManager
from artisan_buddy.memory.store import MemoryStore

__all__ = [
    "EventEmitter",
    "KeyValueCache",
    "MemoryStore",
    "PruneResult",
    "SessionManager",
    "prune_memory",
]
