from .customer_profile import CustomerProfileRepository
from .session_memory import InMemorySessionStore, JsonFileSessionStore, SessionStore, build_session_store

__all__ = [
    "CustomerProfileRepository",
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "SessionStore",
    "build_session_store",
]
