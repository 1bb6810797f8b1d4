from .session_store import SessionStore, MemorySessionStore, FileSessionStore, create_session_store
from .recommend_graph import RecommendGraph
from .orchestrator import SessionOrchestrator, SolutionNotFound

__all__ = [
    "SessionStore",
    "MemorySessionStore",
    "FileSessionStore",
    "create_session_store",
    "RecommendGraph",
    "SessionOrchestrator",
    "SolutionNotFound",
]
