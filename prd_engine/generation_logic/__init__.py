"""Generation logic package.

This package holds the session layer that sits on top of the services: the
in-memory session store and the orchestrator that runs chat turns and
document generation for a session. Callers (a CLI, an HTTP surface, tests)
only need :class:`SessionOrchestrator`.
"""

from .orchestrator import SessionOrchestrator  # noqa: F401
from .orchestrator import build_default_clients  # noqa: F401
from .session_store import Session  # noqa: F401
from .session_store import SessionStore  # noqa: F401
