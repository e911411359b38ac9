"""Generation-orchestration engine for production-ready PRDs."""

__version__ = "0.1.0"
