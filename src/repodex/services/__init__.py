"""
Service layer orchestrating repository indexing jobs.
"""

from .indexer import IndexOrchestrator, IndexRequestResult

__all__ = ["IndexOrchestrator", "IndexRequestResult"]
