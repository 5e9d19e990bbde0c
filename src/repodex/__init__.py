"""
repodex: on-demand repository indexing with single-flight jobs and
fingerprint-based cache invalidation.
"""

from .version import __version__

__all__ = ["__version__"]
