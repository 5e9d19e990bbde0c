"""
Repository ingestion package.

Talks to the external repository host: branch resolution, tree crawling and
bounded content download.
"""
from .fetcher import CrawlResult, RepositoryFetcher, Resolution

__all__ = ["CrawlResult", "RepositoryFetcher", "Resolution"]
