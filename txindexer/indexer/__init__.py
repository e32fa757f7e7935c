"""
Cosmos Transaction Indexer

Discovers, normalizes and persists every transaction concerning a tracked
account through the node's REST transaction-search API.

Components:
- IndexerQueryClient: Paginated tx search with dialect fallback
- MessageInterpreter: Raw envelope -> canonical fields
- CrawlOrchestrator: Resumable per-account crawl and record aggregation
- StuckSyncReaper: Recovery of crawls that died without cleanup
- GlobalSyncCoordinator: Periodic fleet-wide sync and resync
- Reparser: Offline re-normalization from retained raw envelopes
"""

from .query_client import IndexerQueryClient
from .message_interpreter import MessageInterpreter
from .crawler import CrawlOrchestrator, build_filters
from .reaper import StuckSyncReaper
from .coordinator import GlobalSyncCoordinator
from .reparse import Reparser

__all__ = [
    "IndexerQueryClient",
    "MessageInterpreter",
    "CrawlOrchestrator",
    "build_filters",
    "StuckSyncReaper",
    "GlobalSyncCoordinator",
    "Reparser",
]
