"""
Indexer Query Client

Paginated transaction search against a Cosmos REST node
(GET /cosmos/tx/v1beta1/txs).

Node implementations disagree on the query format they accept:
- Legacy dialect: one combined `query=<filter> AND tx.height>=<min>` string
- Events dialect: repeated `events=<clause>` parameters

The legacy dialect is tried first. A 400/500/501 answer triggers exactly
one retry in the events dialect; if that fails as well the filter yields an
empty page and the caller's pagination loop ends. Any other error
propagates for the caller to classify.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from ..config import QueryClientConfig
from ..utils import normalize_rest_url

TX_SEARCH_PATH = "/cosmos/tx/v1beta1/txs"


def merge_tx_responses(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Normalize a search response into a list of envelopes.

    Some nodes return tx bodies in a parallel `txs` array; those are merged
    into the matching `tx_responses` entry by index.
    """
    if not isinstance(data, dict):
        return []
    responses = data.get("tx_responses") or []
    bodies = data.get("txs") or []

    envelopes = []
    for index, response in enumerate(responses):
        if not isinstance(response, dict):
            continue
        if response.get("tx"):
            envelopes.append(response)
            continue
        merged = dict(response)
        merged["tx"] = bodies[index] if index < len(bodies) else None
        envelopes.append(merged)
    return envelopes


def response_total(data: Dict[str, Any]) -> int:
    """pagination.total (or legacy top-level `total`) as int."""
    if not isinstance(data, dict):
        return 0
    pagination = data.get("pagination") or {}
    raw = pagination.get("total") if isinstance(pagination, dict) else None
    if raw is None:
        raw = data.get("total")
    try:
        return int(raw or 0)
    except (TypeError, ValueError):
        return 0


class IndexerQueryClient:
    """
    Transaction-search client with silent dialect fallback.

    Usage:
        async with IndexerQueryClient() as client:
            envelopes, total = await client.fetch_page(
                "https://rest.example.org", "message.sender='addr'", 0, 1
            )
    """

    def __init__(
        self,
        config: Optional[QueryClientConfig] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.config = config or QueryClientConfig()
        self._logger = logging.getLogger("IndexerQueryClient")
        self._session = session
        self._owns_session = session is None

        # Stats
        self._requests = 0
        self._fallbacks = 0
        self._failed_queries = 0

    async def start(self):
        """Open the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout)
            )
            self._owns_session = True

    async def stop(self):
        """Close the HTTP session if this client opened it."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # =========================================================================
    # Query Construction
    # =========================================================================

    def legacy_params(self, filter_expression: str, min_height: int, page: int) -> List[Tuple[str, str]]:
        return [
            ("query", f"{filter_expression} AND tx.height>={min_height}"),
            ("pagination.limit", str(self.config.page_limit)),
            ("pagination.page", str(page)),
            ("order_by", self.config.order_by),
        ]

    def events_params(self, filter_expression: str, min_height: int, page: int) -> List[Tuple[str, str]]:
        return [
            ("events", filter_expression),
            ("events", f"tx.height>={min_height}"),
            ("pagination.limit", str(self.config.page_limit)),
            ("pagination.page", str(page)),
            ("order_by", self.config.order_by),
        ]

    # =========================================================================
    # Fetching
    # =========================================================================

    async def fetch_page(
        self,
        base_url: str,
        filter_expression: str,
        min_height: int,
        page: int = 1
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        Fetch one page of envelopes at or above min_height.

        Returns (envelopes, total). Raises aiohttp errors that are not a
        dialect incompatibility.
        """
        url = normalize_rest_url(base_url) + TX_SEARCH_PATH

        try:
            data = await self._get(url, self.legacy_params(filter_expression, min_height, page))
        except aiohttp.ClientResponseError as e:
            if e.status not in self.config.fallback_statuses:
                raise

            self._fallbacks += 1
            self._logger.debug(
                f"Legacy query rejected ({e.status}), retrying with events dialect: {filter_expression}"
            )
            try:
                data = await self._get(url, self.events_params(filter_expression, min_height, page))
            except Exception as e2:
                self._failed_queries += 1
                self._logger.error(
                    f"All indexer modes failed for query: {filter_expression} ({e2})"
                )
                return [], 0

        return merge_tx_responses(data), response_total(data)

    async def _get(self, url: str, params: List[Tuple[str, str]]) -> Dict[str, Any]:
        if self._session is None:
            await self.start()

        self._requests += 1
        async with self._session.get(url, params=params) as response:
            response.raise_for_status()
            return await response.json(content_type=None)

    def get_stats(self) -> Dict:
        return {
            "requests": self._requests,
            "fallbacks": self._fallbacks,
            "failed_queries": self._failed_queries,
        }
