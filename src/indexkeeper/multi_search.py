"""Multi search — Several named searches sent in one ``msearch`` request."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from indexkeeper.models.search import SearchResults
from indexkeeper.strategies.base import scoped_query
from indexkeeper.transport.base.transport import SearchTransport

logger = logging.getLogger(__name__)


class MultiSearch:
    """Collects searches and fetches all of them on first access.

    Example:
        >>> searches = MultiSearch(transport)
        >>> searches.add("cats", "animals", {"query": {"match_all": {}}}, doc_type="cat")
        >>> searches.add("dogs", "animals", {"query": {"match_all": {}}}, doc_type="dog")
        >>> searches["cats"].total
    """

    def __init__(self, transport: SearchTransport) -> None:
        self.transport = transport
        self._searches: dict[str, tuple[str, dict[str, Any], Callable[[dict[str, Any]], Any] | None]] = {}
        self._results: dict[str, SearchResults] | None = None

    def add(
        self,
        name: str,
        index: str,
        body: dict[str, Any] | None = None,
        mapper: Callable[[dict[str, Any]], Any] | None = None,
        doc_type: str | None = None,
    ) -> str:
        """Queue a search under ``name``. Returns the name.

        Args:
            name: Key the results are retrieved with.
            index: Index or logical name to search.
            body: Search body.
            mapper: Turns each hit into an application object.
            doc_type: Restrict the search to one document type.
        """
        if self._results is not None:
            raise RuntimeError("Searches were already fetched; create a new MultiSearch.")
        body = dict(body or {})
        query = scoped_query(doc_type, body.get("query"))
        if query is not None:
            body["query"] = query
        self._searches[name] = (index, body, mapper)
        return name

    async def fetch(self) -> dict[str, SearchResults]:
        """Send every queued search in one request. Later calls return the cached results."""
        if self._results is None:
            names = list(self._searches)
            responses = await self.transport.msearch([(index, body) for index, body, _ in self._searches.values()])
            results: dict[str, SearchResults] = {}
            for name, response in zip(names, responses, strict=True):
                _, _, mapper = self._searches[name]
                results[name] = SearchResults.from_response(response, mapper)
                if results[name].error:
                    logger.warning("Search %s failed: %s", name, results[name].error)
            self._results = results
        return self._results

    async def get(self, name: str) -> SearchResults:
        """Results of one search, fetching all searches first if needed.

        Raises:
            KeyError: If no search was added under ``name``.
        """
        return (await self.fetch())[name]

    def __getitem__(self, name: str) -> SearchResults:
        """Results of one search after :meth:`fetch` has run."""
        if self._results is None:
            raise RuntimeError("Searches have not been fetched yet; await fetch() or get() first.")
        return self._results[name]
