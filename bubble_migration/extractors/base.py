"""Base extractor interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional
import logging

from ..models.record import SourceRecord

logger = logging.getLogger(__name__)


@dataclass
class ListPage:
    """One page of a cursor-paginated listing."""
    results: List[SourceRecord] = field(default_factory=list)
    count: int = 0  # records in this page
    remaining: int = 0  # records not yet returned at the time of the call
    cursor: int = 0

    @property
    def total(self) -> int:
        """Total records the source reported when this page was served."""
        return self.cursor + self.count + self.remaining


class BaseExtractor(ABC):
    """
    Base class for paginated sources.

    Subclasses implement ``list`` (one page from a cursor); the cursor walk,
    counting and async streaming are shared.
    """

    default_batch_size = 100

    @abstractmethod
    def list(
        self,
        entity_type: str,
        cursor: int = 0,
        limit: int = 100,
        constraints: Optional[List[Dict[str, Any]]] = None
    ) -> ListPage:
        """
        Fetch one page of records.

        Args:
            entity_type: Source entity type
            cursor: Zero-based offset of the first record to return
            limit: Page size
            constraints: Optional server-side filters

        Returns:
            ListPage with the records and the source's remaining count
        """
        pass

    def count_all(self, entity_type: str) -> int:
        """Total record count, for sizing progress output only."""
        return self.list(entity_type, cursor=0, limit=1).total

    def iterate_all(
        self,
        entity_type: str,
        batch_size: Optional[int] = None,
        start_cursor: int = 0,
        constraints: Optional[List[Dict[str, Any]]] = None
    ) -> Iterator[List[SourceRecord]]:
        """
        Walk every page of an entity type.

        The cursor advances by the number of records actually returned. The
        walk ends when the source reports nothing remaining or hands back an
        empty page, whichever comes first, so stale counts cannot loop it.

        Yields:
            Non-empty batches of SourceRecord objects
        """
        batch_size = batch_size or self.default_batch_size
        cursor = start_cursor

        while True:
            page = self.list(entity_type, cursor=cursor, limit=batch_size, constraints=constraints)
            if not page.results:
                break

            yield page.results
            cursor += len(page.results)

            if page.remaining <= 0:
                break

            self._wait_between_pages()

    async def iterate_all_async(
        self,
        entity_type: str,
        batch_size: Optional[int] = None,
        start_cursor: int = 0,
        constraints: Optional[List[Dict[str, Any]]] = None
    ) -> AsyncIterator[List[SourceRecord]]:
        """Async form of ``iterate_all``."""
        # Default implementation converts sync to async
        for batch in self.iterate_all(entity_type, batch_size, start_cursor, constraints):
            yield batch

    def _wait_between_pages(self) -> None:
        """Hook for rate limiting between page requests."""
        pass
