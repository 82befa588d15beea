"""Extractor for the Bubble Data API."""

import json
import time
import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import BaseExtractor, ListPage
from ..exceptions import SourceError
from ..models.migration import MAX_PAGE_SIZE, MigrationConfig
from ..models.record import SourceRecord

logger = logging.getLogger(__name__)


class BubbleClient(BaseExtractor):
    """
    Client for Bubble's ``/obj/{type}`` listing endpoints.

    Supports:
    - Cursor pagination (``cursor`` + ``limit``, at most 100 per page)
    - Server-side ``constraints`` filters
    - Bearer-token authentication
    - Retry with exponential backoff on 429 and 5xx responses
    """

    RETRY_STATUSES = [429, 500, 502, 503, 504]

    def __init__(
        self,
        config: MigrationConfig,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the client.

        Args:
            config: Migration configuration (API URL, token, retry settings)
            session: Custom requests session
        """
        self.config = config
        self.base_url = config.source_api_url.rstrip("/")
        self.default_batch_size = config.page_size
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retries = Retry(
            total=self.config.max_retries,
            backoff_factor=self.config.backoff_factor,
            status_forcelist=self.RETRY_STATUSES,
            allowed_methods=["GET"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    def _get_auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.config.source_api_token}"}

    def _get(
        self,
        url: str,
        entity_type: str,
        params: Optional[Dict[str, Any]] = None,
        cursor: Optional[int] = None
    ) -> requests.Response:
        try:
            return self._session.get(
                url,
                headers=self._get_auth_headers(),
                params=params,
                timeout=self.config.request_timeout,
            )
        except requests.exceptions.RequestException as e:
            raise SourceError(
                f"Request to Bubble failed for {entity_type}: {e}",
                entity_type=entity_type,
                cursor=cursor,
            ) from e

    def list(
        self,
        entity_type: str,
        cursor: int = 0,
        limit: int = 100,
        constraints: Optional[List[Dict[str, Any]]] = None
    ) -> ListPage:
        """Fetch one page of an entity type."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        params: Dict[str, Any] = {"cursor": cursor, "limit": limit}
        if constraints:
            params["constraints"] = json.dumps(constraints)

        url = f"{self.base_url}/obj/{entity_type}"
        response = self._get(url, entity_type, params=params, cursor=cursor)

        if not response.ok:
            raise SourceError(
                f"Bubble API error for {entity_type} at cursor {cursor}: "
                f"{response.status_code} - {response.text}",
                entity_type=entity_type,
                status_code=response.status_code,
                cursor=cursor,
            )

        return self._parse_page(response, entity_type, cursor)

    def _parse_page(
        self,
        response: requests.Response,
        entity_type: str,
        cursor: int
    ) -> ListPage:
        """Parse a listing response into a ListPage."""
        try:
            body = response.json()
        except ValueError as e:
            raise SourceError(
                f"Malformed JSON from Bubble for {entity_type} at cursor {cursor}",
                entity_type=entity_type,
                status_code=response.status_code,
                cursor=cursor,
            ) from e

        payload = body.get("response") if isinstance(body, dict) else None
        if not isinstance(payload, dict) or not isinstance(payload.get("results"), list):
            raise SourceError(
                f"Unexpected response shape from Bubble for {entity_type} at cursor {cursor}",
                entity_type=entity_type,
                status_code=response.status_code,
                cursor=cursor,
            )

        records = [self._create_record(item, entity_type) for item in payload["results"]]

        try:
            remaining = int(payload.get("remaining", 0))
            count = int(payload.get("count", len(records)))
        except (TypeError, ValueError) as e:
            raise SourceError(
                f"Non-numeric pagination counters from Bubble for {entity_type}",
                entity_type=entity_type,
                cursor=cursor,
            ) from e

        return ListPage(
            results=records,
            count=count,
            remaining=remaining,
            cursor=int(payload.get("cursor", cursor) or 0),
        )

    def _create_record(self, item: Any, entity_type: str) -> SourceRecord:
        # Shape problems surface later as per-record transform failures.
        data = item if isinstance(item, dict) else {}
        source_id = data.get("_id")
        return SourceRecord(
            id=source_id if isinstance(source_id, str) else "",
            entity_type=entity_type,
            data=data,
        )

    def get_by_id(self, entity_type: str, source_id: str) -> Optional[SourceRecord]:
        """Fetch a single record, or None if Bubble no longer has it."""
        url = f"{self.base_url}/obj/{entity_type}/{source_id}"
        response = self._get(url, entity_type)

        if response.status_code == 404:
            return None

        if not response.ok:
            raise SourceError(
                f"Bubble API error for {entity_type} {source_id}: "
                f"{response.status_code} - {response.text}",
                entity_type=entity_type,
                status_code=response.status_code,
            )

        try:
            item = response.json().get("response")
        except (ValueError, AttributeError) as e:
            raise SourceError(
                f"Malformed JSON from Bubble for {entity_type} {source_id}",
                entity_type=entity_type,
            ) from e

        if not isinstance(item, dict):
            raise SourceError(
                f"Unexpected response shape from Bubble for {entity_type} {source_id}",
                entity_type=entity_type,
                status_code=response.status_code,
            )

        return self._create_record(item, entity_type)

    def _wait_between_pages(self) -> None:
        if self.config.rate_limit_delay > 0:
            time.sleep(self.config.rate_limit_delay)
