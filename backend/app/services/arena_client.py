"""
Are.na API client.

Fetches channel metadata, the paginated block list of a channel and per-block
details. List responses omit some fields (notably the source URL of Link and
Media blocks), so blocks of the URL-bearing classes get a follow-up detail
request. Detail requests are throttled:

- pages are fetched sequentially with ARENA_PAGE_DELAY_SECONDS between them
- details are fetched in batches of ARENA_DETAIL_BATCH_SIZE; inside a batch
  request i starts i * ARENA_DETAIL_STAGGER_SECONDS after the first
- ARENA_DETAIL_BATCH_DELAY_SECONDS separates consecutive batches
- the five block classes are fetched concurrently since they never overlap

Every response is parsed into app.schemas.arena models at this boundary.
"""

import asyncio
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from app.core.config import settings
from app.schemas.arena import ArenaBlock, ArenaChannel, ArenaContentsPage, PROCESSABLE_CLASSES

logger = logging.getLogger(__name__)


class ArenaError(Exception):
    """Base exception for Are.na API errors."""
    pass


class ArenaNotFoundError(ArenaError):
    """Raised when a channel or block does not exist."""
    pass


class ArenaUnauthorizedError(ArenaError):
    """Raised when private content is requested without valid credentials."""
    pass


class ArenaProviderError(ArenaError):
    """Raised when Are.na is unreachable, times out or answers with an unexpected status."""
    pass


# Block classes whose detail response carries the URL the extractors need
URL_CLASSES = ("Link", "Image", "Media", "Attachment")


class ArenaClient:
    """
    Async client for the Are.na v2 API.

    Built once at startup and injected into the sync orchestrator. Pass an
    ``http_client`` to share a connection pool or to mock transport in tests;
    otherwise the client owns its own httpx.AsyncClient and closes it in aclose().

    Example:
        >>> async with ArenaClient(api_key=settings.ARENA_API_KEY) as arena:
        ...     channel = await arena.fetch_collection("arena-influences")
        ...     blocks = await arena.fetch_all_items(channel.slug)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
        page_delay: Optional[float] = None,
        batch_size: Optional[int] = None,
        stagger_delay: Optional[float] = None,
        batch_delay: Optional[float] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: Are.na personal access token (defaults to settings.ARENA_API_KEY)
            base_url: API root (defaults to settings.ARENA_API_BASE_URL)
            http_client: Shared httpx client; created if omitted
            timeout: Per-request timeout in seconds
            page_size: Blocks per contents page
            page_delay: Seconds between page requests
            batch_size: Detail requests per batch
            stagger_delay: Seconds between request starts inside a batch
            batch_delay: Seconds between batches

        Raises:
            ValueError: If the paging/batching configuration is invalid
        """
        self.api_key = api_key if api_key is not None else settings.ARENA_API_KEY
        self.base_url = (base_url or settings.ARENA_API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.ARENA_REQUEST_TIMEOUT
        self.page_size = page_size if page_size is not None else settings.ARENA_PAGE_SIZE
        self.page_delay = page_delay if page_delay is not None else settings.ARENA_PAGE_DELAY_SECONDS
        self.batch_size = batch_size if batch_size is not None else settings.ARENA_DETAIL_BATCH_SIZE
        self.stagger_delay = (
            stagger_delay if stagger_delay is not None else settings.ARENA_DETAIL_STAGGER_SECONDS
        )
        self.batch_delay = batch_delay if batch_delay is not None else settings.ARENA_DETAIL_BATCH_DELAY_SECONDS

        if self.page_size < 1 or self.batch_size < 1:
            raise ValueError("page_size and batch_size must be at least 1")
        if min(self.page_delay, self.stagger_delay, self.batch_delay) < 0:
            raise ValueError("Delays cannot be negative")

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.timeout)

    async def __aenter__(self) -> "ArenaClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    # ========================================
    # Transport
    # ========================================

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET ``{base_url}{path}`` and return the decoded JSON body.

        Raises:
            ArenaNotFoundError: 404
            ArenaUnauthorizedError: 401 or 403
            ArenaProviderError: transport failure, timeout or any other error status
        """
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.get(
                url, params=params, headers=self._headers(), timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise ArenaProviderError(f"Are.na request timed out: {path}") from e
        except httpx.HTTPError as e:
            raise ArenaProviderError(f"Are.na request failed: {path}: {e}") from e

        if response.status_code == 404:
            raise ArenaNotFoundError(f"Not found on Are.na: {path}")
        if response.status_code in (401, 403):
            raise ArenaUnauthorizedError(
                f"Are.na denied access to {path} (status {response.status_code}); "
                f"private channels need ARENA_API_KEY"
            )
        if response.status_code >= 400:
            raise ArenaProviderError(
                f"Are.na API error: {response.status_code} - {self._error_message(response)}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise ArenaProviderError(f"Are.na returned invalid JSON for {path}") from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(body, dict):
            return str(body.get("message") or body.get("error") or body)
        return str(body)

    # ========================================
    # Channel Operations
    # ========================================

    async def fetch_collection(self, slug: str) -> ArenaChannel:
        """
        Get channel metadata (without contents).

        Args:
            slug: Channel slug (e.g. "arena-influences")

        Returns:
            ArenaChannel with id, title, slug, length (total block count) and owner

        Raises:
            ArenaNotFoundError: If the slug does not resolve
            ArenaUnauthorizedError: If the channel is private and no valid token is set
        """
        data = await self._request(f"/channels/{slug}")
        try:
            return ArenaChannel.model_validate(data)
        except ValidationError as e:
            raise ArenaProviderError(f"Unexpected channel payload for {slug}: {e}") from e

    async def fetch_contents_page(self, channel_id: int, page: int, per: Optional[int] = None) -> List[ArenaBlock]:
        """Fetch one page of a channel's blocks."""
        data = await self._request(
            f"/channels/{channel_id}/contents",
            params={"page": page, "per": per or self.page_size},
        )
        try:
            return ArenaContentsPage.model_validate(data).contents
        except ValidationError as e:
            raise ArenaProviderError(f"Unexpected contents payload for channel {channel_id}: {e}") from e

    async def fetch_all_items(self, slug: str, channel: Optional[ArenaChannel] = None) -> List[ArenaBlock]:
        """
        Fetch every block of a channel, page by page.

        Pages are requested until the channel's reported length is exhausted
        (or a page comes back empty), sleeping page_delay between requests.

        Args:
            slug: Channel slug
            channel: Already-fetched channel metadata (saves one request)

        Returns:
            Blocks in provider order
        """
        if channel is None:
            channel = await self.fetch_collection(slug)

        total_pages = math.ceil(channel.length / self.page_size) if channel.length else 0
        all_blocks: List[ArenaBlock] = []

        for page in range(1, total_pages + 1):
            blocks = await self.fetch_contents_page(channel.id, page)
            all_blocks.extend(blocks)
            logger.debug(f"Fetched page {page}/{total_pages} of {slug}: {len(blocks)} blocks")

            if not blocks:
                logger.warning(f"Empty page {page} for {slug}, stopping early at {len(all_blocks)} blocks")
                break

            if page < total_pages:
                await asyncio.sleep(self.page_delay)

        logger.info(f"Fetched {len(all_blocks)} blocks from {slug} ({total_pages} pages)")
        return all_blocks

    # ========================================
    # Block Operations
    # ========================================

    async def fetch_block(self, block_id: int) -> ArenaBlock:
        """
        Get one block with all fields, including its source URL.

        Raises:
            ArenaNotFoundError: If the block does not exist
        """
        data = await self._request(f"/blocks/{block_id}")
        try:
            return ArenaBlock.model_validate(data)
        except ValidationError as e:
            raise ArenaProviderError(f"Unexpected block payload for {block_id}: {e}") from e

    async def _fetch_block_staggered(self, block: ArenaBlock, delay: float) -> Optional[ArenaBlock]:
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            return await self.fetch_block(block.id)
        except ArenaError as e:
            logger.warning(f"Failed to get details for {block.block_class} block {block.id}: {e}")
            return None

    async def fetch_item_details(
        self,
        items: Sequence[ArenaBlock],
        type_filter: Iterable[str],
    ) -> List[ArenaBlock]:
        """
        Fetch detailed data for the blocks whose class is in ``type_filter``.

        Details are requested in batches; inside a batch the requests run
        concurrently with staggered starts, and batches are separated by
        batch_delay. A failed request drops that block (logged, not retried).
        Blocks of URL-bearing classes without any URL after the detail fetch
        are dropped as well, since nothing can be extracted from them.

        Args:
            items: Blocks from fetch_all_items()
            type_filter: Block classes to fetch, e.g. ("Link",)

        Returns:
            Detailed blocks, in input order
        """
        wanted = set(type_filter)
        selected = [block for block in items if block.block_class in wanted]
        detailed: List[ArenaBlock] = []

        for start in range(0, len(selected), self.batch_size):
            batch = selected[start:start + self.batch_size]
            results = await asyncio.gather(*(
                self._fetch_block_staggered(block, index * self.stagger_delay)
                for index, block in enumerate(batch)
            ))

            for result in results:
                if result is None:
                    continue
                if result.block_class in URL_CLASSES and not result.resource_url:
                    logger.debug(f"Dropping {result.block_class} block {result.id}: no URL")
                    continue
                detailed.append(result)

            if start + self.batch_size < len(selected):
                await asyncio.sleep(self.batch_delay)

        logger.info(
            f"Fetched details for {len(detailed)}/{len(selected)} "
            f"{'/'.join(sorted(wanted))} blocks"
        )
        return detailed

    @staticmethod
    def collect_text_blocks(items: Sequence[ArenaBlock]) -> List[ArenaBlock]:
        """Text blocks already carry their content in list responses; keep the non-empty ones."""
        return [
            block for block in items
            if block.block_class == "Text" and block.content and block.content.strip()
        ]

    async def fetch_all_details(self, items: Sequence[ArenaBlock]) -> List[ArenaBlock]:
        """
        Detailed blocks for every processable class.

        The four URL-bearing classes are fetched concurrently (they partition
        the input), text blocks need no extra request.

        Returns:
            Link, Image, Media, Attachment then Text blocks
        """
        link_blocks, image_blocks, media_blocks, attachment_blocks = await asyncio.gather(
            self.fetch_item_details(items, ("Link",)),
            self.fetch_item_details(items, ("Image",)),
            self.fetch_item_details(items, ("Media",)),
            self.fetch_item_details(items, ("Attachment",)),
        )
        text_blocks = self.collect_text_blocks(items)

        skipped = [
            block for block in items if block.block_class not in PROCESSABLE_CLASSES
        ]
        if skipped:
            logger.info(f"Ignoring {len(skipped)} blocks of unsupported classes (nested channels)")

        return [*link_blocks, *image_blocks, *media_blocks, *attachment_blocks, *text_blocks]
