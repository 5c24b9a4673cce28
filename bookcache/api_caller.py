# bookcache/api_caller.py
"""
Rate-limited metadata client with a single-flight request queue,
credential rotation and exponential backoff.

Every Google Books call made anywhere in the process goes through one
MetadataClient, so the spacing between calls holds no matter how many genre
pipelines are running at once.
"""

import asyncio
import collections
import logging
import time
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Tuple

import aiohttp

from .errors import MetadataRequestError, RateLimitError, TransientRequestError

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
USER_AGENT = "BookCache/1.0"

# A request function receives the credential to use (None when keyless)
RequestFn = Callable[[Optional[str]], Awaitable[Any]]


class RequestSpacer:
    """Keeps a minimum gap between the end of one call and the start of the next"""

    def __init__(self, min_spacing: float = 0.5):
        self.min_spacing = min_spacing
        self.last_completed = 0.0

    async def wait(self) -> None:
        if not self.last_completed:
            return
        elapsed = time.monotonic() - self.last_completed
        if elapsed < self.min_spacing:
            await asyncio.sleep(self.min_spacing - elapsed)

    def mark_completed(self) -> None:
        self.last_completed = time.monotonic()


class CredentialPool:
    """
    Round-robin pool of API keys.

    Keys rejected with a 429 are marked exhausted for the current rotation;
    wrap() starts a fresh rotation once every key has been tried.
    """

    def __init__(self, credentials: Iterable[Optional[str]]):
        self.credentials: List[Optional[str]] = list(credentials) or [None]
        self.active_index = 0
        self._exhausted = set()

    def __len__(self) -> int:
        return len(self.credentials)

    @property
    def active(self) -> Optional[str]:
        return self.credentials[self.active_index]

    def mark_exhausted(self) -> bool:
        """
        Mark the active key exhausted and move to an unused one.

        Returns:
            False when every key in this rotation has been exhausted
        """
        self._exhausted.add(self.active_index)
        count = len(self.credentials)
        for step in range(1, count):
            candidate = (self.active_index + step) % count
            if candidate not in self._exhausted:
                self.active_index = candidate
                return True
        return False

    def wrap(self) -> None:
        """Start a new rotation on the key after the one rejected last"""
        self._exhausted.clear()
        self.active_index = (self.active_index + 1) % len(self.credentials)

    def reset_rotation(self) -> None:
        self._exhausted.clear()


class MetadataClient:
    """
    Serializes metadata requests behind one FIFO queue.

    Features:
    - Completion-to-start spacing between calls
    - Immediate credential rotation on 429
    - Exponential backoff once all credentials are exhausted, then a pause
      window during which new requests return the empty result
    - Exponential backoff for transient failures, then the error propagates
    """

    def __init__(
        self,
        api_keys: Optional[Iterable[str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
        min_request_spacing: float = 0.5,
        max_retries: int = 3,
        initial_retry_delay: float = 1.0,
        pause_seconds: float = 300.0,
        request_timeout: float = 15.0,
    ):
        self.credentials = CredentialPool(api_keys or [])
        self.spacer = RequestSpacer(min_request_spacing)
        self.max_retries = max_retries
        self.initial_retry_delay = initial_retry_delay
        self.pause_seconds = pause_seconds
        self.request_timeout = request_timeout
        self.session = session
        self._owns_session = session is None
        self._queue: Deque[Tuple[RequestFn, asyncio.Future, Any]] = collections.deque()
        self._worker: Optional[asyncio.Task] = None
        self._pause_until = 0.0
        self.logger = logging.getLogger(self.__class__.__name__)

        if self.credentials.active is None:
            self.logger.warning("No Google Books API key configured, using keyless quota")
        else:
            self.logger.info(f"Initialized with {len(self.credentials)} API key(s)")

    @classmethod
    def from_settings(cls, settings, session: Optional[aiohttp.ClientSession] = None) -> "MetadataClient":
        return cls(
            api_keys=settings.google_api_keys,
            session=session,
            min_request_spacing=settings.min_request_spacing,
            max_retries=settings.max_retries,
            initial_retry_delay=settings.initial_retry_delay,
            pause_seconds=settings.pause_seconds,
            request_timeout=settings.request_timeout,
        )

    async def __aenter__(self):
        """Async context manager entry"""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
                connector=aiohttp.TCPConnector(limit=10),
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()

    async def close(self) -> None:
        if self._worker and not self._worker.done():
            self._worker.cancel()
        while self._queue:
            _, future, _ = self._queue.popleft()
            if not future.done():
                future.cancel()
        if self._owns_session and self.session:
            await self.session.close()
            self.session = None

    @property
    def active_credential(self) -> Optional[str]:
        return self.credentials.active

    @property
    def is_paused(self) -> bool:
        return time.monotonic() < self._pause_until

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def enqueue(self, request_fn: RequestFn, empty: Any = None) -> Any:
        """
        Queue a request and wait for its outcome.

        Args:
            request_fn: Coroutine function called with the credential to use
            empty: Result returned instead of queuing while paused

        Returns:
            Whatever request_fn returns; its exceptions propagate unchanged
        """
        if self.is_paused:
            remaining = self._pause_until - time.monotonic()
            self.logger.debug(f"Client paused for another {remaining:.0f}s, skipping request")
            return empty

        future = asyncio.get_running_loop().create_future()
        self._queue.append((request_fn, future, empty))

        if self._worker is None or self._worker.done():
            self._worker = asyncio.ensure_future(self._drain_queue())

        return await future

    async def _drain_queue(self) -> None:
        while self._queue:
            request_fn, future, empty = self._queue.popleft()
            if future.done():
                continue

            if self.is_paused:
                future.set_result(empty)
                continue

            try:
                await self.spacer.wait()
                result = await self._execute(request_fn, empty)
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self.spacer.mark_completed()

    async def _execute(self, request_fn: RequestFn, empty: Any) -> Any:
        """Run one logical request through rotation and backoff"""
        attempt = 0

        while True:
            try:
                result = await request_fn(self.credentials.active)

            except RateLimitError:
                self.logger.warning(f"Rate limited (429) on API key #{self.credentials.active_index + 1}")

                if self.credentials.mark_exhausted():
                    self.logger.info(
                        f"Rotated to API key #{self.credentials.active_index + 1}, retrying immediately"
                    )
                    continue

                if attempt >= self.max_retries:
                    self._enter_pause()
                    return empty

                delay = self.initial_retry_delay * (2 ** attempt)
                attempt += 1
                self.logger.warning(
                    f"All API keys rate limited, retry {attempt}/{self.max_retries} in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                self.credentials.wrap()
                continue

            except TransientRequestError as e:
                if attempt >= self.max_retries:
                    self.logger.error(f"Request failed after {attempt + 1} attempts: {e}")
                    raise

                delay = self.initial_retry_delay * (2 ** attempt)
                attempt += 1
                self.logger.warning(f"{e}, retry {attempt}/{self.max_retries} in {delay:.1f}s")
                await asyncio.sleep(delay)
                continue

            self.credentials.reset_rotation()
            return result

    def _enter_pause(self) -> None:
        self._pause_until = time.monotonic() + self.pause_seconds
        self.logger.error(
            f"Rate limit retries exhausted on all keys, pausing requests for {self.pause_seconds:.0f}s"
        )

    async def _get_json(self, url: str, params: Dict[str, Any], credential: Optional[str]) -> Dict:
        """Single HTTP GET, translating failures into the client's error types"""
        if self.session is None:
            raise RuntimeError("MetadataClient session not open; use 'async with MetadataClient(...)'")

        query = dict(params)
        if credential:
            query["key"] = credential

        try:
            async with self.session.get(url, params=query, headers={"User-Agent": USER_AGENT}) as response:
                if response.status == 200:
                    try:
                        return await response.json(content_type=None)
                    except ValueError as e:
                        raise MetadataRequestError(f"Invalid JSON response from {url}", response.status) from e

                if response.status == 429:
                    raise RateLimitError()

                if response.status >= 500:
                    raise TransientRequestError(f"Server error {response.status} for {url}", response.status)

                raise MetadataRequestError(f"Client error {response.status} for {url}", response.status)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientRequestError(f"Request failed for {url}: {e}") from e

    async def search_volumes(self, query: str, max_results: int = 10, order_by: str = "relevance") -> List[Dict]:
        """
        Search Google Books volumes.

        Returns:
            Raw volume items; empty when nothing matched or the client is paused
        """
        params = {
            "q": query,
            "maxResults": max_results,
            "orderBy": order_by,
            "printType": "books",
            "langRestrict": "en",
        }

        self.logger.debug(f"Searching Google Books for {query!r}")
        data = await self.enqueue(
            lambda credential: self._get_json(GOOGLE_BOOKS_URL, params, credential),
            empty={},
        )
        return (data or {}).get("items") or []
