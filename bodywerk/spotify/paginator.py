"""
Lazy pagination over Spotify cursor chains

Spotify list endpoints return pages shaped like
`{"items": [...], "next": "<url or null>", "total": N}`. The Paginator turns
such a chain into a pull-based, finite, non-restartable iterator: a page is
requested only when the caller has consumed everything before it.
"""

from typing import Any, Callable, Generic, Iterator, List, NamedTuple, Optional, TypeVar

from ..core.cancellation import CancellationToken
from ..utils.logger import get_logger
from .gateway import HttpGateway
from .models import PaginationCursor


logger = get_logger(__name__)

T = TypeVar('T')


class Page(NamedTuple):
    """Decoded page: items (None when the upstream sent none), next URL and advertised total"""
    items: Optional[List[Any]]
    next: Optional[str]
    total: Optional[int]


def decode_page(body: Any) -> Page:
    """Default decoder for Spotify paging objects"""
    if not isinstance(body, dict):
        return Page(items=None, next=None, total=None)
    items = body.get('items')
    total = body.get('total')
    return Page(
        items=items if isinstance(items, list) else None,
        next=body.get('next') or None,
        total=total if isinstance(total, int) and not isinstance(total, bool) else None,
    )


class Paginator(Generic[T]):
    """
    Iterator over the items of a paginated endpoint

    Items are yielded in upstream order without deduplication. Iteration
    stops when the upstream reports no next page, when the advertised total
    of the first page has been reached, or when a next URL repeats.

    Example:
        >>> pages = Paginator(gateway, "https://api.spotify.com/v1/me/playlists?limit=50")
        >>> for item in pages:
        ...     print(item['name'])
    """

    def __init__(
        self,
        gateway: HttpGateway,
        initial_url: str,
        decode: Callable[[Any], Page] = decode_page,
        transform: Optional[Callable[[Any], Optional[T]]] = None,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None
    ):
        """
        Args:
            gateway: Gateway used for every page request
            initial_url: Absolute URL of the first page
            decode: Extracts items/next/total from a decoded response body
            transform: Optional per-item mapping; items mapped to None are skipped
            cancel_token: Cancellation signal checked before each page request
            timeout: Per-request deadline in seconds, the gateway default when None
        """
        self.gateway = gateway
        self.initial_url = initial_url
        self.decode = decode
        self.transform = transform
        self.cancel_token = cancel_token
        self.timeout = timeout
        self.cursor = PaginationCursor(next_url=initial_url)
        self._iterator = self._iterate()

    def __iter__(self) -> 'Paginator[T]':
        return self

    def __next__(self) -> T:
        return next(self._iterator)

    @property
    def total(self) -> Optional[int]:
        """Advertised total from the first page, None before it is fetched"""
        return self.cursor.total

    def _iterate(self) -> Iterator[T]:
        cursor = self.cursor
        while cursor.next_url:
            url = cursor.next_url
            cursor.seen_urls.append(url)

            response = self.gateway.get(url, cancel_token=self.cancel_token, timeout=self.timeout)
            page = self.decode(response.data)
            first_page = cursor.page_count == 0
            cursor.page_count += 1

            if first_page:
                cursor.total = page.total

            if page.items is None:
                logger.warning(f"Page {cursor.page_count} of {self.initial_url} has no items array, treating as empty")
                items = []
            else:
                items = page.items

            if first_page and page.items is not None and not items:
                cursor.next_url = None
                logger.debug(f"First page of {self.initial_url} is empty")
                return

            for item in items:
                if cursor.total is not None and cursor.item_count >= cursor.total:
                    logger.warning(
                        f"Upstream returned more items than the advertised total {cursor.total}, stopping"
                    )
                    cursor.next_url = None
                    return
                cursor.item_count += 1
                if self.transform is None:
                    yield item
                    continue
                value = self.transform(item)
                if value is not None:
                    yield value

            next_url = page.next
            if next_url and next_url in cursor.seen_urls:
                logger.warning(f"Pagination cycle detected at {next_url}, stopping")
                next_url = None
            if cursor.total is not None and cursor.item_count >= cursor.total:
                next_url = None
            cursor.next_url = next_url

        logger.debug(
            f"Pagination of {self.initial_url} finished: "
            f"{cursor.item_count} items over {cursor.page_count} pages"
        )
