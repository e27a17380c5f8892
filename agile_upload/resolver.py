"""Map a byte offset of the logical file to an already stored remote piece.

The remote side only exposes a paged ``(index, size)`` listing ordered by
index, so the scan walks pages from piece 1, carrying the running byte total
across pages. The first piece whose cumulative size is strictly greater than
the offset covers it, which puts an offset sitting exactly on a boundary into
the following piece.
"""

from collections.abc import Callable
from dataclasses import dataclass

from agile_upload.errors import ProtocolError
from agile_upload.metrics import resolve_page_requests_total
from agile_upload.models import RemotePiece

PageLister = Callable[[int, int], list[RemotePiece]]


@dataclass(frozen=True)
class Resolved:
    index: int
    piece_size: int


@dataclass(frozen=True)
class NotFound:
    offset: int
    pages_scanned: int


@dataclass(frozen=True)
class ProtocolFailure:
    detail: str
    error: ProtocolError


Resolution = Resolved | NotFound | ProtocolFailure


class ChunkOffsetResolver:
    def __init__(self, page_size: int = 100) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be > 0")
        self.page_size = page_size

    def resolve(self, offset: int, chunk_count: int, list_page: PageLister) -> Resolution:
        cursor = 1
        cumulative = 0
        pages = 0
        while cursor < chunk_count:
            try:
                pieces = list_page(cursor, self.page_size)
            except ProtocolError as exc:
                return ProtocolFailure(detail=exc.detail, error=exc)
            pages += 1
            resolve_page_requests_total.inc()

            for piece in pieces[: self.page_size]:
                if piece.index >= chunk_count:
                    return NotFound(offset=offset, pages_scanned=pages)
                cumulative += piece.size
                if cumulative > offset:
                    return Resolved(index=piece.index, piece_size=piece.size)

            if len(pieces) < self.page_size:
                break
            cursor += self.page_size
        return NotFound(offset=offset, pages_scanned=pages)
