import hashlib
import io
import os
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import BinaryIO

from agile_upload.errors import ShortReadError, UploadCancelled

ProgressCallback = Callable[[int], None]
ByteSource = str | os.PathLike | bytes | bytearray | memoryview | BinaryIO


class DigestingReader:
    """Single-pass tee over a binary source.

    Every block handed to the HTTP layer is fed to SHA-256 and counted on the
    way out, so the digest covers exactly the bytes that were sent. The source
    is never rewound.
    """

    def __init__(
        self,
        source: BinaryIO,
        length: int | None = None,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
        block_size: int = 64 * 1024,
    ) -> None:
        self._source = source
        self._length = length
        self._remaining = length
        self._progress = progress
        self._cancel = cancel
        self._digest = hashlib.sha256()
        self.block_size = block_size
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        if self._cancel is not None and self._cancel.is_set():
            raise UploadCancelled("upload cancelled by caller")
        if self._remaining is not None:
            if self._remaining <= 0:
                return b""
            size = self._remaining if size is None or size < 0 else min(size, self._remaining)
        data = self._source.read(size)
        if not data and self._remaining and size != 0:
            # Raised before the HTTP layer sees a body shorter than its Content-Length.
            raise ShortReadError(f"short read: source ended after {self.bytes_read} of {self._length} bytes")
        if data:
            self._digest.update(data)
            self.bytes_read += len(data)
            if self._remaining is not None:
                self._remaining -= len(data)
            if self._progress is not None:
                self._progress(len(data))
        return data

    def blocks(self) -> Iterator[bytes]:
        while True:
            block = self.read(self.block_size)
            if not block:
                return
            yield block

    def hexdigest(self) -> str:
        return self._digest.hexdigest()


@contextmanager
def open_source(source: ByteSource) -> Iterator[BinaryIO]:
    if isinstance(source, (bytes, bytearray, memoryview)):
        with io.BytesIO(bytes(source)) as buffer:
            yield buffer
    elif hasattr(source, "read"):
        # Caller-owned handle; left open.
        yield source
    else:
        with open(source, "rb") as handle:
            yield handle
