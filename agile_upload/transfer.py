import threading
import time
from typing import BinaryIO

import httpx

from agile_upload.errors import IntegrityError, ProtocolError, ShortReadError
from agile_upload.events import log_event
from agile_upload.metrics import (
    bytes_uploaded_total,
    files_uploaded_total,
    integrity_failures_total,
    piece_upload_duration_seconds,
)
from agile_upload.models import AuthToken, ChunkDescriptor, IntegrityExpectation
from agile_upload.streams import DigestingReader, ProgressCallback
from agile_upload.tracing import tracer
from agile_upload.transport import AUTH_HEADER, RequestChannel

PIECE_PATH = "/multipart/piece"
FILE_PATH = "/post/file"


def check_ack_headers(channel: RequestChannel, response: httpx.Response, expectation: IntegrityExpectation) -> None:
    for header, expected in expectation.header_checks().items():
        actual = response.headers.get(header)
        if actual is None:
            integrity_failures_total.inc()
            raise channel.fail(IntegrityError, f"{header} missing, expected: {expected}")
        if actual.strip().lower() != expected.lower():
            integrity_failures_total.inc()
            raise channel.fail(IntegrityError, f"{header}, got: {actual}, expected: {expected}")


class ChunkTransfer:
    def __init__(self, channel: RequestChannel, block_size: int = 64 * 1024) -> None:
        self.channel = channel
        self.block_size = block_size

    def upload_piece(
        self,
        token: AuthToken,
        mpid: str,
        index: int,
        source: BinaryIO,
        chunk: ChunkDescriptor,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> str:
        source.seek(chunk.offset)
        reader = DigestingReader(source, length=chunk.length, progress=progress, cancel=cancel, block_size=self.block_size)
        headers = {
            AUTH_HEADER: token.value,
            "X-Agile-Part": str(index),
            "X-Agile-Multipart": mpid,
            "Content-Type": "application/octet-stream",
            "Content-Length": str(chunk.length),
        }
        self.channel.last_query = f"upload piece {index} of multipart {mpid} (offset={chunk.offset}, length={chunk.length})"

        start = time.perf_counter()
        span_attributes = {"agile.mpid": mpid, "agile.part": index, "agile.offset": chunk.offset, "agile.length": chunk.length}
        with tracer.start_as_current_span("multipart piece", attributes=span_attributes) as span:
            try:
                response = self.channel.send("POST", PIECE_PATH, content=reader.blocks(), headers=headers)
            except ShortReadError:
                integrity_failures_total.inc()
                raise
            span.set_attribute("http.status_code", response.status_code)
        piece_upload_duration_seconds.observe(time.perf_counter() - start)

        if response.status_code != 200:
            raise self.channel.fail(ProtocolError, f"got status: {response.status_code} from piece upload")

        digest = reader.hexdigest()
        check_ack_headers(self.channel, response, IntegrityExpectation(byte_size=chunk.length, digest_hex=digest))
        return digest


class WholeFileTransfer:
    def __init__(self, channel: RequestChannel, block_size: int = 64 * 1024) -> None:
        self.channel = channel
        self.block_size = block_size

    def upload(
        self,
        token: AuthToken,
        source: BinaryIO,
        path: str,
        name: str,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> IntegrityExpectation:
        reader = DigestingReader(source, progress=progress, cancel=cancel, block_size=self.block_size)
        self.channel.last_query = f"upload to {path}/{name}"

        with tracer.start_as_current_span("file upload", attributes={"agile.path": path, "agile.name": name}) as span:
            response = self.channel.send(
                "POST",
                FILE_PATH,
                headers={AUTH_HEADER: token.value},
                data={"directory": path, "basename": name},
                files={"uploadFile": (name, reader, "application/octet-stream")},
            )
            span.set_attribute("http.status_code", response.status_code)

        if response.status_code != 200:
            raise self.channel.fail(ProtocolError, f"got status: {response.status_code} from upload")

        expectation = IntegrityExpectation(byte_size=reader.bytes_read, digest_hex=reader.hexdigest())
        check_ack_headers(self.channel, response, expectation)

        files_uploaded_total.inc()
        bytes_uploaded_total.inc(expectation.byte_size)
        log_event(
            {
                "event": "file_uploaded",
                "path": path,
                "name": name,
                "size": expectation.byte_size,
                "sha256": expectation.digest_hex,
            }
        )
        return expectation
