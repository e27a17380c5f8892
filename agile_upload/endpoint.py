import threading

import httpx

from agile_upload.auth import SessionAuthenticator
from agile_upload.config import settings
from agile_upload.models import IntegrityExpectation
from agile_upload.multipart import MultipartUploader
from agile_upload.schemas import CodeResult, ListFileResult, NoopParams, PathParams
from agile_upload.streams import ByteSource, ProgressCallback, open_source
from agile_upload.tracing import setup_tracing
from agile_upload.transfer import WholeFileTransfer
from agile_upload.transport import RequestChannel

# 0 is success, -2, -1 and 1 mean the directory already exists.
MAKE_DIRECTORY_OK_CODES = frozenset({-2, -1, 0, 1})


class StorageEndpoint:
    def __init__(
        self,
        endpoint_url: str,
        username: str,
        password: str,
        timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
        page_size: int | None = None,
        read_block_size: int | None = None,
    ) -> None:
        block_size = read_block_size or settings.read_block_size
        self.channel = RequestChannel(
            endpoint_url,
            timeout_seconds=timeout_seconds or settings.request_timeout_seconds,
            transport=transport,
        )
        self.authenticator = SessionAuthenticator(self.channel, username, password)
        self.multipart = MultipartUploader(
            self.channel, self.authenticator, page_size=page_size, read_block_size=block_size
        )
        self.files = WholeFileTransfer(self.channel, block_size=block_size)

    def __enter__(self) -> "StorageEndpoint":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        try:
            self.authenticator.logout()
        finally:
            self.channel.close()

    def upload(
        self,
        source: ByteSource,
        path: str,
        name: str,
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> IntegrityExpectation:
        token = self.authenticator.ensure_authenticated()
        with open_source(source) as handle:
            return self.files.upload(token, handle, path, name, progress=progress, cancel=cancel)

    def make_directory(self, path: str) -> None:
        token = self.authenticator.ensure_authenticated()
        result = self.channel.execute("makeDir2", PathParams(path=path), token=token)
        self.channel.expect_code("makeDir2", result, accepted=MAKE_DIRECTORY_OK_CODES)

    def delete_directory(self, path: str) -> None:
        token = self.authenticator.ensure_authenticated()
        self.channel.expect_code("deleteDir", self.channel.execute("deleteDir", PathParams(path=path), token=token))

    def delete_file(self, path: str) -> None:
        token = self.authenticator.ensure_authenticated()
        self.channel.expect_code("deleteFile", self.channel.execute("deleteFile", PathParams(path=path), token=token))

    def list_files(self, path: str) -> list[str]:
        token = self.authenticator.ensure_authenticated()
        result = self.channel.call("listFile", PathParams(path=path), ListFileResult, token=token)
        return [entry.name for entry in result.entries or []]

    def exists(self, path: str) -> bool:
        token = self.authenticator.ensure_authenticated()
        return self.channel.call("stat", PathParams(path=path), CodeResult, token=token).code == 0

    def noop(self) -> None:
        token = self.authenticator.ensure_authenticated()
        self.channel.execute("noop", NoopParams(), token=token)


def build_endpoint(transport: httpx.BaseTransport | None = None) -> StorageEndpoint:
    if not settings.endpoint_url:
        raise ValueError("endpoint_url must be set")
    setup_tracing()
    return StorageEndpoint(
        settings.endpoint_url,
        settings.username,
        settings.password,
        timeout_seconds=settings.request_timeout_seconds,
        transport=transport,
        page_size=settings.piece_page_size,
        read_block_size=settings.read_block_size,
    )
