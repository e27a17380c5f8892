import enum
from collections.abc import Iterator
from dataclasses import dataclass


class SessionState(str, enum.Enum):
    idle = "IDLE"
    started = "STARTED"
    active = "ACTIVE"
    completed = "COMPLETED"
    aborted = "ABORTED"


class MultipartStatus(int, enum.Enum):
    new = 0
    in_progress = 1
    completing = 2
    completed = 3
    aborted = 4
    failed = 5

    @classmethod
    def from_code(cls, value: int) -> "MultipartStatus":
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"unknown multipart state: {value}") from None


@dataclass(frozen=True)
class AuthToken:
    value: str

    def __post_init__(self) -> None:
        if not self.value:
            raise ValueError("auth token must not be empty")


@dataclass
class UploadSession:
    """Mutable record for one multipart upload.

    ``chunk_count`` is the next unassigned append slot. Remote slots are
    1-based, so a freshly started session holds 1. Not safe to share between
    threads.
    """

    id: str | None = None
    chunk_count: int = 1
    state: SessionState = SessionState.idle

    @property
    def pieces_filled(self) -> int:
        return self.chunk_count - 1

    @property
    def accepts_chunks(self) -> bool:
        return self.id is not None and self.state in (SessionState.started, SessionState.active)


@dataclass(frozen=True)
class ChunkDescriptor:
    offset: int
    length: int
    appending: bool = True

    def __post_init__(self) -> None:
        if self.offset < 0:
            raise ValueError("chunk offset must be >= 0")
        if self.length < 0:
            raise ValueError("chunk length must be >= 0")


@dataclass(frozen=True)
class RemotePiece:
    index: int
    size: int


@dataclass(frozen=True)
class IntegrityExpectation:
    byte_size: int
    digest_hex: str
    status_code: str = "0"

    def header_checks(self) -> dict[str, str]:
        return {
            "X-Agile-Status": self.status_code,
            "X-Agile-Size": str(self.byte_size),
            "X-Agile-Checksum": self.digest_hex,
        }


def plan_chunks(file_size: int, chunk_size: int, start: int = 0) -> Iterator[ChunkDescriptor]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    offset = start
    while offset < file_size:
        length = min(chunk_size, file_size - offset)
        yield ChunkDescriptor(offset=offset, length=length, appending=True)
        offset += length
