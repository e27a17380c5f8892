import hashlib
import io
import threading

import pytest

from agile_upload.errors import ShortReadError, UploadCancelled
from agile_upload.models import AuthToken, ChunkDescriptor, MultipartStatus, UploadSession, plan_chunks
from agile_upload.streams import DigestingReader, open_source


def test_plan_chunks_covers_file_with_short_tail() -> None:
    chunks = list(plan_chunks(10, 4))

    assert [(c.offset, c.length) for c in chunks] == [(0, 4), (4, 4), (8, 2)]
    assert all(c.appending for c in chunks)


def test_plan_chunks_from_resume_offset() -> None:
    assert [(c.offset, c.length) for c in plan_chunks(10, 4, start=8)] == [(8, 2)]
    assert list(plan_chunks(0, 4)) == []


@pytest.mark.parametrize("offset, length", [(-1, 1), (0, -1)])
def test_chunk_descriptor_rejects_negative_values(offset: int, length: int) -> None:
    with pytest.raises(ValueError):
        ChunkDescriptor(offset, length)


def test_empty_auth_token_is_rejected() -> None:
    with pytest.raises(ValueError):
        AuthToken("")


def test_unknown_multipart_status_code() -> None:
    assert MultipartStatus.from_code(3) is MultipartStatus.completed
    with pytest.raises(ValueError, match="unknown multipart state: 42"):
        MultipartStatus.from_code(42)


def test_fresh_session_does_not_accept_chunks() -> None:
    session = UploadSession()

    assert session.pieces_filled == 0
    assert not session.accepts_chunks


def test_digesting_reader_limits_and_hashes_sent_bytes() -> None:
    reader = DigestingReader(io.BytesIO(b"abcdefgh"), length=5, block_size=2)

    assert list(reader.blocks()) == [b"ab", b"cd", b"e"]
    assert reader.bytes_read == 5
    assert reader.hexdigest() == hashlib.sha256(b"abcde").hexdigest()


def test_digesting_reader_honours_cancel() -> None:
    cancel = threading.Event()
    reader = DigestingReader(io.BytesIO(b"abcdefgh"), cancel=cancel, block_size=2)

    assert reader.read(2) == b"ab"
    cancel.set()
    with pytest.raises(UploadCancelled):
        reader.read(2)


def test_open_source_leaves_caller_handle_open(tmp_path) -> None:
    path = tmp_path / "data.bin"
    path.write_bytes(b"xyz")

    with open_source(path) as handle:
        assert handle.read() == b"xyz"
    assert handle.closed

    buffer = io.BytesIO(b"xyz")
    with open_source(buffer) as handle:
        assert handle is buffer
    assert not buffer.closed

    with open_source(bytearray(b"xyz")) as handle:
        assert handle.read() == b"xyz"


def test_digesting_reader_raises_when_source_runs_dry() -> None:
    reader = DigestingReader(io.BytesIO(b"abc"), length=10, block_size=4)

    with pytest.raises(ShortReadError, match="3 of 10"):
        list(reader.blocks())
    assert reader.bytes_read == 3
