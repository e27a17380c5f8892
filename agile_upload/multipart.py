import logging
import threading
from collections.abc import Iterable

from agile_upload.auth import SessionAuthenticator
from agile_upload.config import settings
from agile_upload.errors import EndpointError, ProtocolError, ResolutionError, StateError
from agile_upload.events import log_event
from agile_upload.metrics import bytes_uploaded_total, chunk_upload_failures_total, chunks_uploaded_total
from agile_upload.models import (
    ChunkDescriptor,
    MultipartStatus,
    RemotePiece,
    SessionState,
    UploadSession,
)
from agile_upload.resolver import ChunkOffsetResolver, NotFound, ProtocolFailure
from agile_upload.schemas import (
    CodeResult,
    CompleteMultipartResult,
    CreateMultipartResult,
    ListMultipartPieceParams,
    ListMultipartPieceResult,
    MpidParams,
    MultipartStatusResult,
    PathParams,
)
from agile_upload.streams import ByteSource, ProgressCallback, open_source
from agile_upload.transfer import ChunkTransfer
from agile_upload.transport import RequestChannel

LISTABLE_STATES = (SessionState.started, SessionState.active, SessionState.completed)


class MultipartUploader:
    """Drives multipart uploads; the session record is passed to every call.

    One uploader may serve many sessions, but neither the uploader nor a
    session is safe for concurrent use.
    """

    def __init__(
        self,
        channel: RequestChannel,
        authenticator: SessionAuthenticator,
        page_size: int | None = None,
        read_block_size: int | None = None,
    ) -> None:
        self.channel = channel
        self.authenticator = authenticator
        self.page_size = page_size or settings.piece_page_size
        self.transfer = ChunkTransfer(channel, block_size=read_block_size or settings.read_block_size)
        self.resolver = ChunkOffsetResolver(page_size=self.page_size)

    def _require(self, session: UploadSession, states: tuple[SessionState, ...], action: str) -> None:
        if session.id is None or session.state not in states:
            raise self.channel.fail(
                StateError, f"cannot {action} multipart upload in state {session.state.value} (mpid={session.id})"
            )

    def start(self, path: str, name: str) -> UploadSession:
        token = self.authenticator.ensure_authenticated()
        target = f"{path.rstrip('/')}/{name}"
        result = self.channel.call("createMultipart", PathParams(path=target), CreateMultipartResult, token=token)

        session = UploadSession(id=result.mpid, chunk_count=1, state=SessionState.started)
        log_event({"event": "multipart_started", "mpid": session.id, "path": target})
        return session

    def resume(self, mpid: str, chunk_count: int | None = None) -> UploadSession:
        if not mpid:
            raise self.channel.fail(StateError, "a multipart id is required to resume an upload")
        if chunk_count is not None and chunk_count < 1:
            raise ValueError("chunk_count must be >= 1")

        token = self.authenticator.ensure_authenticated()
        result = self.channel.call("restartMultipart", MpidParams(mpid=mpid), CodeResult, token=token)
        if result.code != 0:
            raise self.channel.fail(ProtocolError, f"invalid mpid({mpid}): {result.code}", code=result.code)

        session = UploadSession(id=mpid, state=SessionState.active)
        session.chunk_count = chunk_count if chunk_count is not None else self.count_pieces(session) + 1
        log_event({"event": "multipart_resumed", "mpid": mpid, "chunk_count": session.chunk_count})
        return session

    def status(self, session: UploadSession) -> MultipartStatus:
        self._require(session, (SessionState.active, SessionState.completed), "query status of")
        token = self.authenticator.ensure_authenticated()
        result = self.channel.call("getMultipartStatus", MpidParams(mpid=session.id), MultipartStatusResult, token=token)
        if result.code != 0:
            raise self.channel.fail(ProtocolError, f"invalid mpid({session.id}): {result.code}", code=result.code)
        if result.state is None:
            raise self.channel.fail(ProtocolError, f"no state in multipart status for mpid({session.id})")
        try:
            return MultipartStatus.from_code(result.state)
        except ValueError as exc:
            raise self.channel.fail(ProtocolError, str(exc)) from exc

    def list_pieces(self, session: UploadSession, cursor: int = 1, page_size: int | None = None) -> list[RemotePiece]:
        self._require(session, LISTABLE_STATES, "list pieces of")
        page_size = page_size or self.page_size
        token = self.authenticator.ensure_authenticated()
        params = ListMultipartPieceParams(mpid=session.id, cookie=cursor, pagesize=page_size)
        result = self.channel.call("listMultipartPiece", params, ListMultipartPieceResult, token=token)
        if result.code != 0 or result.pieces is None:
            raise self.channel.fail(
                ProtocolError, f"invalid code for listMultipartPiece: {result.code}", code=result.code
            )
        return [RemotePiece(index=cursor + position, size=entry.size) for position, entry in enumerate(result.pieces)]

    def count_pieces(self, session: UploadSession) -> int:
        total = 0
        cursor = 1
        while True:
            pieces = self.list_pieces(session, cursor, self.page_size)
            total += len(pieces)
            if len(pieces) < self.page_size:
                return total
            cursor += self.page_size

    def _target_index(self, session: UploadSession, chunk: ChunkDescriptor) -> int:
        if chunk.appending:
            return session.chunk_count

        outcome = self.resolver.resolve(
            chunk.offset,
            session.chunk_count,
            lambda cursor, page_size: self.list_pieces(session, cursor, page_size),
        )
        if isinstance(outcome, ProtocolFailure):
            raise outcome.error
        if isinstance(outcome, NotFound):
            raise self.channel.fail(
                ResolutionError, f"couldn't find chunk with offset: {chunk.offset}", offset=chunk.offset
            )
        if outcome.piece_size != chunk.length:
            # Only the offset decides the target piece; a differing stored size is reported, not rejected.
            log_event(
                {
                    "event": "resolved_piece_size_mismatch",
                    "mpid": session.id,
                    "part": outcome.index,
                    "stored_size": outcome.piece_size,
                    "chunk_length": chunk.length,
                },
                level=logging.WARNING,
            )
        return outcome.index

    def upload_parts(
        self,
        session: UploadSession,
        source: ByteSource,
        chunks: Iterable[ChunkDescriptor],
        progress: ProgressCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> int:
        if not session.accepts_chunks:
            raise self.channel.fail(
                StateError, f"cannot upload parts to multipart upload in state {session.state.value} (mpid={session.id})"
            )

        uploaded = 0
        with open_source(source) as handle:
            for chunk in chunks:
                token = self.authenticator.ensure_authenticated()
                if session.state is SessionState.started:
                    session.state = SessionState.active
                try:
                    part = self._target_index(session, chunk)
                    digest = self.transfer.upload_piece(
                        token, session.id, part, handle, chunk, progress=progress, cancel=cancel
                    )
                except EndpointError:
                    chunk_upload_failures_total.inc()
                    raise

                if chunk.appending:
                    session.chunk_count += 1
                uploaded += 1
                chunks_uploaded_total.inc()
                bytes_uploaded_total.inc(chunk.length)
                log_event(
                    {
                        "event": "piece_uploaded",
                        "mpid": session.id,
                        "part": part,
                        "offset": chunk.offset,
                        "length": chunk.length,
                        "appending": chunk.appending,
                        "sha256": digest,
                        "chunk_count": session.chunk_count,
                    }
                )
        return uploaded

    def complete(self, session: UploadSession) -> None:
        self._require(session, (SessionState.active,), "complete")
        token = self.authenticator.ensure_authenticated()
        result = self.channel.call("completeMultipart", MpidParams(mpid=session.id), CompleteMultipartResult, token=token)
        if result.code != 0:
            raise self.channel.fail(
                ProtocolError, f"couldn't complete multipart upload with mpid({session.id}): {result.code}", code=result.code
            )
        if result.numpieces != session.pieces_filled:
            raise self.channel.fail(
                StateError,
                f"couldn't complete multipart upload with mpid({session.id}): "
                f"remote has {result.numpieces} pieces, expected {session.pieces_filled}",
            )

        session.state = SessionState.completed
        log_event({"event": "multipart_completed", "mpid": session.id, "numpieces": result.numpieces})

    def abort(self, session: UploadSession) -> None:
        self._require(session, (SessionState.started, SessionState.active), "abort")
        token = self.authenticator.ensure_authenticated()
        result = self.channel.call("abortMultipart", MpidParams(mpid=session.id), CodeResult, token=token)
        if result.code != 0:
            raise self.channel.fail(
                ProtocolError, f"couldn't abort multipart upload with mpid({session.id}): {result.code}", code=result.code
            )

        mpid = session.id
        session.id = None
        session.state = SessionState.aborted
        log_event({"event": "multipart_aborted", "mpid": mpid})
