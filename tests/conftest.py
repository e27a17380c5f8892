import hashlib
import json
from collections.abc import Callable

import httpx
import pytest

from agile_upload.endpoint import StorageEndpoint

BASE_URL = "http://agile.test"


class FakeAgileService:
    """In-memory stand-in for the storage endpoint, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.token = "tok-1"
        self.next_mpid = "mp-42"
        self.multiparts: dict[str, dict[int, bytes]] = {}
        self.multipart_paths: dict[str, str] = {}
        self.directories: dict[str, dict[str, bytes]] = {}
        self.rpc_calls: list[tuple[str, dict]] = []
        self.piece_requests: list[httpx.Request] = []
        self.file_forms: list[dict[str, bytes]] = []
        self.results: dict[str, object] = {}
        self.rpc_errors: dict[str, str] = {}
        self.http_status: dict[str, int] = {}
        self.corrupt_in_transit = False
        self.tamper_ack: Callable[[dict[str, str]], None] | None = None

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path in self.http_status:
            return httpx.Response(self.http_status[path], text="service unavailable")
        if path == "/jsonrpc":
            return self._rpc(request)
        if path == "/multipart/piece":
            return self._piece(request)
        if path == "/post/file":
            return self._file(request)
        return httpx.Response(404, text="not found")

    def methods(self) -> list[str]:
        return [method for method, _ in self.rpc_calls]

    def calls_of(self, method: str) -> list[dict]:
        return [params for name, params in self.rpc_calls if name == method]

    def seed_pieces(self, mpid: str, pieces: list[bytes]) -> None:
        self.multiparts[mpid] = {index: data for index, data in enumerate(pieces, start=1)}

    def _reply(self, message: dict, result: object) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": message["id"], "result": result})

    def _rpc(self, request: httpx.Request) -> httpx.Response:
        message = json.loads(request.content)
        method = message["method"]
        params = message.get("params", {})
        self.rpc_calls.append((method, params))

        if method in self.rpc_errors:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": message["id"], "error": self.rpc_errors[method]})
        if method in self.results:
            return self._reply(message, self.results[method])
        if method == "login":
            return self._reply(message, [self.token])
        if params.get("token") != self.token or request.headers.get("X-Agile-Authorization") != self.token:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": message["id"], "error": "invalid token"})

        return self._reply(message, self._dispatch(method, params))

    def _dispatch(self, method: str, params: dict) -> object:
        mpid = params.get("mpid")
        if method == "logout":
            return 0
        if method == "noop":
            return 0
        if method == "createMultipart":
            self.multiparts[self.next_mpid] = {}
            self.multipart_paths[self.next_mpid] = params["path"]
            return {"mpid": self.next_mpid}
        if method == "restartMultipart":
            return {"code": 0 if mpid in self.multiparts else -1}
        if method == "getMultipartStatus":
            return {"code": 0, "state": 1} if mpid in self.multiparts else {"code": -1}
        if method == "listMultipartPiece":
            pieces = self.multiparts.get(mpid)
            if pieces is None:
                return {"code": -1}
            cursor = int(params["cookie"])
            window = range(cursor, cursor + int(params["pagesize"]))
            return {"code": 0, "pieces": [{"size": len(pieces[i])} for i in window if i in pieces]}
        if method == "completeMultipart":
            pieces = self.multiparts.get(mpid)
            if pieces is None:
                return {"code": -1, "numpieces": 0}
            return {"code": 0, "numpieces": len(pieces)}
        if method == "abortMultipart":
            if self.multiparts.pop(mpid, None) is None:
                return {"code": -1}
            return {"code": 0}
        if method == "makeDir2":
            if params["path"] in self.directories:
                return 1
            self.directories[params["path"]] = {}
            return 0
        if method == "deleteDir":
            return 0 if self.directories.pop(params["path"], None) is not None else -1
        if method == "deleteFile":
            directory, _, name = params["path"].rpartition("/")
            return 0 if self.directories.get(directory, {}).pop(name, None) is not None else -1
        if method == "listFile":
            return {"list": [{"name": name, "type": 1} for name in sorted(self.directories.get(params["path"], {}))]}
        if method == "stat":
            directory, _, name = params["path"].rpartition("/")
            found = params["path"] in self.directories or name in self.directories.get(directory, {})
            return {"code": 0 if found else -1}
        raise AssertionError(f"unexpected method: {method}")

    def _ack(self, body: bytes) -> httpx.Response:
        headers = {
            "X-Agile-Status": "0",
            "X-Agile-Size": str(len(body)),
            "X-Agile-Checksum": hashlib.sha256(body).hexdigest(),
        }
        if self.tamper_ack is not None:
            self.tamper_ack(headers)
        return httpx.Response(200, headers=headers)

    def _received(self, body: bytes) -> bytes:
        if self.corrupt_in_transit and body:
            return bytes([body[0] ^ 0x01]) + body[1:]
        return body

    def _piece(self, request: httpx.Request) -> httpx.Response:
        self.piece_requests.append(request)
        if request.headers.get("X-Agile-Authorization") != self.token:
            return httpx.Response(401)
        mpid = request.headers["X-Agile-Multipart"]
        part = int(request.headers["X-Agile-Part"])
        body = self._received(request.content)
        self.multiparts.setdefault(mpid, {})[part] = body
        return self._ack(body)

    def _file(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("X-Agile-Authorization") != self.token:
            return httpx.Response(401)
        boundary = request.headers["content-type"].split("boundary=", 1)[1].encode("ascii")
        fields: dict[str, bytes] = {}
        for part in request.content.split(b"--" + boundary):
            raw_headers, separator, body = part.partition(b"\r\n\r\n")
            if not separator:
                continue
            name = raw_headers.decode("utf-8").split('name="', 1)[1].split('"', 1)[0]
            fields[name] = body[:-2] if body.endswith(b"\r\n") else body
        self.file_forms.append(fields)

        data = self._received(fields["uploadFile"])
        directory = fields["directory"].decode("utf-8")
        self.directories.setdefault(directory, {})[fields["basename"].decode("utf-8")] = data
        return self._ack(data)


@pytest.fixture
def service() -> FakeAgileService:
    return FakeAgileService()


@pytest.fixture
def endpoint(service: FakeAgileService):
    storage = StorageEndpoint(
        BASE_URL,
        "uploader",
        "s3cret",
        transport=httpx.MockTransport(service.handle),
        page_size=100,
        read_block_size=4,
    )
    yield storage
    storage.channel.close()
