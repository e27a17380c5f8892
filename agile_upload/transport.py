import json
import time
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from agile_upload.errors import (
    AuthenticationError,
    EndpointError,
    ProtocolError,
    ShortReadError,
    TransportError,
    UploadCancelled,
)
from agile_upload.events import log_error
from agile_upload.metrics import rpc_request_duration_seconds
from agile_upload.models import AuthToken
from agile_upload.schemas import RpcRequest
from agile_upload.tracing import tracer

AUTH_HEADER = "X-Agile-Authorization"
JSON_RPC_PATH = "/jsonrpc"
REDACTED_PARAMS = ("password", "token")
AUTH_REJECTED_STATUSES = frozenset({401, 403})

ResultT = TypeVar("ResultT", bound=BaseModel)


def _validation_detail(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "result"
    return f"{location}: {first.get('msg')}"


class RequestChannel:
    """JSON-RPC channel to the storage endpoint.

    Keeps the last query sent and the last raw response received so every
    failure can be reported with what was actually on the wire. Not thread-safe.
    """

    def __init__(
        self,
        endpoint_url: str,
        timeout_seconds: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client = self._build_client()
        self._request_id = 0
        self.last_query: str | None = None
        self.last_response: str | None = None
        self.on_auth_rejected: Callable[[], None] | None = None

    def _build_client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout_seconds, transport=self._transport)

    def url(self, path: str) -> str:
        return f"{self.endpoint_url}{path}"

    def fail(self, error_cls: type[EndpointError], detail: str, **kwargs) -> EndpointError:
        return log_error(error_cls(detail, query=self.last_query, response=self.last_response, **kwargs))

    def send(self, method: str, path: str, **kwargs) -> httpx.Response:
        self.last_response = None
        try:
            response = self._client.request(method, self.url(path), **kwargs)
        except (UploadCancelled, ShortReadError) as exc:
            # Raised by the body reader while httpx is streaming the request.
            raise self.fail(type(exc), exc.detail) from exc
        except httpx.TransportError as exc:
            raise self.fail(TransportError, f"request to {path} failed: {exc}") from exc
        self.last_response = response.text
        if response.status_code in AUTH_REJECTED_STATUSES:
            if self.on_auth_rejected is not None:
                self.on_auth_rejected()
            raise self.fail(AuthenticationError, f"authorization rejected with status: {response.status_code} from {path}")
        return response

    def execute(self, method: str, params: BaseModel | dict | None = None, token: AuthToken | None = None) -> Any:
        payload = params.model_dump() if isinstance(params, BaseModel) else dict(params or {})
        headers = {"Content-Type": "application/json"}
        if token is not None:
            payload["token"] = token.value
            headers[AUTH_HEADER] = token.value

        self._request_id += 1
        message = RpcRequest(method=method, params=payload, id=self._request_id)
        redacted = {key: ("***" if key in REDACTED_PARAMS else value) for key, value in payload.items()}
        self.last_query = message.model_copy(update={"params": redacted}).model_dump_json()

        start = time.perf_counter()
        with tracer.start_as_current_span(f"rpc {method}", attributes={"rpc.system": "jsonrpc", "rpc.method": method}) as span:
            response = self.send("POST", JSON_RPC_PATH, content=message.model_dump_json(), headers=headers)
            span.set_attribute("http.status_code", response.status_code)
        rpc_request_duration_seconds.labels(method=method).observe(time.perf_counter() - start)

        if response.status_code != 200:
            raise self.fail(ProtocolError, f"got status: {response.status_code} from method: {method}")
        try:
            body = json.loads(self.last_response or "")
        except json.JSONDecodeError as exc:
            raise self.fail(ProtocolError, f"malformed response body from method: {method}") from exc
        if not isinstance(body, dict):
            raise self.fail(ProtocolError, f"response from method: {method} is not an object")
        if body.get("error") is not None:
            raise self.fail(ProtocolError, f"method: {method} returned error: {body['error']}")
        if "result" not in body:
            raise self.fail(ProtocolError, f"no result field from method: {method}")
        return body["result"]

    def call(
        self,
        method: str,
        params: BaseModel | dict | None,
        result_model: type[ResultT],
        token: AuthToken | None = None,
    ) -> ResultT:
        result = self.execute(method, params, token=token)
        try:
            return result_model.model_validate(result)
        except ValidationError as exc:
            raise self.fail(ProtocolError, f"invalid result from method: {method} ({_validation_detail(exc)})") from exc

    def expect_code(self, method: str, result: Any, accepted: frozenset[int] = frozenset({0})) -> int:
        if isinstance(result, bool) or not isinstance(result, int):
            raise self.fail(ProtocolError, f"no result code from method: {method}")
        if result not in accepted:
            raise self.fail(ProtocolError, f"method: {method} failed with code: {result}", code=result)
        return result

    def release_connections(self) -> None:
        self._client.close()
        self._client = self._build_client()

    def close(self) -> None:
        self._client.close()
