class EndpointError(Exception):
    """Base failure raised by the storage client.

    Carries the last outbound query and the last raw response seen by the
    request channel so callers can inspect what was on the wire.
    """

    error_class = "endpoint_error"

    def __init__(self, detail: str, query: str | None = None, response: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.query = query
        self.response = response


class AuthenticationError(EndpointError):
    error_class = "authentication_error"


class ProtocolError(EndpointError):
    error_class = "protocol_error"

    def __init__(
        self, detail: str, query: str | None = None, response: str | None = None, code: int | None = None
    ) -> None:
        super().__init__(detail, query=query, response=response)
        self.code = code


class IntegrityError(EndpointError):
    error_class = "integrity_error"


class StateError(EndpointError):
    error_class = "state_error"


class ResolutionError(EndpointError):
    error_class = "resolution_error"

    def __init__(self, detail: str, offset: int, query: str | None = None, response: str | None = None) -> None:
        super().__init__(detail, query=query, response=response)
        self.offset = offset


class TransportError(EndpointError):
    error_class = "transport_error"


class UploadCancelled(EndpointError):
    error_class = "cancelled"


class ShortReadError(IntegrityError):
    error_class = "short_read"
