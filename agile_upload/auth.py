from agile_upload.errors import AuthenticationError, ProtocolError
from agile_upload.events import log_event
from agile_upload.models import AuthToken
from agile_upload.schemas import LoginParams
from agile_upload.transport import RequestChannel


class SessionAuthenticator:
    """Single choke point for the auth token.

    Every remote operation asks ``ensure_authenticated`` for a token first; a
    login exchange only happens when nothing is cached.
    """

    def __init__(self, channel: RequestChannel, username: str, password: str) -> None:
        self.channel = channel
        self.username = username
        self._password = password
        self._token: AuthToken | None = None
        channel.on_auth_rejected = self.invalidate

    @property
    def token(self) -> AuthToken | None:
        return self._token

    def ensure_authenticated(self) -> AuthToken:
        if self._token is not None:
            return self._token

        try:
            result = self.channel.execute("login", LoginParams(username=self.username, password=self._password))
        except ProtocolError as exc:
            raise self.channel.fail(AuthenticationError, f"login failed: {exc.detail}") from exc

        if not isinstance(result, list) or not result or not isinstance(result[0], str) or not result[0]:
            raise self.channel.fail(AuthenticationError, f"null or empty auth token for user: {self.username}")

        self._token = AuthToken(result[0])
        log_event({"event": "login", "username": self.username})
        return self._token

    def invalidate(self) -> None:
        self._token = None

    def logout(self) -> None:
        token = self._token
        try:
            if token is None:
                return
            result = self.channel.execute("logout", token=token)
            if result is None:
                raise self.channel.fail(ProtocolError, "couldn't logout")
            self.channel.expect_code("logout", result)
            log_event({"event": "logout", "username": self.username})
        finally:
            self._token = None
            self.channel.release_connections()
