"""The affinity token and the cookie that carries it."""

from dataclasses import asdict, dataclass
from typing import Optional

from django.http import HttpRequest, HttpResponse

from skew_protection.config import VERSION_PATTERN, DeploymentConfig

SAMESITE = "Lax"


@dataclass(frozen=True)
class AffinityToken:
    """Opaque deployment identifier a session is pinned to."""

    value: str

    @staticmethod
    def is_valid(value: Optional[str]) -> bool:
        return bool(value) and VERSION_PATTERN.match(value) is not None


@dataclass(frozen=True)
class CookieDirective:
    """Keyword arguments for `HttpResponse.set_cookie`, applied later."""

    key: str
    value: str
    max_age: int
    path: str = "/"
    secure: bool = False
    httponly: bool = True
    samesite: str = SAMESITE

    def apply(self, response: HttpResponse) -> None:
        response.set_cookie(**asdict(self))


class AffinityCookie:
    """
    Issue and read affinity tokens through a cookie.

    The cookie expires on the client after `max_age` seconds. An expired cookie
    is no longer sent, so expiry looks exactly like a session with no token.
    """

    def __init__(self, name: str, max_age: int, secure: bool = False):
        self.name = name
        self.max_age = max_age
        self.secure = secure

    @classmethod
    def from_config(cls, config: DeploymentConfig) -> "AffinityCookie":
        return cls(config.cookie_name, config.max_age, config.secure_cookie)

    def issue(self, version: str) -> CookieDirective:
        return CookieDirective(
            key=self.name,
            value=version,
            max_age=self.max_age,
            secure=self.secure,
        )

    def raw_value(self, request: HttpRequest) -> Optional[str]:
        return request.COOKIES.get(self.name) or None

    def read(self, request: HttpRequest) -> Optional[AffinityToken]:
        """Return the incoming token, or None if it is missing or malformed."""
        value = self.raw_value(request)
        if not AffinityToken.is_valid(value):
            return None
        return AffinityToken(value)
