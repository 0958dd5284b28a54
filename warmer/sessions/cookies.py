from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from email.utils import parsedate_to_datetime
from http.cookiejar import Cookie as JarCookie
from http.cookies import CookieError, SimpleCookie
from typing import Iterable, List, Optional

import httpx
from loguru import logger


@dataclass(frozen=True)
class Cookie:
    name: str
    value: str
    domain: str = ""
    path: str = "/"
    # Unix timestamp; None means it lives as long as the browser session.
    expires: Optional[float] = None
    secure: bool = False

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires is None:
            return False
        return self.expires <= (time.time() if now is None else now)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Cookie":
        return cls(
            name=data["name"],
            value=data["value"],
            domain=data.get("domain") or "",
            path=data.get("path") or "/",
            expires=data.get("expires"),
            secure=bool(data.get("secure", False)),
        )


def _expiry(morsel, now: float) -> Optional[float]:
    # Max-Age wins over Expires, same as browsers.
    max_age = morsel["max-age"]
    if max_age:
        try:
            return now + int(max_age)
        except ValueError:
            pass

    expires = morsel["expires"]
    if expires:
        try:
            return parsedate_to_datetime(expires).timestamp()
        except (TypeError, ValueError):
            return None
    return None


def parse_set_cookie(header: str, now: Optional[float] = None) -> List[Cookie]:
    """Parse a single ``Set-Cookie`` header value into cookies."""
    now = time.time() if now is None else now
    parsed = SimpleCookie()
    try:
        parsed.load(header)
    except CookieError:
        logger.debug(f"Ignoring malformed Set-Cookie header: {header!r}")
        return []

    return [
        Cookie(
            name=name,
            value=morsel.value,
            domain=morsel["domain"] or "",
            path=morsel["path"] or "/",
            expires=_expiry(morsel, now),
            secure=bool(morsel["secure"]),
        )
        for name, morsel in parsed.items()
    ]


def cookies_from_response(response: httpx.Response, now: Optional[float] = None) -> List[Cookie]:
    cookies: List[Cookie] = []
    for header in response.headers.get_list("set-cookie"):
        cookies.extend(parse_set_cookie(header, now))
    return cookies


def to_jar(cookies: Iterable[Cookie], host: str) -> httpx.Cookies:
    """Build an httpx cookie jar, e.g. to seed a login client."""
    jar = httpx.Cookies()
    default_domain = host.split(":", 1)[0]
    for cookie in cookies:
        domain = cookie.domain or default_domain
        jar.jar.set_cookie(
            JarCookie(
                version=0,
                name=cookie.name,
                value=cookie.value,
                port=None,
                port_specified=False,
                domain=domain,
                domain_specified=bool(cookie.domain),
                domain_initial_dot=domain.startswith("."),
                path=cookie.path,
                path_specified=True,
                secure=cookie.secure,
                expires=int(cookie.expires) if cookie.expires is not None else None,
                discard=cookie.expires is None,
                comment=None,
                comment_url=None,
                rest={},
            )
        )
    return jar


def from_jar(jar: httpx.Cookies) -> List[Cookie]:
    return [
        Cookie(
            name=item.name,
            value=item.value or "",
            domain=item.domain if item.domain_specified else "",
            path=item.path or "/",
            expires=float(item.expires) if item.expires is not None else None,
            secure=bool(item.secure),
        )
        for item in jar.jar
    ]
