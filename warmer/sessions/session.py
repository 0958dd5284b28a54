from __future__ import annotations

import time
from datetime import datetime, timezone
from types import MappingProxyType
from typing import TYPE_CHECKING, Iterable, Mapping, Optional

import httpx

from warmer.sessions.cookies import Cookie, cookies_from_response, from_jar, to_jar

if TYPE_CHECKING:
    from warmer.sessions.storage import SessionStorage


class Session:
    """Cookie state of one (host, customer group) pair.

    Validity is always derived from the cookies and is never stored:

    * the server issued session cookie must be present and unexpired,
    * authenticated sessions additionally need the vary cookie, which the shop
      sets only for logged in customers, present and unexpired,
    * an explicit ``invalidate()`` switches it off until the next ``reset()``.

    Anonymous sessions skip the vary cookie check since guests have nothing to vary on.
    """

    SESSION_COOKIE = "PHPSESSID"
    VARY_COOKIE = "X-Magento-Vary"
    # Value the shop writes into the vary cookie on log out
    DELETED_VALUE = "deleted"

    def __init__(
        self,
        host: str,
        customer_group: Optional[str] = None,
        cookies: Iterable[Cookie] = (),
        created: Optional[datetime] = None,
        invalidated: bool = False,
        storage: Optional["SessionStorage"] = None,
    ) -> None:
        self.host = host
        self.customer_group = customer_group
        self.created = created or datetime.now(timezone.utc)
        self.invalidated = invalidated
        self.storage = storage
        self._cookies: dict[str, Cookie] = {cookie.name: cookie for cookie in cookies}

    @property
    def is_anonymous(self) -> bool:
        return self.customer_group is None

    @property
    def cookies(self) -> Mapping[str, Cookie]:
        return MappingProxyType(self._cookies)

    # --------------------------
    #  Validity
    # --------------------------
    def _live_cookie(self, name: str, now: float) -> Optional[Cookie]:
        cookie = self._cookies.get(name)
        if cookie is None or cookie.is_expired(now):
            return None
        return cookie

    def is_initialized(self, now: Optional[float] = None) -> bool:
        """True once a server issued session cookie has been observed and is still alive."""
        now = time.time() if now is None else now
        return self._live_cookie(self.SESSION_COOKIE, now) is not None

    def is_session_cookie_expired(self, now: Optional[float] = None) -> bool:
        return not self.is_initialized(now)

    def has_vary_cookie(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        cookie = self._live_cookie(self.VARY_COOKIE, now)
        return cookie is not None and cookie.value != self.DELETED_VALUE

    def is_valid(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        if self.invalidated or not self.is_initialized(now):
            return False
        return self.is_anonymous or self.has_vary_cookie(now)

    # --------------------------
    #  Mutation
    # --------------------------
    def reset(self) -> None:
        """Forget all cookies, returning to the uninitialized state."""
        self._cookies = {}
        self.created = datetime.now(timezone.utc)
        self.invalidated = False

    def invalidate(self) -> None:
        """Mark the session unusable and persist that at once for other workers."""
        self.invalidated = True
        self.save()

    def update_cookies(self, cookies: Iterable[Cookie]) -> None:
        for cookie in cookies:
            self._cookies[cookie.name] = cookie

    def replace_cookies(self, cookies: Iterable[Cookie]) -> None:
        self._cookies = {cookie.name: cookie for cookie in cookies}

    def response_logs_out(self, response: httpx.Response) -> bool:
        """True if the response deletes or expires the vary cookie."""
        if self.is_anonymous:
            return False
        for cookie in cookies_from_response(response):
            if cookie.name == self.VARY_COOKIE and (
                cookie.value == self.DELETED_VALUE or cookie.is_expired()
            ):
                return True
        return False

    # --------------------------
    #  Transport helpers
    # --------------------------
    def cookie_header(self, now: Optional[float] = None) -> str:
        now = time.time() if now is None else now
        return "; ".join(
            f"{cookie.name}={cookie.value}"
            for cookie in self._cookies.values()
            if not cookie.is_expired(now)
        )

    def to_jar(self) -> httpx.Cookies:
        return to_jar(self._cookies.values(), self.host)

    def absorb_jar(self, jar: httpx.Cookies) -> None:
        self.replace_cookies(from_jar(jar))

    # --------------------------
    #  Persistence
    # --------------------------
    def save(self) -> None:
        if self.storage is not None:
            self.storage.save(self.host, self.customer_group, self.to_dict())

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "customer_group": self.customer_group,
            "created": self.created.isoformat(),
            "invalidated": self.invalidated,
            "cookies": [cookie.to_dict() for cookie in self._cookies.values()],
        }

    @classmethod
    def from_dict(cls, data: dict, storage: Optional["SessionStorage"] = None) -> "Session":
        created = data.get("created")
        return cls(
            host=data["host"],
            customer_group=data.get("customer_group"),
            cookies=[Cookie.from_dict(item) for item in data.get("cookies") or []],
            created=datetime.fromisoformat(created) if created else None,
            invalidated=bool(data.get("invalidated", False)),
            storage=storage,
        )

    def describe(self) -> dict:
        return {
            "customer_group": self.customer_group or "anon",
            "host": self.host,
            "created": self.created,
            "valid": self.is_valid(),
        }

    def __str__(self) -> str:
        return "Sess {{ customerGroup: {}, host: {}, created: {}, {} }}".format(
            self.customer_group or "anon",
            self.host,
            self.created.strftime("%Y.%m.%d %H:%M:%S"),
            "VALID" if self.is_valid() else "EXPIRED",
        )
