from __future__ import annotations

from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Optional

import httpx
from loguru import logger

from warmer.utils.config_loader import DEFAULT_TIMEOUT
from warmer.utils.url_utils import rewrite_to_gateway


USER_AGENT = "MageSuiteWarmerUpper/1.0"


def _cookieless_jar() -> CookieJar:
    # Rejects every domain, so responses never leak cookies into the client
    # and from there into requests made for other sessions.
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


class ClientFactory:
    """Builds the ``httpx.AsyncClient`` instances used by the worker.

    When ``varnish_uri`` is set, warm-up requests are re-targeted to that cache
    node over the local network, keeping the shop's ``Host`` header and the
    original scheme in ``X-Forwarded-Proto``. That saves bandwidth and TLS
    negotiation on every request.
    """

    def __init__(
        self,
        varnish_uri: Optional[str] = None,
        log_requests: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.varnish_uri = varnish_uri
        self.log_requests = log_requests
        self.transport = transport

    async def _rewrite_to_varnish(self, request: httpx.Request) -> None:
        if self.varnish_uri is None:
            return
        original = request.url
        request.headers["Host"] = original.netloc.decode("ascii")
        request.headers["X-Forwarded-Proto"] = original.scheme
        request.url = httpx.URL(rewrite_to_gateway(str(original), self.varnish_uri))

    async def _log_request(self, request: httpx.Request) -> None:
        logger.debug(f">>>>>>>> {request.method} {request.url} headers={dict(request.headers)}")

    async def _log_response(self, response: httpx.Response) -> None:
        request = response.request
        logger.debug(
            f"<<<<<<<< {request.method} {request.url} -> {response.status_code} "
            f"headers={dict(response.headers)}"
        )

    def _event_hooks(self, rewrite: bool) -> dict:
        request_hooks = []
        response_hooks = []
        if rewrite and self.varnish_uri is not None:
            request_hooks.append(self._rewrite_to_varnish)
        if self.log_requests:
            request_hooks.append(self._log_request)
            response_hooks.append(self._log_response)
        return {"request": request_hooks, "response": response_hooks}

    def create_warmup_client(self, timeout: float = DEFAULT_TIMEOUT) -> httpx.AsyncClient:
        """Client for warm-up requests: no redirects, no shared cookie jar."""
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=timeout),
            follow_redirects=False,
            cookies=_cookieless_jar(),
            headers={"User-Agent": USER_AGENT},
            event_hooks=self._event_hooks(rewrite=True),
            transport=self.transport,
        )

    def create_session_client(
        self,
        cookies: httpx.Cookies,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> httpx.AsyncClient:
        """Short-lived client for a log in flow, owning its own cookie jar."""
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=timeout),
            follow_redirects=True,
            max_redirects=4,
            cookies=cookies,
            headers={"User-Agent": USER_AGENT},
            event_hooks=self._event_hooks(rewrite=False),
            transport=self.transport,
        )
