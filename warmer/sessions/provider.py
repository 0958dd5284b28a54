from __future__ import annotations

import re
from typing import Dict, Optional, Tuple

import httpx

from warmer.http.client_factory import ClientFactory
from warmer.monitoring.metrics_server import SESSION_BOOTSTRAPS, SESSION_FAILURES
from warmer.sessions.credentials import CredentialsProvider
from warmer.sessions.session import Session
from warmer.sessions.storage import SessionStorage
from warmer.utils.config_loader import DEFAULT_TIMEOUT
from warmer.utils.logger import log_event
from warmer.utils.url_utils import build_url


class SessionError(RuntimeError):
    """A usable session could not be established."""


class AuthenticationError(SessionError):
    """The shop did not accept the log in of a customer group account."""


class SessionProvider:
    """Hands out valid sessions per (host, customer group), logging in when needed.

    Sessions are persisted right after they are established so that other
    requests and other worker processes sharing the storage reuse them.
    """

    LOGIN_FORM_PATH = "/customer/account/login/"
    LOGIN_POST_PATH = "/customer/account/loginPost/"
    FORM_KEY_COOKIE = "form_key"
    FORM_KEY_REGEX = re.compile(r'name="form_key"\s+type="hidden"\s+value="([^"]+)"')

    def __init__(
        self,
        credentials: CredentialsProvider,
        client_factory: ClientFactory,
        storage: Optional[SessionStorage] = None,
        request_timeout: float = DEFAULT_TIMEOUT,
        login_scheme: str = "https",
    ) -> None:
        self.credentials = credentials
        self.client_factory = client_factory
        self.storage = storage or SessionStorage()
        self.request_timeout = request_timeout
        self.login_scheme = login_scheme
        self._sessions: Dict[Tuple[str, Optional[str]], Session] = {}

    def _url(self, session: Session, path: str) -> str:
        return build_url(self.login_scheme, session.host, path)

    def _form_key(self, client: httpx.AsyncClient, response: httpx.Response) -> Optional[str]:
        form_key = client.cookies.get(self.FORM_KEY_COOKIE)
        if form_key:
            return form_key

        match = self.FORM_KEY_REGEX.search(response.text)
        if match:
            return match.group(1).strip()
        return None

    async def _authenticate(self, session: Session) -> None:
        log_event("DEBUG", "Sessions", "AUTH-START", session.describe())

        # Clear old cookies just to be sure.
        session.reset()

        async with self.client_factory.create_session_client(
            session.to_jar(), timeout=self.request_timeout
        ) as client:
            try:
                response = await client.get(self._url(session, self.LOGIN_FORM_PATH))
            except httpx.HTTPError as exc:
                raise SessionError(
                    f'Could not open log in page for host "{session.host}": {exc}'
                ) from exc

            if response.status_code != 200:
                raise SessionError(
                    f'Could not open log in page for host "{session.host}", '
                    f"status code {response.status_code}"
                )

            session.absorb_jar(client.cookies)

            # The log in page is uncacheable and always starts a fresh session,
            # so for guests having its cookie is all we need.
            if session.is_anonymous:
                if not session.is_initialized():
                    raise SessionError(f'No session cookie received from host "{session.host}"')
                return

            form_key = self._form_key(client, response)
            if not form_key:
                raise SessionError(f'Could not get log in form key on host "{session.host}"')

            username, password = self.credentials.get_credentials(session.customer_group)

            try:
                response = await client.post(
                    self._url(session, self.LOGIN_POST_PATH),
                    data={
                        "form_key": form_key,
                        "login[username]": username,
                        "login[password]": password,
                    },
                )
            except httpx.HTTPError as exc:
                raise SessionError(
                    f'Log in request failed for host "{session.host}": {exc}'
                ) from exc

            session.absorb_jar(client.cookies)

        if response.status_code != 200:
            raise AuthenticationError(
                f"Unexpected status code received for log in: {response.status_code}"
            )

        if not session.is_valid():
            raise AuthenticationError(
                f"Did not log in successfully as customer group {session.customer_group} "
                f"at host {session.host}, no vary cookie found"
            )

    async def _create_session(self, host: str, customer_group: Optional[str]) -> Session:
        # Remove any preexisting session with these parameters
        self.storage.delete(host, customer_group)

        session = Session(host, customer_group, storage=self.storage)
        kind = "anonymous" if session.is_anonymous else "customer"
        log_event("DEBUG", "Sessions", "CREATED", session.describe())

        try:
            await self._authenticate(session)
        except SessionError:
            SESSION_FAILURES.labels(kind=kind).inc()
            raise

        SESSION_BOOTSTRAPS.labels(kind=kind).inc()
        log_event("DEBUG", "Sessions", "INITIALIZED", session.describe())

        # Save at once so it can be reused by concurrent requests and processes.
        session.save()
        return session

    def load_session(self, host: str, customer_group: Optional[str] = None) -> Optional[Session]:
        data = self.storage.load(host, customer_group)
        if data is None:
            return None
        session = Session.from_dict(data, storage=self.storage)
        log_event("DEBUG", "Sessions", "LOADED", session.describe())
        return session

    def sync_invalidation(self, session: Session) -> None:
        """Adopt an invalidation persisted by another worker for this session's key."""
        data = self.storage.load(session.host, session.customer_group)
        if data is not None and data.get("invalidated") and not session.invalidated:
            session.invalidated = True
            log_event("DEBUG", "Sessions", "INVALIDATED", session.describe(), note="by another worker")

    def _current_session(self, host: str, customer_group: Optional[str]) -> Optional[Session]:
        session = self._sessions.get((host, customer_group))
        if session is not None:
            self.sync_invalidation(session)
            if session.is_valid():
                return session

        return self.load_session(host, customer_group)

    async def get_session(
        self,
        host: str,
        customer_group: Optional[str] = None,
        reauthorize: bool = False,
    ) -> Session:
        """Return a valid session, creating a fresh one if needed.

        Every caller asking for the same key gets the same ``Session`` object
        until it stops being valid, so an invalidation is seen by all of them.

        :param host: Shop host name (with port, if any)
        :param customer_group: None for a public/anonymous session
        :param reauthorize: Force a new log in even if a valid session exists
        :raises SessionError: when no session could be established
        """
        session = None if reauthorize else self._current_session(host, customer_group)
        if session is None or not session.is_valid():
            session = await self._create_session(host, customer_group)

        self._sessions[(host, customer_group)] = session
        return session
