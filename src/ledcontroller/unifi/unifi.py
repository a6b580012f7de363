"""Session-authenticated client for the UniFi controller API."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from http.cookiejar import DefaultCookiePolicy
from threading import Lock
from typing import Any, TypeVar

import requests  # type: ignore[import-untyped]
from pydantic import ValidationError
from requests import Response, Session
from requests.adapters import HTTPAdapter

from ..schemas import ControllerConfig
from .utils import logger, suppress_insecure_request_warning

T = TypeVar("T")

USER_AGENT = "UniFi LED Controller/1.0"
CSRF_HEADER = "X-Csrf-Token"
LOGIN_PATHS = ("/proxy/network/api/auth/login", "/api/auth/login", "/api/login")
API_PREFIXES = ("/proxy/network/api", "/api")

HTTP_UNAUTHORIZED = 401
HTTP_NOT_FOUND = 404


class UniFiAPIError(RuntimeError):
    """Raised when an HTTP request to the UniFi API fails."""


class InvalidConfigurationError(UniFiAPIError):
    """Raised when the controller config has no base URL."""


class AuthenticationFailedError(UniFiAPIError):
    """Raised when no login endpoint accepted the credentials."""


class RequestFailedError(UniFiAPIError):
    """Raised when every candidate path for an operation failed."""


class _SessionRejected(Exception):
    """Internal signal: the controller answered 401 for the cached session."""

    def __init__(self, path: str) -> None:
        super().__init__(path)
        self.path = path


@dataclass(frozen=True)
class SessionState:
    """Cookies and CSRF token issued by a successful login."""

    cookies: tuple[tuple[str, str], ...] = ()
    csrf_token: str | None = None

    def headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.cookies:
            headers["Cookie"] = "; ".join(
                f"{name}={value}" for name, value in self.cookies
            )
        if self.csrf_token:
            headers[CSRF_HEADER] = self.csrf_token
        return headers


def api_paths(suffix: str) -> list[str]:
    """Return the equivalent controller paths for an API suffix, newest first."""
    suffix = suffix.lstrip("/")
    return [f"{prefix}/{suffix}" for prefix in API_PREFIXES]


def read_csrf_token(headers: Mapping[str, str]) -> str | None:
    """Look up the CSRF header exact-case first, then case-insensitively."""
    for name in ("x-csrf-token", CSRF_HEADER):
        value = headers.get(name)
        if value:
            return value
    for name, value in headers.items():
        if name.lower() == "x-csrf-token" and value:
            return value
    return None


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


class UniFiClient:
    """Client that owns authenticated sessions for any number of controller configs.

    Session state is cached per ``ControllerConfig.session_key`` and replaced
    wholesale on login or invalidation. Two transport profiles are kept: one
    that verifies certificates and one that accepts self-signed controllers.
    """

    def __init__(
        self,
        *,
        request_timeout: float = 15.0,
        resource_timeout: float = 30.0,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        self.request_timeout = request_timeout
        self.resource_timeout = resource_timeout
        self._session_factory = session_factory or requests.Session
        self._sessions: dict[bool, Session] = {}
        self._states: dict[str, SessionState] = {}
        self._state_lock = Lock()
        self._login_locks: dict[str, Lock] = {}

    # -- transport -----------------------------------------------------------

    def establish_connection(self, *, verify_ssl: bool = True) -> Session:
        """Initialize (or reuse) the requests.Session for a transport profile."""
        session = self._sessions.get(verify_ssl)
        if session is not None:
            return session

        session = self._session_factory()
        session.verify = verify_ssl
        adapter = HTTPAdapter(pool_connections=1, pool_maxsize=1, pool_block=True)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        # Authentication travels only through the cached SessionState.
        session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        session.headers.update({"User-Agent": USER_AGENT})

        self._sessions[verify_ssl] = session
        return session

    def session_for(self, config: ControllerConfig) -> Session:
        verify_ssl = not config.accept_invalid_certificates
        suppress_insecure_request_warning(verify_ssl)
        return self.establish_connection(verify_ssl=verify_ssl)

    @property
    def timeout(self) -> tuple[float, float]:
        return (self.request_timeout, self.resource_timeout)

    def close(self) -> None:
        """Close the underlying sessions if they were created."""
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()

    # -- session state -------------------------------------------------------

    def session_state(self, config: ControllerConfig) -> SessionState | None:
        with self._state_lock:
            return self._states.get(config.session_key)

    def invalidate(self, config: ControllerConfig) -> None:
        """Forget cookies and CSRF token for the config's key."""
        with self._state_lock:
            removed = self._states.pop(config.session_key, None)
        if removed is not None:
            logger.bind(base_url=config.base_url, username=config.username).info(
                "Cleared cached controller session"
            )

    def _store(self, config: ControllerConfig, state: SessionState) -> None:
        with self._state_lock:
            self._states[config.session_key] = state

    def _login_lock(self, key: str) -> Lock:
        with self._state_lock:
            lock = self._login_locks.get(key)
            if lock is None:
                lock = self._login_locks[key] = Lock()
            return lock

    @staticmethod
    def _require_base_url(config: ControllerConfig) -> str:
        if not config.base_url:
            logger.error("No controller base URL configured")
            raise InvalidConfigurationError("Controller base URL is not configured.")
        return config.base_url.rstrip("/")

    # -- authentication ------------------------------------------------------

    def ensure_authenticated(self, config: ControllerConfig) -> None:
        """Log in unless a session is already cached for this config."""
        self._require_base_url(config)
        if self.session_state(config) is not None:
            return

        with self._login_lock(config.session_key):
            # Another caller may have logged in while we waited.
            if self.session_state(config) is not None:
                return
            self.login(config)

    def login(self, config: ControllerConfig) -> SessionState:
        """Try each known login endpoint until one issues a session."""
        base_url = self._require_base_url(config)
        session = self.session_for(config)
        # Some controller firmware parses the body naively; username must come first.
        body = json.dumps(
            {"username": config.username, "password": config.password},
            separators=(",", ":"),
        )
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "Accept": "*/*",
        }

        last_error: Exception | None = None
        for path in LOGIN_PATHS:
            url = f"{base_url}{path}"
            log = logger.bind(url=url, username=config.username)
            log.info("Attempting controller login")
            try:
                response = session.request(
                    method="POST",
                    url=url,
                    data=body,
                    headers=headers,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                log.warning("Login transport error: {}", exc)
                last_error = exc
                continue

            if not _is_success(response.status_code):
                log.bind(status=response.status_code).warning(
                    "Login rejected by controller"
                )
                last_error = AuthenticationFailedError(
                    f"Login via {path} failed ({response.status_code})"
                )
                continue

            state = SessionState(
                cookies=tuple(response.cookies.items()),
                csrf_token=read_csrf_token(response.headers),
            )
            self._store(config, state)
            log.bind(
                cookie_count=len(state.cookies),
                csrf=state.csrf_token is not None,
            ).info("Controller login succeeded via {}", path)
            return state

        if isinstance(last_error, AuthenticationFailedError):
            raise last_error
        raise AuthenticationFailedError(
            f"Unable to log in to {base_url}: {last_error or 'no login endpoint responded'}"
        ) from last_error

    # -- requests ------------------------------------------------------------

    def send(
        self,
        config: ControllerConfig,
        method: str,
        paths: Sequence[str],
        *,
        payload: Any | None = None,
        parse: Callable[[Response], T] | None = None,
        operation: str = "request",
    ) -> T | Response:
        """Issue an authenticated request, falling back across equivalent paths.

        A 401 drops the cached session and repeats the whole operation once
        after logging in again; a second 401 is reported as a failure.
        """
        base_url = self._require_base_url(config)
        reauthenticated = False
        while True:
            self.ensure_authenticated(config)
            try:
                return self._walk_paths(
                    config, base_url, method, paths, payload, parse, operation
                )
            except _SessionRejected as rejected:
                self.invalidate(config)
                log = logger.bind(operation=operation, path=rejected.path)
                if reauthenticated:
                    log.error("Controller rejected the renewed session")
                    raise RequestFailedError(
                        f"{operation} unauthorized after re-authentication"
                    ) from None
                log.warning("Session expired; re-authenticating once")
                reauthenticated = True

    def _walk_paths(
        self,
        config: ControllerConfig,
        base_url: str,
        method: str,
        paths: Sequence[str],
        payload: Any | None,
        parse: Callable[[Response], T] | None,
        operation: str,
    ) -> T | Response:
        session = self.session_for(config)
        state = self.session_state(config) or SessionState()
        headers = state.headers()
        if payload is not None:
            headers["Content-Type"] = "application/json"

        last_error: Exception | None = None
        for path in paths:
            url = f"{base_url}/{path.lstrip('/')}"
            log = logger.bind(operation=operation, url=url)
            log.debug("Sending {} request", method.upper())
            try:
                response = session.request(
                    method=method.upper(),
                    url=url,
                    json=payload,
                    headers=headers,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                log.warning("Transport error: {}", exc)
                last_error = RequestFailedError(f"{operation} via {path} failed: {exc}")
                last_error.__cause__ = exc
                continue

            status = response.status_code
            if status == HTTP_NOT_FOUND:
                log.info("Got 404; trying next path")
                last_error = RequestFailedError(f"{operation} not found at {path} (404)")
                continue
            if status == HTTP_UNAUTHORIZED:
                raise _SessionRejected(path)
            if not _is_success(status):
                log.bind(status=status).error(
                    "Request failed: {}", response.text[:500]
                )
                last_error = RequestFailedError(
                    f"{operation} via {path} failed ({status})"
                )
                continue

            if parse is None:
                return response
            try:
                return parse(response)
            except (ValueError, TypeError, OverflowError, ValidationError) as exc:
                log.error("Failed to decode response: {}", exc)
                last_error = RequestFailedError(
                    f"{operation} via {path} returned an undecodable body"
                )
                last_error.__cause__ = exc
                continue

        raise last_error or RequestFailedError(f"{operation} failed on every path")


__all__ = [
    "USER_AGENT",
    "LOGIN_PATHS",
    "UniFiAPIError",
    "InvalidConfigurationError",
    "AuthenticationFailedError",
    "RequestFailedError",
    "SessionState",
    "UniFiClient",
    "api_paths",
    "read_csrf_token",
]
