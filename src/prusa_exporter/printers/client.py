"""Authenticated HTTP access to a single PrusaLink endpoint.

The client is thin: one GET, one timeout, no retries.  It does
not look at the HTTP status code; a non-2xx body is handed back as-is and
normally fails JSON decoding one layer up.  A retry is simply the next
scrape.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from typing import TYPE_CHECKING, Optional

import requests
from requests.auth import AuthBase, HTTPDigestAuth
from requests.exceptions import RequestException

from prusa_exporter.printers.base import NetworkError

if TYPE_CHECKING:
    from prusa_exporter.config import TargetConfig

logger = logging.getLogger(__name__)


class EndpointClient:
    """Issue authenticated GETs against ``http://<address>/api/<path>``.

    Args:
        timeout: Seconds allowed for the whole round trip (connect + read).
        session: Optional pre-built :class:`requests.Session`; a private one
            is created otherwise.  Sessions are not shared between targets.

    Raises:
        ValueError: If *timeout* is not positive.
    """

    def __init__(self, timeout: float, session: Optional[requests.Session] = None) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._timeout: float = timeout
        self._session: requests.Session = session or requests.Session()

    @property
    def timeout(self) -> float:
        return self._timeout

    @staticmethod
    def url(path_suffix: str, target: TargetConfig) -> str:
        return f"http://{target.address}/api/{path_suffix}"

    @staticmethod
    def _auth_for(target: TargetConfig) -> tuple[dict[str, str], Optional[AuthBase]]:
        """Return ``(headers, auth)`` for *target*.

        An API key always wins; digest credentials are only used when no
        key is configured.
        """
        if target.uses_api_key:
            return {"X-Api-Key": target.api_key}, None
        return {}, HTTPDigestAuth(target.username, target.password)

    def fetch(self, path_suffix: str, target: TargetConfig) -> bytes:
        """GET ``/api/<path_suffix>`` on *target* and return the raw body.

        The timeout is a deadline for the whole round trip, so a printer
        that trickles its body byte by byte is cut off as well.

        Raises:
            NetworkError: On timeout, refused connection or any other
                transport-level failure.
        """
        url = self.url(path_suffix, target)
        headers, auth = self._auth_for(target)
        deadline = time.monotonic() + self._timeout
        try:
            response = self._session.get(
                url, headers=headers, auth=auth, timeout=self._timeout, stream=True
            )
            try:
                body = self._read_body(response, deadline)
            finally:
                response.close()
        except RequestException as exc:
            raise NetworkError(target.address, exc) from exc
        if not response.ok:
            logger.debug("GET %s returned HTTP %d", url, response.status_code)
        return body

    def _read_body(self, response: requests.Response, deadline: float) -> bytes:
        """Read the streamed body, cutting the connection at *deadline*.

        The socket read timeout restarts with every received byte, so a
        watchdog shuts the socket down once the overall budget is spent.
        """
        remaining = max(deadline - time.monotonic(), 0.0)
        watchdog = threading.Timer(remaining, _cut_connection, args=(response,))
        watchdog.daemon = True
        watchdog.start()
        try:
            body = response.content
        except RequestException as exc:
            if time.monotonic() >= deadline:
                raise requests.Timeout(f"response not complete within {self._timeout}s") from exc
            raise
        finally:
            watchdog.cancel()
        if time.monotonic() >= deadline:
            raise requests.Timeout(f"response not complete within {self._timeout}s")
        return body

    def probe(self, target: TargetConfig) -> bool:
        """Return True when the printer web interface answers with HTTP 200.

        A 401 on the landing page is retried once against
        ``/api/v1/status`` with the API key header, which is how
        key-protected firmware answers an unauthenticated request.
        """
        try:
            response = self._session.get(f"http://{target.address}/", timeout=self._timeout)
            if response.status_code == 401:
                response = self._session.get(
                    self.url("v1/status", target),
                    headers={"X-Api-Key": target.api_key or ""},
                    timeout=self._timeout,
                )
        except RequestException as exc:
            logger.debug("Probe of %s failed: %s", target.address, exc)
            return False
        return response.status_code == 200

    def close(self) -> None:
        self._session.close()


def _cut_connection(response: requests.Response) -> None:
    connection = getattr(response.raw, "connection", None)
    sock = getattr(connection, "sock", None)
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as exc:
        logger.debug("Socket already closed at deadline: %s", exc)
