"""HTTP client for the REST API of a jiva controller."""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Any

DEFAULT_TIMEOUT = 2.0


class JivaClientError(Exception):
    """A request to the jiva controller failed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def _decode(body: bytes) -> Any:
    try:
        return json.loads(body)
    except ValueError as exc:
        raise JivaClientError(f"invalid JSON response: {exc}") from exc


class ControllerClient:
    """Talks JSON over HTTP to the v1 API of a jiva controller."""

    def __init__(self, address: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        if not address.startswith("http"):
            address = "http://" + address
        if not address.endswith("/v1"):
            address += "/v1"
        self.address = address
        self.timeout = timeout

    def get(self, path: str) -> Any:
        """GET the path below the API root and return the decoded JSON body."""
        url = self.address + path
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as resp:
                body = resp.read()
        except urllib.error.HTTPError as exc:
            try:
                body = exc.read()
            finally:
                exc.close()
        except (urllib.error.URLError, OSError) as exc:
            raise JivaClientError(f"GET {url} failed: {exc}") from exc
        return _decode(body)

    def post(self, path: str, payload: Any) -> Any:
        """POST payload as JSON and return the decoded response, if any."""
        return self.do("POST", path, payload)

    def do(self, method: str, path: str, payload: Any) -> Any:
        """Send payload as JSON with the given method.

        The path is taken as a full URL when it starts with "http", otherwise
        it is relative to the API root. Returns the decoded JSON body, or None
        when the response has no body.
        """
        url = path if path.startswith("http") else self.address + path
        request = urllib.request.Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            method=method,
            headers={"Content-Type": "application/json"},
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as resp:
                body = resp.read()
        except urllib.error.HTTPError as exc:
            try:
                content = exc.read().decode("utf-8", errors="replace")
            finally:
                exc.close()
            raise JivaClientError(
                f"Bad response: {exc.code} {exc.code} {exc.reason}: {content}",
                status=exc.code,
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise JivaClientError(f"{method} {url} failed: {exc}") from exc
        if not body.strip():
            return None
        return _decode(body)