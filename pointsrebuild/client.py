"""HTTP client for the remote points job API."""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import requests

from .config import JobConfiguration
from .logger import StructuredLogger, get_logger
from .retry import CallError, call_with_retry

READ_CHUNK_SIZE = 8192


def build_url(base_url: str, path: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Join base and path, dropping params whose value is None or ""."""
    url = f"{base_url}{path}"
    query = {k: str(v) for k, v in (params or {}).items() if v is not None and v != ""}
    if query:
        url = f"{url}?{urlencode(query)}"
    return url


def decode_body(text: str) -> Dict[str, Any]:
    """Parse a JSON object body; anything else comes back as {"raw": text}."""
    if not text:
        return {}
    try:
        payload = json.loads(text)
    except ValueError:
        return {"raw": text}
    if not isinstance(payload, dict):
        return {"raw": text}
    return payload


@dataclass
class Reply:
    """Status, body text and decoded payload of one HTTP exchange."""

    status: int
    text: str
    payload: Dict[str, Any]


def error_detail(payload: Dict[str, Any], text: str, status: int) -> str:
    for key in ("error", "message"):
        value = payload.get(key)
        if value:
            return str(value)
    return text or f"HTTP {status}"


class PointsApiClient:
    """
    Authenticated client for the reset/ingest/recalc endpoints.

    Every call is a bearer-authenticated request with a hard timeout.
    `call` adds the retry policy on top of `call_once`.
    """

    def __init__(
        self,
        config: JobConfiguration,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[StructuredLogger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.clock = clock
        self.session = session or requests.Session()
        self.sleep = sleep
        self.logger = logger or get_logger()

    def url_for(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        return build_url(self.config.base_url, path, params)

    def send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Reply:
        """
        Issue one request and read its body under a single deadline.

        The deadline covers connecting, waiting for headers and reading the
        whole body, so a server trickling bytes cannot hold the call open.

        Returns:
            Reply for any HTTP status

        Raises:
            CallError: status 0 on timeout or network failure
        """
        url = self.url_for(path, params)
        self.logger.record_api_call()
        self.logger.debug("Calling points API", method=method, url=url)
        deadline = self.clock() + self.config.call_timeout
        try:
            resp = self.session.request(
                method,
                url,
                headers={"Authorization": f"Bearer {self.config.token}"},
                timeout=self.config.call_timeout,
                stream=True,
            )
            try:
                text = self._read_text(resp, path, deadline)
            finally:
                resp.close()
        except requests.exceptions.Timeout:
            raise self._timeout(path)
        except requests.exceptions.RequestException as e:
            self.logger.record_failure(0)
            raise CallError(path, 0, f"request error: {e}")

        return Reply(resp.status_code, text, decode_body(text))

    def _timeout(self, path: str) -> CallError:
        self.logger.record_failure(0)
        return CallError(path, 0, f"request timeout after {self.config.call_timeout_ms}ms")

    def _read_text(self, resp: requests.Response, path: str, deadline: float) -> str:
        chunks = []
        for chunk in resp.iter_content(chunk_size=READ_CHUNK_SIZE):
            if self.clock() > deadline:
                raise self._timeout(path)
            chunks.append(chunk)
        if self.clock() > deadline:
            raise self._timeout(path)
        return b"".join(chunks).decode(resp.encoding or "utf-8", errors="replace")

    def call_once(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        POST to `path` once.

        Raises:
            CallError: On timeout, network failure or any non-2xx status
        """
        reply = self.send("POST", path, params)
        if not 200 <= reply.status < 300:
            self.logger.record_failure(reply.status)
            raise CallError(path, reply.status, error_detail(reply.payload, reply.text, reply.status))
        return reply.payload

    def call(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """POST to `path`, retrying transient failures with backoff."""

        def on_retry(attempt: int, error: CallError, delay: float):
            self.logger.record_retry()
            self.logger.warning(
                f"retry {attempt}/{self.config.max_call_retries} for {path} "
                f"after {round(delay * 1000)}ms (status={error.status or 'n/a'})"
            )

        return call_with_retry(
            lambda: self.call_once(path, params),
            max_retries=self.config.max_call_retries,
            base_delay=self.config.retry_base_delay,
            sleep=self.sleep,
            on_retry=on_retry,
        )
