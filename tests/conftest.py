"""
Pytest configuration and shared fixtures.
"""

import json
from typing import Any, Dict, List

import pytest
import requests

from pointsrebuild.client import PointsApiClient
from pointsrebuild.config import JobConfiguration
from pointsrebuild.logger import StructuredLogger, reset_logger


class FakeResponse:
    """Minimal stand-in for a streamed requests.Response."""

    def __init__(self, status_code: int = 200, body: Any = None, text: str = None, chunks: List[str] = None):
        self.status_code = status_code
        self.encoding = "utf-8"
        if chunks is None:
            if text is None:
                text = "" if body is None else json.dumps(body)
            chunks = [text] if text else []
        self.chunks = chunks
        self.closed = False

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            yield chunk.encode(self.encoding)

    def close(self):
        self.closed = True


class FakeSession:
    """
    Session that replays queued outcomes and records every request.

    Each queued item is a FakeResponse, a dict (200 JSON body) or an
    exception instance to raise.
    """

    def __init__(self, outcomes: List[Any] = None):
        self.outcomes = list(outcomes or [])
        self.requests: List[Dict[str, Any]] = []

    def queue(self, *outcomes: Any):
        self.outcomes.extend(outcomes)

    def request(self, method, url, headers=None, timeout=None, stream=False):
        self.requests.append({"method": method, "url": url, "headers": headers, "timeout": timeout, "stream": stream})
        if not self.outcomes:
            raise AssertionError(f"Unexpected request: {method} {url}")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, dict):
            return FakeResponse(200, outcome)
        return outcome

    def paths(self) -> List[str]:
        return [r["url"].split("?")[0].replace("https://points.example.com", "") for r in self.requests]


class RecordingSleep:
    """Records requested pauses instead of sleeping."""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float):
        self.calls.append(seconds)


class TickingClock:
    """Monotonic clock that advances `step` seconds per reading."""

    def __init__(self, step: float):
        self.step = step
        self.now = 0.0

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def env() -> Dict[str, str]:
    """Minimal valid environment."""
    return {
        "POINTS_API_BASE": "https://points.example.com/",
        "POINTS_INGEST_TOKEN": "secret-token-123",
        "POINTS_SEASON_ID": "s1",
    }


@pytest.fixture
def config(env) -> JobConfiguration:
    return JobConfiguration.from_env(env)


@pytest.fixture
def logger(tmp_path) -> StructuredLogger:
    reset_logger()
    return StructuredLogger(name="points-rebuild-test", log_dir=tmp_path, enable_console=False)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def client(config, session, sleep, logger) -> PointsApiClient:
    return PointsApiClient(config, session=session, sleep=sleep, logger=logger)


@pytest.fixture
def timeout_error() -> requests.exceptions.Timeout:
    return requests.exceptions.Timeout("read timed out")
