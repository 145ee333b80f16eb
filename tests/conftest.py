import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from typer.testing import CliRunner

from trlo.core.batch.parser import BatchGraph, OperationParser
from trlo.domain.interfaces.board_api import BoardApiClient
from trlo.domain.models.batch import BatchOptions
from trlo.infrastructure.config.settings import clear_test_config
from trlo.infrastructure.resilience.api_retry import ApiRetryService
from trlo.infrastructure.resilience.rate_limiter import RateLimiter


class FakeBoardApi(BoardApiClient):
    """In-memory BoardApiClient recording calls and concurrent in-flight calls.

    `handler(operation_type, params)` returns the payload (or a coroutine
    producing it) or raises. By default every call returns a fresh id.
    """

    def __init__(self, handler: Optional[Callable[[str, Dict[str, Any]], Any]] = None, delay: float = 0.0):
        self.handler = handler or self._default_handler
        self.delay = delay
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    def _default_handler(self, operation_type: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"id": f"{operation_type}-{len(self.calls)}", **params}

    def calls_of(self, operation_type: str) -> List[Dict[str, Any]]:
        return [params for op_type, params in self.calls if op_type == operation_type]

    async def execute(self, operation_type, params):
        self.calls.append((operation_type, dict(params)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            result = self.handler(operation_type, dict(params))
            if asyncio.iscoroutine(result):
                result = await result
            return result
        finally:
            self.in_flight -= 1

    async def aclose(self) -> None:
        self.closed = True


class RecordingSleep:
    """Async sleep replacement that records requested delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def fake_api():
    return FakeBoardApi()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def retry_service(fake_sleep):
    """Retry service with a roomy bucket, no jitter and a non-blocking sleep."""
    limiter = RateLimiter(capacity=1000, refill_rate=1000.0)
    return ApiRetryService(rate_limiter=limiter, max_retries=5, jitter_s=0.0, sleep=fake_sleep)


@pytest.fixture
def parse():
    """Parses raw descriptors into a BatchGraph with the given options."""
    parser = OperationParser()

    def _parse(descriptors, **options) -> BatchGraph:
        return parser.parse(descriptors, BatchOptions(**options))

    return _parse


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keeps real credentials and TRLO_* variables out of every test."""
    for name in ("TRELLO_API_KEY", "TRELLO_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    import os
    for name in list(os.environ):
        if name.startswith("TRLO_"):
            monkeypatch.delenv(name, raising=False)
    clear_test_config()
    yield
    clear_test_config()
