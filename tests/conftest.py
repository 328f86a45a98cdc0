"""
Shared fixtures for payer gateway tests.

Provides a controllable clock, a recording sleep, an in-memory protocol
adapter and a fake aiohttp session so tests never touch the network.
"""

import json
from typing import Any

import pytest

from payer_gateway.adapters.base import ProtocolAdapter
from payer_gateway.config import PartnerConfig
from payer_gateway.enums import IntegrationStatus, Protocol
from payer_gateway.models import HealthStatus, RawResponse, RequestOptions
from payer_gateway.orchestrator import IntegrationOrchestrator
from payer_gateway.resilience import RetryPolicy


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeAdapter(ProtocolAdapter):
    """Adapter that replays queued responses or exceptions."""

    protocol = Protocol.REST

    def __init__(self, config: PartnerConfig, responses: list[Any] | None = None):
        super().__init__(config)
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []
        self.health_status = IntegrationStatus.ACTIVE

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def send(self, endpoint, method, body, options: RequestOptions) -> RawResponse:
        self.calls.append(
            {"endpoint": endpoint, "method": method, "body": body, "options": options}
        )
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    async def health(self) -> HealthStatus:
        return HealthStatus(partner_id=self.partner_id, status=self.health_status)


def json_response(payload: Any, status_code: int = 200) -> RawResponse:
    return RawResponse(
        status_code=status_code,
        body=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json"},
    )


class FakeHTTPResponse:
    """Minimal stand-in for aiohttp's ClientResponse context manager."""

    def __init__(self, status: int = 200, body: bytes = b"", headers: dict | None = None):
        self.status = status
        self.body = body
        self.headers = headers or {}

    async def read(self) -> bytes:
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeHTTPSession:
    """Records requests and replays queued responses or exceptions."""

    closed = False

    def __init__(self, responses: list[Any] | None = None):
        self.responses = list(responses or [])
        self.requests: list[dict[str, Any]] = []

    def request(self, method, url, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make_partner():
    """Factory for partner configs with sensible REST/JSON defaults."""

    def _make(**overrides) -> PartnerConfig:
        values = {
            "partner_id": "acme",
            "name": "Acme Clearinghouse",
            "protocol": "rest",
            "data_format": "json",
            "base_url": "https://acme.example.com/api",
        }
        values.update(overrides)
        return PartnerConfig(**values)

    return _make


@pytest.fixture
def orchestrator(clock, sleep):
    return IntegrationOrchestrator(retry_policy=RetryPolicy(sleep=sleep), clock=clock)


@pytest.fixture
def claim():
    return {
        "id": "CLM-1001",
        "client_id": "CL-77",
        "payer_id": "PAYER-9",
        "service_start_date": "2024-03-01",
        "service_end_date": "2024-03-01",
        "total_amount": 125.5,
        "patient_control_number": "PCN1001",
    }


@pytest.fixture
def make_claim(claim):
    def _make(index: int, **overrides) -> dict[str, Any]:
        values = {**claim, "id": f"CLM-{index}", "patient_control_number": f"PCN{index}"}
        values.update(overrides)
        return values

    return _make


@pytest.fixture
def make_adapter():
    """Factory for in-memory adapters replaying the given responses."""

    def _make(config: PartnerConfig, *responses: Any) -> FakeAdapter:
        return FakeAdapter(config, list(responses))

    return _make


@pytest.fixture
def respond():
    """Build a JSON RawResponse."""
    return json_response


@pytest.fixture
def http_session():
    """Factory for fake aiohttp sessions."""

    def _make(*responses: Any) -> FakeHTTPSession:
        return FakeHTTPSession(list(responses))

    return _make


@pytest.fixture
def http_response():
    """Factory for fake aiohttp responses."""
    return FakeHTTPResponse
