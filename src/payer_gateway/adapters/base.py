"""
Base Protocol Adapter

Abstract transport binding shared by the REST, SOAP and SFTP adapters.
"""

import time
from abc import ABC, abstractmethod
from typing import Any

from ..config import PartnerConfig
from ..enums import Protocol
from ..exceptions import GatewayError
from ..logger import get_logger
from ..models import HealthStatus, RawResponse, RequestOptions


class ProtocolAdapter(ABC):
    """One partner's transport.

    ``send`` raises ``ConnectivityError``, ``RemoteError`` or
    ``ProtocolError``; it never returns a failed response.
    """

    protocol: Protocol

    def __init__(self, config: PartnerConfig):
        self.config = config
        self.connected = False
        self.logger = get_logger(f"payer_gateway.adapters.{self.protocol.value}")

    @property
    def partner_id(self) -> str:
        return self.config.partner_id

    @abstractmethod
    async def connect(self) -> None:
        """Prepare the transport."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the transport."""

    @abstractmethod
    async def send(
        self, endpoint: str, method: str, body: Any, options: RequestOptions
    ) -> RawResponse:
        """Execute one request against the partner."""

    @abstractmethod
    async def health(self) -> HealthStatus:
        """Probe the partner. Never raises for partner-side failures."""

    async def __aenter__(self) -> "ProtocolAdapter":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    def log_call(
        self,
        endpoint: str,
        method: str,
        options: RequestOptions,
        started: float,
        status_code: int | None = None,
        error: GatewayError | None = None,
    ) -> None:
        """Structured record of one adapter call, keyed by correlation ID."""
        fields = {
            "partner_id": self.partner_id,
            "protocol": self.protocol.value,
            "endpoint": endpoint,
            "method": method,
            "correlation_id": options.correlation_id,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            "status_code": status_code,
        }
        if error is None:
            self.logger.info("Partner call completed", **fields)
        else:
            self.logger.warning(
                "Partner call failed",
                error_code=error.error_code,
                error=error.message,
                retryable=error.retryable,
                **fields,
            )
