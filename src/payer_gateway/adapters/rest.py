"""
REST Adapter

Stateless HTTP/HTTPS binding built on an aiohttp client session.
"""

import asyncio
import base64
import time
from typing import Any
from urllib.parse import urljoin

import aiohttp

from ..codecs import content_type_for
from ..config import PartnerConfig
from ..enums import IntegrationStatus, Protocol
from ..exceptions import ConnectivityError, GatewayError, RemoteError
from ..models import HealthStatus, RawResponse, RequestOptions
from .base import ProtocolAdapter


class RESTAdapter(ProtocolAdapter):
    """HTTP adapter; each ``send`` issues exactly one request."""

    protocol = Protocol.REST

    def __init__(self, config: PartnerConfig, session: aiohttp.ClientSession | None = None):
        super().__init__(config)
        self.session = session
        self._owns_session = session is None

    async def connect(self) -> None:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        self.connected = True
        self.logger.info("Connected to partner", partner_id=self.partner_id, url=self.config.base_url)

    async def disconnect(self) -> None:
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None
        self.connected = False
        self.logger.info("Disconnected from partner", partner_id=self.partner_id)

    def build_url(self, endpoint: str) -> str:
        return urljoin(self.config.base_url.rstrip("/") + "/", endpoint.lstrip("/"))

    def auth_headers(self) -> dict[str, str]:
        """Basic, then API key, then Bearer; first configured scheme wins."""
        credentials = self.config.credentials
        if credentials.username and credentials.password:
            token = base64.b64encode(
                f"{credentials.username}:{credentials.password}".encode()
            ).decode()
            return {"Authorization": f"Basic {token}"}
        if credentials.api_key:
            return {credentials.api_key_header: credentials.api_key}
        if credentials.bearer_token:
            return {"Authorization": f"Bearer {credentials.bearer_token}"}
        return {}

    def build_headers(self, options: RequestOptions) -> dict[str, str]:
        content_type = content_type_for(self.config.data_format)
        headers = {"Content-Type": content_type, "Accept": content_type}
        headers.update(self.auth_headers())
        headers.update(self.config.headers)
        headers.update(options.headers)
        if options.correlation_id:
            headers["X-Correlation-ID"] = options.correlation_id
        if self.config.test_mode:
            headers["X-Test-Mode"] = "true"
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        body: bytes | None,
        headers: dict[str, str],
        options: RequestOptions,
    ) -> RawResponse:
        if self.session is None or self.session.closed:
            await self.connect()
        timeout = aiohttp.ClientTimeout(total=options.timeout_seconds)
        try:
            async with self.session.request(
                method, url, data=body, headers=headers, timeout=timeout
            ) as response:
                payload = await response.read()
                return RawResponse(
                    status_code=response.status,
                    body=payload,
                    headers=dict(response.headers),
                )
        except asyncio.TimeoutError as e:
            raise ConnectivityError(
                f"Request to {url} timed out after {options.timeout}ms",
                details={"url": url, "method": method},
            ) from e
        except aiohttp.ClientError as e:
            raise ConnectivityError(
                f"Request to {url} failed: {e}",
                details={"url": url, "method": method, "type": e.__class__.__name__},
            ) from e

    def raise_for_status(self, raw: RawResponse, url: str, method: str) -> None:
        if not 200 <= raw.status_code < 300:
            raise RemoteError(
                f"HTTP {raw.status_code} from {self.config.display_name}",
                raw.status_code,
                details={"url": url, "method": method, "body": raw.text[:500]},
            )

    async def send(
        self, endpoint: str, method: str, body: Any, options: RequestOptions
    ) -> RawResponse:
        url = self.build_url(endpoint)
        method = method.upper()
        started = time.perf_counter()
        try:
            raw = await self._request(method, url, body, self.build_headers(options), options)
            self.raise_for_status(raw, url, method)
        except GatewayError as e:
            self.log_call(endpoint, method, options, started, getattr(e, "status_code", None), e)
            raise
        self.log_call(endpoint, method, options, started, raw.status_code)
        return raw

    async def health(self) -> HealthStatus:
        options = RequestOptions(timeout=10000, retry_count=0)
        url = self.build_url(self.config.health_endpoint)
        started = time.perf_counter()
        try:
            raw = await self._request("GET", url, None, self.build_headers(options), options)
            self.raise_for_status(raw, url, "GET")
        except GatewayError as e:
            return HealthStatus(
                partner_id=self.partner_id,
                status=IntegrationStatus.ERROR,
                response_time_ms=(time.perf_counter() - started) * 1000,
                message=e.message,
                details=e.to_dict(),
            )
        return HealthStatus(
            partner_id=self.partner_id,
            status=IntegrationStatus.ACTIVE,
            response_time_ms=(time.perf_counter() - started) * 1000,
            message=f"HTTP {raw.status_code}",
        )
