"""
Integration Orchestrator

Holds the registry of partner -> (adapter, transformer, circuit breaker) and
exposes the gateway's domain operations. Adapter and transformer failures are
returned as failed responses; unknown partners and operations raise.
"""

import asyncio
import posixpath
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime, time as dt_time, timezone
from typing import Any
from urllib.parse import quote, urlencode

from .adapters import ProtocolAdapter, create_adapter
from .config import BreakerSettings, GatewaySettings, PartnerConfig, RetrySettings
from .enums import CircuitState, ClaimStatus, DataFormat, IntegrationStatus, Protocol
from .exceptions import (
    CircuitOpenError,
    ConfigurationError,
    ConnectivityError,
    GatewayError,
    ProtocolError,
    RemoteError,
    UnknownOperationError,
    UnknownPartnerError,
    ValidationError,
    as_gateway_error,
)
from .logger import correlation_scope, get_logger, new_correlation_id
from .models import (
    BatchClaimResult,
    BatchResponse,
    CircuitBreakerRecord,
    DateWindow,
    HealthStatus,
    IntegrationResponse,
    RawResponse,
    RequestOptions,
)
from .resilience import CircuitBreaker, RetryPolicy
from .transformers import PartnerTransformer

logger = get_logger(__name__)


@dataclass(frozen=True)
class OperationSpec:
    """Default endpoint and HTTP method of one operation.

    ``timeout`` and ``retry_delay`` override the gateway retry settings for
    operations that move more data; unset values fall back to those settings.
    """

    name: str
    method: str
    path: str
    timeout: int | None = None
    retry_delay: int | None = None


OPERATIONS: dict[str, OperationSpec] = {
    "submit_claim": OperationSpec("submit_claim", "POST", "claims", timeout=60000),
    "submit_batch": OperationSpec("submit_batch", "POST", "claims/batch", timeout=120000, retry_delay=2000),
    "check_claim_status": OperationSpec("check_claim_status", "GET", "claims/status"),
    "verify_eligibility": OperationSpec("verify_eligibility", "POST", "eligibility", timeout=60000),
    "download_remittance": OperationSpec("download_remittance", "GET", "remittance", timeout=120000, retry_delay=2000),
}

def _status_code_for(error: GatewayError) -> int:
    if isinstance(error, RemoteError):
        return error.status_code
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, CircuitOpenError):
        return 503
    if isinstance(error, ConnectivityError):
        return 504
    if isinstance(error, ProtocolError):
        return 502
    return 500


def _parse_iso(value: str) -> date | datetime:
    try:
        return date.fromisoformat(value)
    except ValueError:
        return datetime.fromisoformat(value)


def _window_bound(value: Any, end: bool, name: str) -> datetime:
    """Dates widen to the whole UTC day; naive datetimes are taken as UTC.

    ISO 8601 strings are accepted for callers that route through ``execute``.
    """
    if isinstance(value, str):
        try:
            value = _parse_iso(value.strip())
        except ValueError as e:
            raise ValidationError(
                f"{name} is not an ISO 8601 date: {value!r}", errors=[f"{name} is not a valid date"]
            ) from e
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, dt_time.max if end else dt_time.min, tzinfo=timezone.utc)
    raise ValidationError(f"{name} is required", errors=[f"{name} is required"])


def _field(payload: Any, name: str) -> Any:
    return payload.get(name) if isinstance(payload, Mapping) else None


@dataclass
class PartnerRegistration:
    """Everything the orchestrator owns for one partner."""

    config: PartnerConfig
    adapter: ProtocolAdapter
    transformer: PartnerTransformer
    breaker: CircuitBreaker

    @property
    def partner_id(self) -> str:
        return self.config.partner_id


class IntegrationOrchestrator:
    """Single entry point for partner traffic.

    Every operation updates the partner's breaker exactly once, whichever
    layer produced the outcome. An OPEN breaker fails the call before any
    transformation or network attempt and leaves the breaker untouched.
    """

    def __init__(
        self,
        breaker_settings: BreakerSettings | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        retry_settings: RetrySettings | None = None,
    ):
        self.breaker_settings = breaker_settings or BreakerSettings()
        self.retry_settings = retry_settings or RetrySettings()
        self.retry_policy = retry_policy or RetryPolicy(name="partner_calls")
        self.clock = clock
        self._registry: dict[str, PartnerRegistration] = {}

    @classmethod
    def from_settings(
        cls,
        settings: GatewaySettings,
        retry_policy: RetryPolicy | None = None,
        adapter_factory: Callable[[PartnerConfig], ProtocolAdapter] = create_adapter,
        clock: Callable[[], float] = time.monotonic,
    ) -> "IntegrationOrchestrator":
        orchestrator = cls(
            settings.breaker,
            retry_policy=retry_policy,
            clock=clock,
            retry_settings=settings.retry,
        )
        for partner in settings.partners:
            orchestrator.register(partner, adapter=adapter_factory(partner))
        return orchestrator

    # Registry

    def register(
        self,
        config: PartnerConfig,
        adapter: ProtocolAdapter | None = None,
        transformer: PartnerTransformer | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> PartnerRegistration:
        if config.partner_id in self._registry:
            raise ConfigurationError(
                f"Partner '{config.partner_id}' is already registered",
                details={"partner_id": config.partner_id},
            )
        registration = PartnerRegistration(
            config=config,
            adapter=adapter or create_adapter(config),
            transformer=transformer or PartnerTransformer(config),
            breaker=breaker
            or CircuitBreaker(
                config.partner_id,
                failure_threshold=config.failure_threshold
                or self.breaker_settings.failure_threshold,
                reset_timeout=config.reset_timeout_seconds
                or self.breaker_settings.reset_timeout_seconds,
                clock=self.clock,
            ),
        )
        self._registry[config.partner_id] = registration
        logger.info(
            "Registered partner",
            partner_id=config.partner_id,
            protocol=config.protocol.value,
            data_format=config.data_format.value,
        )
        return registration

    def registration(self, partner_id: str) -> PartnerRegistration:
        try:
            return self._registry[partner_id]
        except KeyError:
            raise UnknownPartnerError(partner_id) from None

    @property
    def partner_ids(self) -> list[str]:
        return list(self._registry)

    def breaker_snapshot(self, partner_id: str) -> CircuitBreakerRecord:
        return self.registration(partner_id).breaker.snapshot()

    async def connect_all(self) -> dict[str, bool]:
        """Connect every adapter; failures are logged and reported per partner."""
        results = {}
        for partner_id, registration in self._registry.items():
            try:
                await registration.adapter.connect()
                results[partner_id] = True
            except GatewayError as e:
                logger.error("Failed to connect partner", partner_id=partner_id, error=str(e))
                results[partner_id] = False
        return results

    async def disconnect_all(self) -> None:
        for registration in self._registry.values():
            await registration.adapter.disconnect()

    async def __aenter__(self) -> "IntegrationOrchestrator":
        await self.connect_all()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect_all()

    # Shared plumbing

    def default_options(self, operation: str) -> RequestOptions:
        """Request options for a call that supplies none."""
        spec = OPERATIONS.get(operation)
        settings = self.retry_settings
        return RequestOptions(
            timeout=(spec and spec.timeout) or settings.timeout_ms,
            retry_count=settings.retry_count,
            retry_delay=(spec and spec.retry_delay) or settings.retry_delay_ms,
        )

    def _prepare_options(self, operation: str, options: RequestOptions | None) -> RequestOptions:
        options = options or self.default_options(operation)
        if options.correlation_id:
            return options
        return options.with_correlation_id(new_correlation_id())

    def _circuit_open(self, registration: PartnerRegistration) -> CircuitOpenError | None:
        breaker = registration.breaker
        if breaker.allow():
            return None
        error = CircuitOpenError(registration.partner_id, breaker.retry_after())
        logger.warning(
            "Circuit breaker is OPEN, rejecting call",
            partner_id=registration.partner_id,
            retry_after_seconds=error.retry_after_seconds,
        )
        return error

    async def _send(
        self,
        registration: PartnerRegistration,
        endpoint: str,
        method: str,
        body: Any,
        options: RequestOptions,
    ) -> RawResponse:
        async def attempt(attempt_options: RequestOptions) -> RawResponse:
            return await registration.adapter.send(endpoint, method, body, attempt_options)

        return await self.retry_policy.execute(attempt, options, breaker=registration.breaker)

    async def _run(
        self,
        partner_id: str,
        operation: str,
        options: RequestOptions | None,
        work: Callable[[PartnerRegistration, RequestOptions, dict[str, Any]], Awaitable[tuple[Any, int]]],
    ) -> IntegrationResponse:
        registration = self.registration(partner_id)
        options = self._prepare_options(operation, options)
        metadata: dict[str, Any] = {
            "partner_id": partner_id,
            "operation": operation,
            "correlation_id": options.correlation_id,
        }

        open_error = self._circuit_open(registration)
        if open_error is not None:
            return IntegrationResponse.fail(open_error.to_detail(), 503, metadata)

        try:
            with correlation_scope(options.correlation_id):
                data, status_code = await work(registration, options, metadata)
        except Exception as exc:
            error = as_gateway_error(exc)
            registration.breaker.record_outcome(False)
            logger.error(
                "Partner operation failed",
                partner_id=partner_id,
                operation=operation,
                correlation_id=options.correlation_id,
                error_code=error.error_code,
                error=error.message,
                retryable=error.retryable,
                exc_info=not isinstance(exc, GatewayError),
            )
            return IntegrationResponse.fail(error.to_detail(), _status_code_for(error), metadata)

        registration.breaker.record_outcome(True)
        logger.info(
            "Partner operation succeeded",
            partner_id=partner_id,
            operation=operation,
            correlation_id=options.correlation_id,
        )
        return IntegrationResponse.ok(data, status_code, metadata)

    def _file_path(self, registration: PartnerRegistration, directory: str, stem: str) -> str:
        return posixpath.join(directory, f"{stem}{registration.transformer.file_extension}")

    # Domain operations

    async def submit_claim(
        self, partner_id: str, claim: Mapping[str, Any], options: RequestOptions | None = None
    ) -> IntegrationResponse:
        async def work(registration, opts, metadata):
            transformer = registration.transformer
            transformer.validate_claim(claim)
            body = transformer.to_wire(transformer.prepare_claim(claim), operation="submit_claim")
            endpoint = registration.config.endpoint("submit_claim", OPERATIONS["submit_claim"].path)
            method = OPERATIONS["submit_claim"].method
            if registration.config.protocol is Protocol.SFTP:
                endpoint = self._file_path(registration, endpoint, str(claim["id"]))
                method = "PUT"
            metadata.update(endpoint=endpoint, method=method)

            raw = await self._send(registration, endpoint, method, body, opts)
            metadata["headers"] = raw.headers
            result = transformer.parse_claim_response(transformer.from_wire(raw.body))
            result["claim_id"] = claim["id"]
            return result, raw.status_code

        return await self._run(partner_id, "submit_claim", options, work)

    async def submit_batch(
        self,
        partner_id: str,
        claims: list[Mapping[str, Any]],
        options: RequestOptions | None = None,
        batch_id: str | None = None,
    ) -> BatchResponse:
        """Submit claims together, reporting one result per input claim.

        Claims failing local validation are reported REJECTED and left out of
        the request; the batch only fails as a whole when it is oversized,
        when nothing valid remains, or when the partner rejects the request.
        """
        registration = self.registration(partner_id)
        options = self._prepare_options("submit_batch", options)
        batch_id = batch_id or f"BATCH-{int(time.time() * 1000)}"
        transformer = registration.transformer
        breaker = registration.breaker
        metadata: dict[str, Any] = {
            "partner_id": partner_id,
            "operation": "submit_batch",
            "correlation_id": options.correlation_id,
        }

        open_error = self._circuit_open(registration)
        if open_error is not None:
            return BatchResponse(
                success=False, status_code=503, batch_id=batch_id,
                error=open_error.to_detail(), metadata=metadata,
            )

        try:
            transformer.validate_batch_size(claims)
        except ValidationError as e:
            breaker.record_outcome(False)
            logger.warning(
                "Batch rejected before submission",
                partner_id=partner_id,
                batch_id=batch_id,
                error=e.message,
            )
            return BatchResponse(
                success=False, status_code=400, batch_id=batch_id,
                error=e.to_detail(), metadata=metadata,
            )

        results: list[BatchClaimResult | None] = [None] * len(claims)
        valid: list[tuple[int, Mapping[str, Any]]] = []
        for index, claim in enumerate(claims):
            try:
                transformer.validate_claim(claim)
            except ValidationError as e:
                claim_id = claim.get("id") if isinstance(claim, Mapping) else None
                results[index] = BatchClaimResult(
                    claim_id=claim_id, status=ClaimStatus.REJECTED, errors=e.errors or [e.message]
                )
                continue
            valid.append((index, claim))

        if not valid:
            breaker.record_outcome(False)
            error = ValidationError(
                "No claims in the batch passed validation",
                errors=[err for r in results for err in r.errors],
                details={"batch_id": batch_id, "partner_id": partner_id},
            )
            return BatchResponse(
                success=False, status_code=400, batch_id=batch_id,
                results=results, error=error.to_detail(), metadata=metadata,
            )

        valid_claims = [claim for _, claim in valid]
        try:
            body = transformer.to_wire(
                transformer.prepare_batch(valid_claims, batch_id), operation="submit_batch"
            )
            endpoint = registration.config.endpoint("submit_batch", OPERATIONS["submit_batch"].path)
            method = OPERATIONS["submit_batch"].method
            if registration.config.protocol is Protocol.SFTP:
                endpoint = self._file_path(registration, endpoint, batch_id)
                method = "PUT"
            metadata.update(endpoint=endpoint, method=method, batch_size=len(valid_claims))

            with correlation_scope(options.correlation_id):
                raw = await self._send(registration, endpoint, method, body, options)
            metadata["headers"] = raw.headers
            sent_results = transformer.parse_batch_response(
                transformer.from_wire(raw.body), valid_claims
            )
        except Exception as exc:
            error = as_gateway_error(exc)
            breaker.record_outcome(False)
            logger.error(
                "Batch submission failed",
                partner_id=partner_id,
                batch_id=batch_id,
                correlation_id=options.correlation_id,
                error_code=error.error_code,
                error=error.message,
                exc_info=not isinstance(exc, GatewayError),
            )
            for index, claim in valid:
                results[index] = BatchClaimResult(
                    claim_id=claim.get("id"), status=ClaimStatus.REJECTED, errors=[error.message]
                )
            return BatchResponse(
                success=False, status_code=_status_code_for(error), batch_id=batch_id,
                results=results, error=error.to_detail(), metadata=metadata,
            )

        breaker.record_outcome(True)
        for (index, _), result in zip(valid, sent_results):
            results[index] = result
        logger.info(
            "Batch submitted",
            partner_id=partner_id,
            batch_id=batch_id,
            submitted=len(valid_claims),
            rejected_locally=len(claims) - len(valid_claims),
        )
        return BatchResponse(
            success=True, status_code=raw.status_code, batch_id=batch_id,
            results=results, metadata=metadata,
        )

    def _lookup_endpoint(
        self, registration: PartnerRegistration, tracking_number: str
    ) -> tuple[str, str, bool]:
        """Endpoint, method and whether a request body is needed for a status lookup."""
        config = registration.config
        endpoint = config.endpoint("check_claim_status", OPERATIONS["check_claim_status"].path)
        if "{tracking_number}" in endpoint:
            endpoint = endpoint.replace("{tracking_number}", quote(tracking_number, safe=""))
            placeholder = True
        else:
            placeholder = False

        if config.protocol is Protocol.SFTP:
            if not placeholder:
                endpoint = self._file_path(registration, endpoint, tracking_number)
            return endpoint, "GET", False
        if config.protocol is Protocol.SOAP or config.data_format is DataFormat.X12:
            return endpoint, "POST", True
        if not placeholder:
            key = registration.transformer.field_map.get("tracking_number", "tracking_number")
            endpoint = f"{endpoint}?{urlencode({key: tracking_number})}"
        return endpoint, "GET", False

    async def check_claim_status(
        self, partner_id: str, tracking_number: str, options: RequestOptions | None = None
    ) -> IntegrationResponse:
        async def work(registration, opts, metadata):
            if not tracking_number or not str(tracking_number).strip():
                raise ValidationError("Tracking number is required", errors=["tracking_number is required"])
            transformer = registration.transformer
            endpoint, method, needs_body = self._lookup_endpoint(registration, str(tracking_number))
            body = (
                transformer.to_wire(
                    transformer.prepare_status_query(tracking_number), operation="check_claim_status"
                )
                if needs_body
                else None
            )
            metadata.update(endpoint=endpoint, method=method)

            raw = await self._send(registration, endpoint, method, body, opts)
            metadata["headers"] = raw.headers
            result = transformer.parse_status_response(
                transformer.from_wire(raw.body), str(tracking_number)
            )
            return result, raw.status_code

        return await self._run(partner_id, "check_claim_status", options, work)

    async def verify_eligibility(
        self,
        partner_id: str,
        patient: Mapping[str, Any],
        provider: Mapping[str, Any],
        options: RequestOptions | None = None,
    ) -> IntegrationResponse:
        async def work(registration, opts, metadata):
            transformer = registration.transformer
            transformer.validate_eligibility(patient, provider)
            body = transformer.to_wire(
                transformer.prepare_eligibility(patient, provider), operation="verify_eligibility"
            )
            endpoint = registration.config.endpoint(
                "verify_eligibility", OPERATIONS["verify_eligibility"].path
            )
            method = OPERATIONS["verify_eligibility"].method
            if registration.config.protocol is Protocol.SFTP:
                endpoint = self._file_path(registration, endpoint, opts.correlation_id)
                method = "PUT"
            metadata.update(endpoint=endpoint, method=method)

            raw = await self._send(registration, endpoint, method, body, opts)
            metadata["headers"] = raw.headers
            return transformer.parse_eligibility_response(transformer.from_wire(raw.body)), raw.status_code

        return await self._run(partner_id, "verify_eligibility", options, work)

    async def download_remittance(
        self,
        partner_id: str,
        from_date: date | datetime,
        to_date: date | datetime,
        options: RequestOptions | None = None,
    ) -> IntegrationResponse:
        """Fetch remittance advice issued within an inclusive date window."""

        async def work(registration, opts, metadata):
            start = _window_bound(from_date, end=False, name="from_date")
            end = _window_bound(to_date, end=True, name="to_date")
            if end < start:
                raise ValidationError(
                    "Remittance window ends before it starts",
                    errors=["to_date precedes from_date"],
                )
            window = DateWindow(start, end)
            transformer = registration.transformer
            config = registration.config
            endpoint = config.endpoint("download_remittance", OPERATIONS["download_remittance"].path)
            query = transformer.prepare_remittance_query(start, end)

            if config.protocol is Protocol.SFTP:
                method, body = "GET", window
            elif config.protocol is Protocol.SOAP or config.data_format is DataFormat.X12:
                method = "POST"
                body = transformer.to_wire(query, operation="download_remittance")
            else:
                method, body = "GET", None
                endpoint = f"{endpoint}?{urlencode(transformer.map_fields(query))}"
            metadata.update(endpoint=endpoint, method=method)

            raw = await self._send(registration, endpoint, method, body, opts)
            metadata["headers"] = raw.headers
            if config.protocol is Protocol.SFTP:
                result = transformer.parse_remittance_files(raw.files)
            else:
                result = transformer.parse_remittance_response(transformer.from_wire(raw.body))
            result.update(from_date=start.isoformat(), to_date=end.isoformat())
            return result, raw.status_code

        return await self._run(partner_id, "download_remittance", options, work)

    async def execute(
        self,
        partner_id: str,
        operation: str,
        payload: Any = None,
        options: RequestOptions | None = None,
    ) -> IntegrationResponse | BatchResponse:
        """Dispatch an operation by name.

        Domain operation names route to their typed methods; any other name
        must be a configured endpoint of the partner and is sent as a POST of
        the mapped payload.
        """
        registration = self.registration(partner_id)
        payload = payload if payload is not None else {}

        if operation == "submit_claim":
            return await self.submit_claim(partner_id, payload, options)
        if operation == "submit_batch":
            claims = payload if isinstance(payload, (list, tuple)) else _field(payload, "claims")
            claims = list(claims) if isinstance(claims, (list, tuple)) else []
            batch_id = _field(payload, "batch_id")
            return await self.submit_batch(partner_id, claims, options, batch_id=batch_id)
        if operation == "check_claim_status":
            tracking = payload.get("tracking_number") if isinstance(payload, Mapping) else payload
            return await self.check_claim_status(partner_id, tracking, options)
        if operation == "verify_eligibility":
            return await self.verify_eligibility(
                partner_id, _field(payload, "patient"), _field(payload, "provider"), options
            )
        if operation == "download_remittance":
            return await self.download_remittance(
                partner_id, _field(payload, "from_date"), _field(payload, "to_date"), options
            )
        if operation not in registration.config.endpoints:
            raise UnknownOperationError(operation, partner_id)

        async def work(registration, opts, metadata):
            endpoint = registration.config.endpoints[operation]
            method = "PUT" if registration.config.protocol is Protocol.SFTP else "POST"
            body = registration.transformer.to_wire(payload, operation=operation)
            metadata.update(endpoint=endpoint, method=method)
            raw = await self._send(registration, endpoint, method, body, opts)
            metadata["headers"] = raw.headers
            return registration.transformer.from_wire(raw.body), raw.status_code

        return await self._run(partner_id, operation, options, work)

    # Health

    async def check_health(self, partner_id: str) -> HealthStatus:
        """Probe a partner unless its breaker is OPEN; the probe counts as an outcome."""
        registration = self.registration(partner_id)
        breaker = registration.breaker
        if breaker.current_state() is CircuitState.OPEN:
            return HealthStatus(
                partner_id=partner_id,
                status=IntegrationStatus.CIRCUIT_OPEN,
                breaker_state=CircuitState.OPEN,
                message=f"Circuit breaker is OPEN; retry in {breaker.retry_after():.0f}s",
                details={"retry_after_seconds": breaker.retry_after()},
            )

        health = await registration.adapter.health()
        breaker.record_outcome(health.healthy)
        logger.info(
            "Partner health checked",
            partner_id=partner_id,
            status=health.status.value,
            response_time_ms=health.response_time_ms,
        )
        return replace(health, breaker_state=breaker.current_state())

    async def check_all_health(self) -> dict[str, HealthStatus]:
        partner_ids = self.partner_ids
        statuses = await asyncio.gather(*(self.check_health(p) for p in partner_ids))
        return dict(zip(partner_ids, statuses))
