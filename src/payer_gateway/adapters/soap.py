"""
SOAP Adapter

SOAP 1.1 over HTTP. Outbound bodies are wrapped in an envelope carrying the
partner namespace and, when credentials exist, a WS-Security UsernameToken.
Responses must contain Envelope, Body and a ``*Response`` element.
"""

import re
import time
from typing import Any
from xml.sax.saxutils import escape

from defusedxml import ElementTree as ET

from ..codecs import local_name
from ..enums import Protocol
from ..exceptions import GatewayError, ProtocolError, RemoteError
from ..models import RawResponse, RequestOptions
from .rest import RESTAdapter

SOAP_ENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
WSSE_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd"

CLIENT_FAULT_CODES = frozenset({"Client", "Sender"})

_XML_DECLARATION = re.compile(rb"^\s*<\?xml[^>]*\?>\s*")


class SOAPAdapter(RESTAdapter):
    """SOAP binding; ``SOAPAction`` is the action prefix plus the operation name."""

    protocol = Protocol.SOAP

    @staticmethod
    def operation_name(endpoint: str) -> str:
        """Last path segment of an endpoint, e.g. ``claims/SubmitClaim`` -> ``SubmitClaim``."""
        return endpoint.rstrip("/").rsplit("/", 1)[-1]

    @property
    def action_prefix(self) -> str:
        if self.config.soap_action_prefix is not None:
            return self.config.soap_action_prefix
        return self.config.soap_namespace.rstrip("/") + "/"

    def security_header(self) -> str:
        credentials = self.config.credentials
        if not (credentials.username and credentials.password):
            return ""
        return (
            "<soapenv:Header>"
            f'<wsse:Security xmlns:wsse="{WSSE_NS}">'
            "<wsse:UsernameToken>"
            f"<wsse:Username>{escape(credentials.username)}</wsse:Username>"
            f"<wsse:Password>{escape(credentials.password)}</wsse:Password>"
            "</wsse:UsernameToken>"
            "</wsse:Security>"
            "</soapenv:Header>"
        )

    def build_envelope(self, operation: str, body: bytes | str | None) -> bytes:
        if isinstance(body, str):
            body = body.encode("utf-8")
        inner = _XML_DECLARATION.sub(b"", body or b"").decode("utf-8")
        prefix = self.config.soap_prefix
        envelope = (
            '<?xml version="1.0" encoding="UTF-8"?>'
            f'<soapenv:Envelope xmlns:soapenv="{SOAP_ENV_NS}" '
            f'xmlns:{prefix}="{escape(self.config.soap_namespace)}">'
            f"{self.security_header()}"
            "<soapenv:Body>"
            f"<{prefix}:{operation}>{inner}</{prefix}:{operation}>"
            "</soapenv:Body>"
            "</soapenv:Envelope>"
        )
        return envelope.encode("utf-8")

    def build_headers(self, options: RequestOptions, operation: str = "") -> dict[str, str]:
        headers = super().build_headers(options)
        headers["Content-Type"] = "text/xml; charset=utf-8"
        headers["Accept"] = "text/xml"
        headers["SOAPAction"] = f"{self.action_prefix}{operation}"
        return headers

    @staticmethod
    def _parse(body: bytes):
        try:
            return ET.fromstring(body)
        except ET.ParseError as e:
            raise ProtocolError(f"Malformed SOAP response: {e}") from e

    @staticmethod
    def _child(element, name: str):
        for child in element:
            if local_name(child.tag) == name:
                return child
        return None

    @staticmethod
    def _fault_message(fault) -> str:
        for child in fault.iter():
            if local_name(child.tag) in ("faultstring", "Text") and child.text:
                return child.text.strip()
        return "SOAP Fault"

    @staticmethod
    def _fault_status(fault) -> int:
        """400 for caller faults (SOAP 1.1 Client, 1.2 Sender), else 500."""
        for child in fault.iter():
            if local_name(child.tag) in ("faultcode", "Value") and child.text:
                code = child.text.strip().rsplit(":", 1)[-1].split(".", 1)[0]
                return 400 if code in CLIENT_FAULT_CODES else 500
        return 500

    def extract_response(self, body: bytes):
        """The ``*Response`` element inside Envelope/Body."""
        envelope = self._parse(body)
        if local_name(envelope.tag) != "Envelope":
            raise ProtocolError(
                "SOAP response has no Envelope element",
                details={"root": local_name(envelope.tag)},
            )
        soap_body = self._child(envelope, "Body")
        if soap_body is None:
            raise ProtocolError("SOAP response has no Body element")
        fault = self._child(soap_body, "Fault")
        if fault is not None:
            raise RemoteError(
                f"SOAP Fault from {self.config.display_name}: {self._fault_message(fault)}",
                self._fault_status(fault),
                details={"fault": self._fault_message(fault)},
            )
        for child in soap_body:
            if local_name(child.tag).endswith("Response"):
                return child
        raise ProtocolError(
            "SOAP Body contains no Response element",
            details={"children": [local_name(c.tag) for c in soap_body]},
        )

    def _raise_for_fault_status(self, raw: RawResponse, url: str) -> None:
        if 200 <= raw.status_code < 300:
            return
        message = f"HTTP {raw.status_code} from {self.config.display_name}"
        status_code = raw.status_code
        fault = self._find_fault(raw.body)
        if fault is not None:
            message = f"SOAP Fault from {self.config.display_name}: {self._fault_message(fault)}"
            # SOAP 1.1 sends every fault as HTTP 500
            if self._fault_status(fault) == 400:
                status_code = 400
        raise RemoteError(
            message,
            status_code,
            details={"url": url, "http_status": raw.status_code, "body": raw.text[:500]},
        )

    @staticmethod
    def _find_fault(body: bytes):
        """Fault element of an error response, if the body is a SOAP envelope at all."""
        try:
            envelope = ET.fromstring(body)
        except ET.ParseError:
            return None
        for element in envelope.iter():
            if local_name(element.tag) == "Fault":
                return element
        return None

    async def send(
        self, endpoint: str, method: str, body: Any, options: RequestOptions
    ) -> RawResponse:
        operation = self.operation_name(endpoint)
        url = self.build_url(endpoint)
        started = time.perf_counter()
        try:
            raw = await self._request(
                "POST",
                url,
                self.build_envelope(operation, body),
                self.build_headers(options, operation),
                options,
            )
            self._raise_for_fault_status(raw, url)
            response = self.extract_response(raw.body)
        except GatewayError as e:
            self.log_call(endpoint, "POST", options, started, getattr(e, "status_code", None), e)
            raise
        self.log_call(endpoint, "POST", options, started, raw.status_code)
        return RawResponse(
            status_code=raw.status_code,
            body=ET.tostring(response, encoding="utf-8"),
            headers=raw.headers,
        )
