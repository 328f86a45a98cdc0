"""
Format codecs.

Convert normalized in-memory structures to and from wire bytes. Codecs know
nothing about partners; field mapping and status translation live in the
transformers package.
"""

import json
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from xml.sax.saxutils import escape

from defusedxml import ElementTree as ET

from .enums import DataFormat
from .exceptions import ProtocolError
from .x12 import X12Document, parse_interchange

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'


def local_name(tag: str) -> str:
    """Strip a ``{namespace}`` prefix from an element tag."""
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if hasattr(value, "value"):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "value") and not isinstance(value, (int, float, Decimal)):
        return str(value.value)
    return str(value)


class FormatCodec(ABC):
    """Encode and decode one payload dialect."""

    data_format: DataFormat
    content_type: str
    file_extension: str

    @abstractmethod
    def encode(self, data: Any) -> bytes:
        """Serialize a normalized structure."""

    @abstractmethod
    def decode(self, body: bytes) -> Any:
        """Parse wire bytes into a normalized structure."""


class JSONCodec(FormatCodec):
    data_format = DataFormat.JSON
    content_type = "application/json"
    file_extension = ".json"

    def encode(self, data: Any) -> bytes:
        return json.dumps(data, default=_json_default).encode("utf-8")

    def decode(self, body: bytes) -> Any:
        if not body or not body.strip():
            return {}
        try:
            return json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProtocolError(
                f"Invalid JSON payload: {e}", details={"body": body[:200].decode("utf-8", "replace")}
            ) from e


class FHIRCodec(JSONCodec):
    """FHIR resources travel as JSON with their own media type."""

    data_format = DataFormat.FHIR
    content_type = "application/fhir+json"
    file_extension = ".fhir.json"


class XMLCodec(FormatCodec):
    """Dictionary to XML and back.

    Repeated child tags decode to lists, attributes merge into the element's
    mapping and mixed text lands under ``_text``.
    """

    data_format = DataFormat.XML
    content_type = "application/xml"
    file_extension = ".xml"

    def __init__(self, root_element: str = "root", declaration: bool = True):
        self.root_element = root_element
        self.declaration = declaration

    def encode(self, data: Any, root_element: str | None = None) -> bytes:
        root = root_element or self.root_element
        if isinstance(data, dict):
            xml = self._element(root, data)
        else:
            xml = f"<{root}>{escape(_scalar_text(data))}</{root}>"
        if self.declaration:
            xml = XML_DECLARATION + xml
        return xml.encode("utf-8")

    def _element(self, name: str, value: Any) -> str:
        if value is None:
            return f"<{name}/>"
        if isinstance(value, dict):
            children = "".join(self._child(k, v) for k, v in value.items())
            return f"<{name}>{children}</{name}>"
        return f"<{name}>{escape(_scalar_text(value))}</{name}>"

    def _child(self, name: str, value: Any) -> str:
        if isinstance(value, (list, tuple)):
            return "".join(self._element(name, item) for item in value)
        return self._element(name, value)

    def decode(self, body: bytes) -> Any:
        if not body or not body.strip():
            return {}
        try:
            root = ET.fromstring(body)
        except ET.ParseError as e:
            raise ProtocolError(f"Invalid XML payload: {e}") from e
        return {local_name(root.tag): element_to_dict(root)}


def element_to_dict(element) -> Any:
    """Convert an ElementTree element into plain Python values."""
    result: dict[str, Any] = {}

    if element.attrib:
        result.update({local_name(k): v for k, v in element.attrib.items()})

    text = element.text.strip() if element.text else ""
    if text:
        if element.attrib or len(element) > 0:
            result["_text"] = text
        else:
            return text

    for child in element:
        tag = local_name(child.tag)
        child_data = element_to_dict(child)
        if tag in result:
            if not isinstance(result[tag], list):
                result[tag] = [result[tag]]
            result[tag].append(child_data)
        else:
            result[tag] = child_data

    if not result and not text:
        return None
    return result


class HL7Codec(FormatCodec):
    """HL7 v2 pipe-delimited messages.

    The normalized form is ``{"segments": [[segment_id, field1, ...], ...]}``.
    ``MSH`` keeps the field separator implicit, so ``MSH-2`` (the encoding
    characters) is element 1 of the MSH list.
    """

    data_format = DataFormat.HL7
    content_type = "x-application/hl7-v2+er7"
    file_extension = ".hl7"

    FIELD_SEPARATOR = "|"
    SEGMENT_SEPARATOR = "\r"

    def encode(self, data: Any) -> bytes:
        segments = data.get("segments") if isinstance(data, dict) else data
        if not segments:
            raise ProtocolError("HL7 message requires at least one segment")
        lines = []
        for segment in segments:
            if not segment or not str(segment[0]).strip():
                raise ProtocolError("HL7 segment requires a segment id")
            lines.append(
                self.FIELD_SEPARATOR.join("" if f is None else _scalar_text(f) for f in segment)
            )
        return self.SEGMENT_SEPARATOR.join(lines).encode("utf-8")

    def decode(self, body: bytes) -> Any:
        text = body.decode("utf-8", errors="replace")
        lines = [line for line in text.replace("\n", "\r").split("\r") if line.strip()]
        if not lines:
            return {"segments": []}
        segments = [line.split(self.FIELD_SEPARATOR) for line in lines]
        if segments[0][0] != "MSH":
            raise ProtocolError(
                "HL7 message must start with an MSH segment",
                details={"first_segment": segments[0][0]},
            )
        msh = segments[0]
        return {
            "segments": segments,
            "message_type": msh[8] if len(msh) > 8 else None,
            "control_id": msh[9] if len(msh) > 9 else None,
        }


class X12Codec(FormatCodec):
    """Pass-through for rendered interchanges, summary parse on decode."""

    data_format = DataFormat.X12
    content_type = "application/edi-x12"
    file_extension = ".x12"

    def encode(self, data: Any) -> bytes:
        if isinstance(data, X12Document):
            return data.render().encode("utf-8")
        if isinstance(data, bytes):
            return data
        if isinstance(data, str):
            return data.encode("utf-8")
        raise ProtocolError(
            "X12 payloads must be a rendered interchange or an X12Document",
            details={"type": type(data).__name__},
        )

    def decode(self, body: bytes) -> Any:
        return parse_interchange(body.decode("utf-8", errors="replace"))


_CODECS: dict[DataFormat, type[FormatCodec]] = {
    DataFormat.JSON: JSONCodec,
    DataFormat.FHIR: FHIRCodec,
    DataFormat.XML: XMLCodec,
    DataFormat.HL7: HL7Codec,
    DataFormat.X12: X12Codec,
}


def get_codec(data_format: DataFormat, **kwargs) -> FormatCodec:
    """Codec instance for a data format."""
    return _CODECS[DataFormat(data_format)](**kwargs)


def content_type_for(data_format: DataFormat) -> str:
    return _CODECS[DataFormat(data_format)].content_type


def file_extension_for(data_format: DataFormat) -> str:
    return _CODECS[DataFormat(data_format)].file_extension
