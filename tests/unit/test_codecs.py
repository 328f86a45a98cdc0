"""
Tests for the format codecs.
"""

from datetime import date
from decimal import Decimal

import pytest

from payer_gateway.codecs import (
    HL7Codec,
    JSONCodec,
    XMLCodec,
    content_type_for,
    file_extension_for,
    get_codec,
)
from payer_gateway.enums import ClaimStatus, DataFormat
from payer_gateway.exceptions import ProtocolError


@pytest.mark.unit
class TestJSONCodec:
    """Test JSON encoding and decoding."""

    def test_encodes_dates_decimals_and_enums(self):
        """Non-JSON scalars are serialized to plain values."""
        body = JSONCodec().encode(
            {"date": date(2024, 3, 1), "amount": Decimal("12.50"), "status": ClaimStatus.PAID}
        )

        assert JSONCodec().decode(body) == {"date": "2024-03-01", "amount": 12.5, "status": "paid"}

    def test_empty_body_decodes_to_empty_mapping(self):
        """Partners that answer with no body yield an empty mapping."""
        assert JSONCodec().decode(b"") == {}
        assert JSONCodec().decode(b"   ") == {}

    def test_invalid_json_raises_protocol_error(self):
        """Malformed JSON is a protocol error, not a crash."""
        with pytest.raises(ProtocolError) as exc_info:
            JSONCodec().decode(b"{not json")

        assert exc_info.value.error_code == "PROTOCOL_ERROR"
        assert exc_info.value.retryable is False


@pytest.mark.unit
class TestXMLCodec:
    """Test dictionary to XML conversion."""

    def test_encode_nested_structure(self):
        """Mappings become elements and lists repeat their tag."""
        body = XMLCodec(root_element="ClaimRequest").encode(
            {"claim": {"id": "C1", "lines": [{"code": "99213"}, {"code": "99214"}]}, "note": None}
        )

        assert body == (
            b'<?xml version="1.0" encoding="UTF-8"?>'
            b"<ClaimRequest><claim><id>C1</id>"
            b"<lines><code>99213</code></lines><lines><code>99214</code></lines>"
            b"</claim><note/></ClaimRequest>"
        )

    def test_encode_escapes_text(self):
        """Markup characters in values are escaped."""
        body = XMLCodec(declaration=False).encode({"name": "Smith & <Sons>"})

        assert body == b"<root><name>Smith &amp; &lt;Sons&gt;</name></root>"

    def test_decode_repeated_tags_and_attributes(self):
        """Repeated children decode to lists and attributes merge in."""
        decoded = XMLCodec().decode(
            b'<Response version="2"><claim><id>A</id></claim><claim><id>B</id></claim>'
            b"<empty/></Response>"
        )

        assert decoded == {
            "Response": {
                "version": "2",
                "claim": [{"id": "A"}, {"id": "B"}],
                "empty": None,
            }
        }

    def test_decode_strips_namespaces(self):
        """Namespace prefixes are dropped from tags."""
        decoded = XMLCodec().decode(b'<ns:Status xmlns:ns="urn:x"><ns:code>PAID</ns:code></ns:Status>')

        assert decoded == {"Status": {"code": "PAID"}}

    def test_round_trip(self):
        """Encoding then decoding preserves a nested mapping."""
        data = {"patient": {"medicaid_id": "M1", "name": "Doe"}, "npi": "123"}
        codec = XMLCodec(root_element="Eligibility")

        assert codec.decode(codec.encode(data)) == {"Eligibility": data}

    def test_malformed_xml_raises_protocol_error(self):
        """Unparseable XML is a protocol error."""
        with pytest.raises(ProtocolError):
            XMLCodec().decode(b"<open><unclosed></open>")


@pytest.mark.unit
class TestHL7Codec:
    """Test HL7 v2 message handling."""

    def test_encode_segments(self):
        """Fields join with pipes and segments with carriage returns."""
        body = HL7Codec().encode(
            {"segments": [["MSH", "^~\\&", "APP"], ["PID", "1", None, "12345"]]}
        )

        assert body == b"MSH|^~\\&|APP\rPID|1||12345"

    def test_decode_message(self):
        """Decoding reports message type and control id from MSH."""
        body = b"MSH|^~\\&|GW|SND|RCV|FAC|20240301||RQI^I01|CTRL42|P|2.5\rPID|1||M123\n"

        decoded = HL7Codec().decode(body)

        assert decoded["message_type"] == "RQI^I01"
        assert decoded["control_id"] == "CTRL42"
        assert [s[0] for s in decoded["segments"]] == ["MSH", "PID"]

    def test_decode_requires_msh(self):
        """A message must start with MSH."""
        with pytest.raises(ProtocolError):
            HL7Codec().decode(b"PID|1||M123")

    def test_encode_requires_segments(self):
        """An empty message cannot be encoded."""
        with pytest.raises(ProtocolError):
            HL7Codec().encode({"segments": []})


@pytest.mark.unit
class TestCodecRegistry:
    """Test codec lookup helpers."""

    @pytest.mark.parametrize(
        ("fmt", "content_type", "extension"),
        [
            (DataFormat.JSON, "application/json", ".json"),
            (DataFormat.XML, "application/xml", ".xml"),
            (DataFormat.X12, "application/edi-x12", ".x12"),
            (DataFormat.HL7, "x-application/hl7-v2+er7", ".hl7"),
            (DataFormat.FHIR, "application/fhir+json", ".fhir.json"),
        ],
    )
    def test_content_types_and_extensions(self, fmt, content_type, extension):
        """Every format has a media type and file extension."""
        assert content_type_for(fmt) == content_type
        assert file_extension_for(fmt) == extension
        assert get_codec(fmt).data_format is fmt
