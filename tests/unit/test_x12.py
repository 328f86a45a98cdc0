"""
Tests for X12 interchange building and parsing.
"""

from datetime import datetime, timezone

import pytest

from payer_gateway.exceptions import ProtocolError
from payer_gateway.x12 import (
    ControlNumberFactory,
    X12Document,
    claim_segments,
    eligibility_segments,
    format_amount,
    parse_interchange,
    split_segments,
    status_segments,
)

CREATED = datetime(2024, 3, 5, 14, 30, tzinfo=timezone.utc)


def make_document(**overrides) -> X12Document:
    values = {
        "transaction_set": "837",
        "segments": [["CLM", "PCN1", "125.00"], ["DTP", "472", "RD8", "20240301-20240301"]],
        "sender_id": "SENDER",
        "receiver_id": "RECEIVER",
        "control_number": 42,
        "usage_indicator": "T",
        "created": CREATED,
    }
    values.update(overrides)
    return X12Document(**values)


@pytest.mark.unit
class TestX12Document:
    """Test interchange rendering."""

    def test_isa_header(self):
        """ISA carries fixed-width ids, 9-digit control number and usage indicator."""
        isa = make_document().render().split("~")[0]

        assert isa == (
            "ISA*00*" + " " * 10 + "*00*" + " " * 10
            + "*ZZ*" + "SENDER".ljust(15) + "*ZZ*" + "RECEIVER".ljust(15)
            + "*240305*1430*^*00501*000000042*0*T*:"
        )

    def test_envelope_segments(self):
        """GS/ST open and SE/GE/IEA close the body with matching counts."""
        segments = split_segments(make_document().render())

        assert segments[1] == [
            "GS", "HC", "SENDER", "RECEIVER", "20240305", "1430", "42", "X", "005010X222A1"
        ]
        assert segments[2] == ["ST", "837", "0001", "005010X222A1"]
        assert segments[-3] == ["SE", "4", "0001"]
        assert segments[-2] == ["GE", "1", "42"]
        assert segments[-1] == ["IEA", "1", "000000042"]

    def test_unsupported_transaction_set(self):
        """Only known transaction sets render."""
        with pytest.raises(ProtocolError):
            make_document(transaction_set="999").render()

    def test_control_number_must_fit(self):
        """Control numbers are limited to nine digits."""
        with pytest.raises(ProtocolError):
            make_document(control_number=1_000_000_000).render()


@pytest.mark.unit
class TestSegmentBuilders:
    """Test payload to segment conversion."""

    def test_claim_segments(self, claim):
        """A claim yields CLM and its service date range."""
        assert claim_segments(claim) == [
            ["CLM", "PCN1001", "125.50"],
            ["DTP", "472", "RD8", "20240301-20240301"],
        ]

    def test_claim_segments_for_batch(self, make_claim):
        """Batch payloads yield one CLM per claim."""
        segments = claim_segments({"claims": [make_claim(1), make_claim(2)]})

        assert [s[1] for s in segments if s[0] == "CLM"] == ["PCN1", "PCN2"]

    def test_status_segments(self):
        """A status inquiry carries the tracking number in TRN."""
        assert status_segments({"tracking_number": "TRK-1"}) == [["TRN", "1", "TRK-1"]]

    def test_eligibility_segments(self):
        """Provider and subscriber are identified by NPI and member id."""
        segments = eligibility_segments(
            {"patient": {"medicaid_id": "M1", "last_name": "Doe"}, "provider": {"npi": "1234567890"}}
        )

        assert segments[0][-1] == "1234567890"
        assert segments[1][-1] == "M1"
        assert segments[1][3] == "Doe"

    def test_format_amount(self):
        """Amounts are rendered with two decimals."""
        assert format_amount(100) == "100.00"
        assert format_amount("99.5") == "99.50"
        with pytest.raises(ProtocolError):
            format_amount("lots")


@pytest.mark.unit
class TestParseInterchange:
    """Test interchange summaries and envelope validation."""

    def test_summary(self):
        """Parsing a rendered interchange reports header fields and claims."""
        summary = parse_interchange(make_document().render())

        assert summary["sender_id"] == "SENDER"
        assert summary["receiver_id"] == "RECEIVER"
        assert summary["control_number"] == "000000042"
        assert summary["usage_indicator"] == "T"
        assert summary["transaction_sets"] == [
            {"id": "837", "control_number": "0001", "segment_count": 4}
        ]
        assert summary["claims"] == [{"patient_control_number": "PCN1", "total_charges": "125.00"}]

    def test_remittance_payments(self):
        """CLP segments are reported as payments, TRN as trace numbers."""
        document = make_document(
            transaction_set="835",
            segments=[["TRN", "1", "EFT123"], ["CLP", "PCN1", "1", "125.00", "100.00"]],
        )

        summary = parse_interchange(document.render())

        assert summary["trace_numbers"] == ["EFT123"]
        assert summary["payments"] == [
            {
                "patient_control_number": "PCN1",
                "status_code": "1",
                "total_charges": "125.00",
                "paid_amount": "100.00",
            }
        ]

    def test_status_from_stc(self):
        """The first STC category code becomes the status."""
        document = make_document(transaction_set="276", segments=[["STC", "A2:20", "20240301"]])

        assert parse_interchange(document.render())["status"] == "A2"

    def test_missing_isa(self):
        """An interchange must begin with ISA."""
        with pytest.raises(ProtocolError):
            parse_interchange("GS*HC*A*B~IEA*1*000000001~")

    def test_mismatched_iea(self):
        """IEA must echo the ISA control number."""
        text = make_document().render().replace("IEA*1*000000042", "IEA*1*000000043")

        with pytest.raises(ProtocolError, match="IEA control number"):
            parse_interchange(text)

    def test_missing_iea(self):
        """An interchange without IEA is rejected."""
        text = make_document().render().split("IEA")[0]

        with pytest.raises(ProtocolError):
            parse_interchange(text)

    def test_wrong_segment_count(self):
        """SE01 must count the transaction set's segments."""
        text = make_document().render().replace("SE*4*0001", "SE*9*0001")

        with pytest.raises(ProtocolError, match="SE trailer"):
            parse_interchange(text)

    def test_unterminated_transaction_set(self):
        """A transaction set without SE is rejected."""
        text = make_document().render().replace("SE*4*0001~", "")

        with pytest.raises(ProtocolError):
            parse_interchange(text)


@pytest.mark.unit
class TestControlNumberFactory:
    """Test control number generation."""

    def test_sequential(self):
        """Numbers increase by one."""
        factory = ControlNumberFactory(start=7)

        assert [factory.next(), factory.next(), factory.next()] == [7, 8, 9]

    def test_wraps_within_nine_digits(self):
        """Numbers wrap back to 1 after 999999999."""
        factory = ControlNumberFactory(start=999_999_999)

        assert factory.next() == 999_999_999
        assert factory.next() == 1
