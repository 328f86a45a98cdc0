"""
Tests for partner transformers: field mapping, status translation,
validation and response normalization.
"""

import json
from datetime import datetime, timezone

import pytest

from payer_gateway.enums import ClaimStatus, DataFormat
from payer_gateway.exceptions import ConfigurationError, ProtocolError, ValidationError
from payer_gateway.models import RemoteFile
from payer_gateway.transformers import (
    STATE_STATUS_TABLES,
    SYSTEM_STATUS_TABLES,
    PartnerTransformer,
    find_first,
    find_list,
)
from payer_gateway.x12 import ControlNumberFactory, parse_interchange


@pytest.mark.unit
class TestFieldMapping:
    """Test canonical to partner field renaming."""

    def test_json_round_trip_with_field_map(self, make_partner, claim):
        """Mapped fields are renamed on the wire and restored on the way back."""
        config = make_partner(
            field_map={
                "client_id": "clientId",
                "total_amount": "amount",
                "service_lines": "lines",
                "code": "procCode",
            }
        )
        transformer = PartnerTransformer(config)
        original = {**claim, "service_lines": [{"code": "99213", "units": 1}]}

        wire = transformer.to_wire(original)
        on_wire = json.loads(wire)

        assert on_wire["clientId"] == "CL-77"
        assert on_wire["amount"] == 125.5
        assert on_wire["lines"] == [{"procCode": "99213", "units": 1}]
        assert "client_id" not in on_wire
        assert transformer.from_wire(wire) == original

    def test_unmapped_fields_pass_through(self, make_partner):
        """Fields without a mapping keep their names."""
        transformer = PartnerTransformer(make_partner(field_map={"id": "claimNumber"}))

        assert transformer.map_fields({"id": "C1", "memo": "x"}) == {"claimNumber": "C1", "memo": "x"}

    def test_non_injective_field_map_rejected(self, make_partner):
        """Two canonical fields may not share a partner name."""
        config = make_partner(field_map={"client_id": "member", "patient_id": "member"})

        with pytest.raises(ConfigurationError):
            PartnerTransformer(config)

    def test_xml_uses_state_root_element(self, make_partner):
        """Medicaid XML payloads are wrapped in the state's root element."""
        transformer = PartnerTransformer(make_partner(data_format="xml", state="ca"))

        body = transformer.to_wire({"id": "C1"})

        assert b"<MediCalRequest><id>C1</id></MediCalRequest>" in body
        assert transformer.from_wire(body) == {"id": "C1"}

    def test_xml_root_element_override(self, make_partner):
        """A configured root element wins over the state profile."""
        transformer = PartnerTransformer(
            make_partner(data_format="xml", state="CA", xml_root_element="ClaimEnvelope")
        )

        assert transformer.xml_root_element == "ClaimEnvelope"

    def test_empty_body_is_empty_mapping(self, make_partner):
        """An empty partner body decodes to an empty mapping."""
        assert PartnerTransformer(make_partner(data_format="xml")).from_wire(b"") == {}


@pytest.mark.unit
class TestWireFormats:
    """Test X12 and HL7 outbound payloads."""

    def test_x12_claim_in_test_mode(self, make_partner, claim):
        """Test-mode partners get usage indicator T and their submitter ids."""
        config = make_partner(
            data_format="x12",
            test_mode=True,
            submitter={"sender_id": "GATEWAY01", "receiver_id": "ACMEPAYER"},
        )
        transformer = PartnerTransformer(config, control_numbers=ControlNumberFactory(start=5))

        summary = parse_interchange(transformer.to_wire(claim, operation="submit_claim").decode())

        assert summary["usage_indicator"] == "T"
        assert summary["sender_id"] == "GATEWAY01"
        assert summary["receiver_id"] == "ACMEPAYER"
        assert summary["control_number"] == "000000005"
        assert summary["claims"][0]["patient_control_number"] == "PCN1001"

    def test_x12_production_indicator(self, make_partner):
        """Production partners get usage indicator P."""
        transformer = PartnerTransformer(make_partner(data_format="x12"))

        body = transformer.to_wire({"tracking_number": "TRK-1"}, operation="check_claim_status")
        summary = parse_interchange(body.decode())

        assert summary["usage_indicator"] == "P"
        assert summary["transaction_sets"][0]["id"] == "276"
        assert summary["trace_numbers"] == ["TRK-1"]

    def test_x12_unknown_operation(self, make_partner):
        """X12 needs a registered segment builder."""
        transformer = PartnerTransformer(make_partner(data_format="x12"))

        with pytest.raises(ProtocolError):
            transformer.to_wire({}, operation="cancel_claim")

    def test_custom_segment_builder(self, make_partner):
        """Segment builders can be plugged in per operation."""
        transformer = PartnerTransformer(
            make_partner(data_format="x12"),
            segment_builders={"cancel_claim": ("837", lambda p: [["CLM", p["id"], "0.00"]])},
        )

        summary = parse_interchange(transformer.to_wire({"id": "C9"}, operation="cancel_claim").decode())

        assert summary["claims"][0]["patient_control_number"] == "C9"

    def test_hl7_message_gets_msh(self, make_partner):
        """HL7 payloads without MSH get one from the partner config."""
        transformer = PartnerTransformer(make_partner(data_format="hl7"))

        body = transformer.to_wire({"segments": [["PID", "1", "", "M123"]]}, operation="verify_eligibility")
        decoded = transformer.from_wire(body)

        assert decoded["segments"][0][0] == "MSH"
        assert decoded["message_type"] == "RQI^I01"
        assert decoded["segments"][1] == ["PID", "1", "", "M123"]


@pytest.mark.unit
class TestStatusMapping:
    """Test wire status translation."""

    def test_state_table(self, make_partner):
        """Texas reports FINALIZED for paid claims."""
        transformer = PartnerTransformer(make_partner(partner_type="medicaid", state="TX"))

        assert transformer.map_status("FINALIZED") is ClaimStatus.PAID
        assert transformer.map_status("finalized") is ClaimStatus.PAID

    @pytest.mark.parametrize("state", sorted(STATE_STATUS_TABLES))
    def test_every_state_code_is_mapped(self, make_partner, state):
        """Each state table entry maps to its declared status."""
        transformer = PartnerTransformer(make_partner(state=state))

        for code, status in STATE_STATUS_TABLES[state].items():
            assert transformer.map_status(code) is status

    @pytest.mark.parametrize("system", sorted(SYSTEM_STATUS_TABLES))
    def test_every_system_code_is_mapped(self, make_partner, system):
        """Each clearinghouse table entry maps to its declared status."""
        transformer = PartnerTransformer(make_partner(system=system.title()))

        for code, status in SYSTEM_STATUS_TABLES[system].items():
            assert transformer.map_status(code) is status

    def test_config_overrides_tables(self, make_partner):
        """A partner's status_map wins over the state table."""
        transformer = PartnerTransformer(make_partner(state="NY", status_map={"r": "rejected"}))

        assert transformer.map_status("R") is ClaimStatus.REJECTED
        assert transformer.map_status("A") is ClaimStatus.ACKNOWLEDGED

    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            ("paid", ClaimStatus.PAID),
            ("PARTIAL_PAID", ClaimStatus.PARTIAL_PAID),
            ("CLAIM DENIED BY PAYER", ClaimStatus.DENIED),
            ("Rejected-123", ClaimStatus.REJECTED),
            ("PARTIALLY PAID", ClaimStatus.PARTIAL_PAID),
            ("ACCEPTED FOR PROCESSING", ClaimStatus.ACKNOWLEDGED),
            ("PENDED", ClaimStatus.PENDING),
            ("ZZZ", ClaimStatus.PENDING),
            ("", ClaimStatus.PENDING),
            (None, ClaimStatus.PENDING),
        ],
    )
    def test_canonical_names_and_heuristics(self, make_partner, code, expected):
        """Codes outside every table fall back to names, substrings, then PENDING."""
        assert PartnerTransformer(make_partner()).map_status(code) is expected


@pytest.mark.unit
class TestValidation:
    """Test pre-flight validation."""

    def test_valid_claim(self, make_partner, claim):
        """A complete claim passes."""
        PartnerTransformer(make_partner()).validate_claim(claim)

    def test_missing_fields(self, make_partner, claim):
        """Every missing required field is reported."""
        incomplete = {**claim, "payer_id": "", "client_id": None}

        with pytest.raises(ValidationError) as exc_info:
            PartnerTransformer(make_partner()).validate_claim(incomplete)

        assert exc_info.value.errors == ["client_id is required", "payer_id is required"]
        assert exc_info.value.retryable is False

    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"total_amount": 0}, "total_amount must be greater than zero"),
            ({"total_amount": "abc"}, "total_amount must be numeric"),
            ({"service_start_date": "yesterday"}, "service_start_date is not a valid date"),
            ({"service_end_date": "2024-02-01"}, "service_end_date precedes service_start_date"),
        ],
    )
    def test_invalid_values(self, make_partner, claim, overrides, message):
        """Amounts must be positive and service dates ordered."""
        with pytest.raises(ValidationError) as exc_info:
            PartnerTransformer(make_partner()).validate_claim({**claim, **overrides})

        assert message in exc_info.value.errors

    def test_eligibility_requires_patient_identifier(self, make_partner):
        """A patient needs a Medicaid ID or SSN."""
        with pytest.raises(ValidationError) as exc_info:
            PartnerTransformer(make_partner()).validate_eligibility(
                {"first_name": "Jane"}, {"npi": "1234567890"}
            )

        assert exc_info.value.errors == [
            "Either Medicaid ID or SSN is required for eligibility verification"
        ]

    def test_eligibility_requires_provider_identifier(self, make_partner):
        """A provider needs an NPI or provider number."""
        with pytest.raises(ValidationError) as exc_info:
            PartnerTransformer(make_partner()).validate_eligibility({"ssn": "123-45-6789"}, {})

        assert exc_info.value.errors == ["provider requires an NPI or provider number"]

    def test_batch_size_limits(self, make_partner, make_claim):
        """Batches are limited by config, then state profile, then the default."""
        claims = [make_claim(i) for i in range(60)]

        PartnerTransformer(make_partner()).validate_batch_size(claims)
        with pytest.raises(ValidationError, match="exceeds maximum batch size 50"):
            PartnerTransformer(make_partner(state="NY")).validate_batch_size(claims)
        with pytest.raises(ValidationError, match="exceeds maximum batch size 10"):
            PartnerTransformer(make_partner(max_batch_size=10)).validate_batch_size(claims)

    def test_empty_batch(self, make_partner):
        """A batch needs at least one claim."""
        with pytest.raises(ValidationError):
            PartnerTransformer(make_partner()).validate_batch_size([])


@pytest.mark.unit
class TestResponseParsing:
    """Test normalization of partner responses."""

    def test_claim_response_aliases(self, make_partner):
        """Tracking number and status are found under partner-specific keys."""
        transformer = PartnerTransformer(make_partner(system="Availity"))

        result = transformer.parse_claim_response(
            {"result": {"claimTrackingNumber": "TRK-77", "claimStatus": "ACCEPTED"}}
        )

        assert result["tracking_number"] == "TRK-77"
        assert result["status"] is ClaimStatus.ACKNOWLEDGED
        assert result["partner_status"] == "ACCEPTED"

    def test_claim_response_without_status(self, make_partner):
        """A response without a status means the claim was submitted."""
        result = PartnerTransformer(make_partner()).parse_claim_response({"id": "TRK-1"})

        assert result["status"] is ClaimStatus.SUBMITTED
        assert result["tracking_number"] == "TRK-1"

    def test_batch_response_keeps_input_order(self, make_partner, make_claim):
        """Batch results follow the submitted claims, not the partner's order."""
        transformer = PartnerTransformer(make_partner(system="Availity"))
        claims = [make_claim(1), make_claim(2), make_claim(3)]
        data = {
            "claimResults": [
                {"claimId": "CLM-3", "status": "REJECTED", "errors": [{"message": "bad code"}]},
                {"claimId": "CLM-1", "trackingNumber": "T1", "status": "ACCEPTED"},
            ]
        }

        results = transformer.parse_batch_response(data, claims)

        assert [r.claim_id for r in results] == ["CLM-1", "CLM-2", "CLM-3"]
        assert results[0].tracking_number == "T1"
        assert results[0].status is ClaimStatus.ACKNOWLEDGED
        assert results[1].status is ClaimStatus.ACKNOWLEDGED
        assert results[1].tracking_number is None
        assert results[2].status is ClaimStatus.REJECTED
        assert results[2].errors == ["bad code"]

    @pytest.mark.parametrize(
        ("data", "eligible"),
        [
            ({"eligibility_response": {"eligibility_indicator": "Y", "status": "ACTIVE"}}, True),
            ({"eligibility_response": {"eligibility_indicator": "N", "status": "ACTIVE"}}, False),
            ({"isEligible": False, "status": "ACTIVE"}, False),
            ({"eligible": "true"}, True),
            ({"status": "ELIGIBLE"}, True),
            ({"status": "TERMINATED"}, False),
            ({}, False),
        ],
    )
    def test_eligibility_flag_precedence(self, make_partner, data, eligible):
        """An explicit flag wins over an indicator, which wins over status."""
        result = PartnerTransformer(make_partner()).parse_eligibility_response(data)

        assert result["is_eligible"] is eligible

    def test_eligibility_details(self, make_partner):
        """Coverage dates, benefits and plan are surfaced."""
        result = PartnerTransformer(make_partner()).parse_eligibility_response(
            {
                "eligibility": {
                    "isEligible": True,
                    "effectiveDate": "2024-01-01",
                    "terminationDate": "2024-12-31",
                    "benefits": [{"type": "medical"}],
                    "planName": "Gold",
                }
            }
        )

        assert result["eligible_from"] == "2024-01-01"
        assert result["eligible_to"] == "2024-12-31"
        assert result["benefits"] == [{"type": "medical"}]
        assert result["plan"] == "Gold"

    def test_remittance_files_x12(self, make_partner):
        """X12 remittance files are summarized; broken ones carry an error."""
        transformer = PartnerTransformer(make_partner(data_format="x12"))
        valid = transformer.to_wire(
            {"from_date": "2024-03-01", "to_date": "2024-03-07"}, operation="download_remittance"
        )
        modified = datetime(2024, 3, 2, tzinfo=timezone.utc)
        files = [
            RemoteFile("era1.x12", "/out/era1.x12", valid, modified),
            RemoteFile("junk.x12", "/out/junk.x12", b"not edi", modified),
        ]

        result = transformer.parse_remittance_files(files)

        assert result["file_count"] == 2
        assert result["files"][0]["summary"]["transaction_sets"][0]["id"] == "835"
        assert result["files"][0]["date"] == "2024-03-02T00:00:00+00:00"
        assert result["files"][1]["error"]["error_code"] == "PROTOCOL_ERROR"

    def test_remittance_files_json(self, make_partner):
        """JSON remittance files are decoded."""
        transformer = PartnerTransformer(make_partner())
        files = [
            RemoteFile(
                "era.json", "/out/era.json", b'{"payments": [{"amount": 10}]}',
                datetime(2024, 3, 2, tzinfo=timezone.utc),
            )
        ]

        result = transformer.parse_remittance_files(files)

        assert result["files"][0]["data"] == {"payments": [{"amount": 10}]}


@pytest.mark.unit
class TestAliases:
    """Test alias lookup order."""

    def test_priority_order_at_top_level(self):
        """Earlier aliases win over later ones."""
        assert find_first({"id": "X", "trackingNumber": "T"}, ("tracking_number", "trackingNumber", "id")) == "T"

    def test_top_level_before_nested(self):
        """Any top-level alias wins over a nested one."""
        data = {"nested": {"tracking_number": "A"}, "id": "B"}

        assert find_first(data, ("tracking_number", "id")) == "B"

    def test_nested_lookup_and_default(self):
        """Nested mappings are searched and the default is returned otherwise."""
        assert find_first({"a": {"b": {"status": "P"}}}, ("status",)) == "P"
        assert find_first({"a": 1}, ("status",), "missing") == "missing"
        assert find_first({"status": ""}, ("status",), "missing") == "missing"

    def test_find_list_unwraps_xml_containers(self):
        """XML containers holding a repeated element yield the list."""
        data = {"claims": {"claim": [{"id": "1"}, {"id": "2"}]}}

        assert find_list(data, ("claims",)) == [{"id": "1"}, {"id": "2"}]
        assert find_list({"claims": {"id": "1"}}, ("claims",)) == [{"id": "1"}]
        assert find_list([1, 2], ("claims",)) == [1, 2]
        assert find_list({}, ("claims",)) == []


@pytest.mark.unit
class TestPartnerProfile:
    """Test derived partner properties."""

    def test_defaults(self, make_partner):
        """Clearinghouses default to a 100 claim batch and a Request root."""
        transformer = PartnerTransformer(make_partner())

        assert transformer.max_batch_size == 100
        assert transformer.xml_root_element == "Request"
        assert transformer.test_indicator == "P"
        assert transformer.file_extension == ".json"

    def test_medicaid_without_state(self, make_partner):
        """Medicaid partners without a known state use the generic profile."""
        transformer = PartnerTransformer(make_partner(partner_type="medicaid"))

        assert transformer.xml_root_element == "MedicaidRequest"
        assert transformer.data_format is DataFormat.JSON
