"""
Response field aliases.

Partners report the same fact under different keys. Each tuple below is the
priority order in which keys are tried; ``find_first`` checks the top level
of a response in that order before descending into nested mappings.
"""

from collections.abc import Mapping
from typing import Any

TRACKING_NUMBER_ALIASES = (
    "tracking_number",
    "trackingNumber",
    "claimTrackingNumber",
    "claim_tracking_number",
    "id",
    "claim_id",
    "reference_number",
    "control_number",
)

STATUS_ALIASES = (
    "status",
    "claimStatus",
    "claim_status",
    "statusCode",
    "status_code",
)

CLAIM_ID_ALIASES = ("claim_id", "claimId", "id")

BATCH_ID_ALIASES = ("batch_id", "batchId")

BATCH_RESULT_ALIASES = ("claims", "claimResults", "claim_results", "results")

ERROR_ALIASES = ("errors", "messages", "error")

REMITTANCE_FILE_ALIASES = ("files", "remittanceFiles", "remittance_files")

ELIGIBILITY_CONTAINER_ALIASES = (
    "eligibility_response",
    "eligibility",
    "eligibilityInfo",
    "eligibility_info",
)

ELIGIBLE_FLAG_ALIASES = ("is_eligible", "isEligible", "eligible")

ELIGIBILITY_INDICATOR_ALIASES = ("eligibility_indicator", "eligibilityIndicator")

ELIGIBILITY_STATUS_ALIASES = ("status", "eligibility_status", "eligibilityStatus")

COVERAGE_ALIASES = ("coverage_details", "coverageDetails", "coverage")

ELIGIBLE_FROM_ALIASES = ("eligible_from", "eligibleFrom", "effective_date", "effectiveDate")

ELIGIBLE_TO_ALIASES = ("eligible_to", "eligibleTo", "termination_date", "terminationDate")

BENEFIT_ALIASES = ("benefits", "coverages")

PLAN_ALIASES = ("plan", "insurance", "plan_name", "planName")

_MISSING = object()


def _lookup(data: Mapping[str, Any], aliases: tuple[str, ...]) -> Any:
    for alias in aliases:
        value = data.get(alias)
        if value is not None and value != "":
            return value
    return _MISSING


def find_first(data: Any, aliases: tuple[str, ...], default: Any = None) -> Any:
    """First non-empty value under any alias, top level first, then nested."""
    if not isinstance(data, Mapping):
        return default
    value = _lookup(data, aliases)
    if value is not _MISSING:
        return value
    for nested in data.values():
        if isinstance(nested, Mapping):
            found = find_first(nested, aliases, _MISSING)
            if found is not _MISSING:
                return found
    return default


def find_list(data: Any, aliases: tuple[str, ...]) -> list[Any]:
    """Like ``find_first`` but always returns a list; bare lists pass through."""
    if isinstance(data, list):
        return data
    found = find_first(data, aliases)
    if found is None:
        return []
    if isinstance(found, list):
        return found
    # XML containers decode as {"claims": {"claim": [...]}}
    if isinstance(found, Mapping) and len(found) == 1:
        (inner,) = found.values()
        if isinstance(inner, list):
            return inner
    return [found]
