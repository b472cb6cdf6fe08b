import pytest

from pos_printer.core.errors import JobValidationError
from pos_printer.core.schemas import is_valid_payload, validate_payload

from conftest import make_payload


def test_valid_payload_passes_and_keeps_extra_fields(payload):
    payload["notes"] = "keep me"
    model = validate_payload(payload)
    assert model.totals.total == 15000
    assert model.model_extra["notes"] == "keep me"


def test_float_total_is_accepted():
    assert is_valid_payload(make_payload(total=15000.5))


@pytest.mark.parametrize(
    "payload",
    [
        None,
        "text",
        [],
        {},
        {"invoice": {}, "items": []},
        {"invoice": {}, "totals": {}, "items": []},
        {"invoice": {}, "totals": {"total": "15000"}, "items": []},
        {"invoice": {}, "totals": {"total": None}, "items": []},
        {"invoice": {}, "totals": {"total": 1}, "items": "not a list"},
        {"invoice": "F-1", "totals": {"total": 1}, "items": []},
    ],
)
def test_invalid_payloads_are_rejected(payload):
    assert not is_valid_payload(payload)
    with pytest.raises(JobValidationError) as exc:
        validate_payload(payload)
    assert exc.value.retryable is False
    assert exc.value.details["errors"]


def test_error_details_name_the_field():
    with pytest.raises(JobValidationError) as exc:
        validate_payload({"invoice": {}, "totals": {"total": "x"}, "items": []})
    assert any(err.startswith("totals.total") for err in exc.value.details["errors"])
