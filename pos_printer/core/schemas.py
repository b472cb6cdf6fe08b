"""
Pydantic schema for receipt payloads.

Only the minimal shape the delivery engine depends on is enforced: an invoice
object, a numeric total and a list of items. Every other field is passed
through untouched for the render stage, which is lenient about the details.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, ValidationError

from pos_printer.core.errors import JobValidationError


class Totals(BaseModel):
    model_config = ConfigDict(extra="allow")

    total: Union[StrictInt, StrictFloat]
    subtotal: Any = None
    discount: Any = None


class ReceiptPayload(BaseModel):
    """Minimal receipt shape: invoice info, a numeric total and a list of items."""

    model_config = ConfigDict(extra="allow")

    invoice: Dict[str, Any]
    totals: Totals
    items: List[Any]
    company: Optional[Dict[str, Any]] = None
    customer: Optional[Dict[str, Any]] = None
    payments: Optional[List[Any]] = None


def validate_payload(payload: Any) -> ReceiptPayload:
    """
    Validate a job payload and return the parsed model.

    Raises:
        JobValidationError with the pydantic error list in `details["errors"]`.
    """
    if not isinstance(payload, dict):
        raise JobValidationError("Invalid job payload", {"errors": ["payload must be an object"]})
    try:
        return ReceiptPayload.model_validate(payload)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise JobValidationError("Invalid job payload", {"errors": errors}) from e


def is_valid_payload(payload: Any) -> bool:
    try:
        validate_payload(payload)
    except JobValidationError:
        return False
    return True


__all__ = ["ReceiptPayload", "Totals", "is_valid_payload", "validate_payload"]
