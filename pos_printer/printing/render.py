"""
Receipt rendering for the POS printer agent.

Turns a validated receipt payload into an ordered list of ESC/POS commands.
Rendering is pure: no printer, no I/O. Each Command names a python-escpos
printer method and its arguments, and is applied by the connection layer as
`getattr(printer, cmd.name)(*cmd.args, **cmd.kwargs)`.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

WIDTH_NORMAL = 48
WIDTH_DOUBLE = 24
LEFT_COLUMN_MAX = 32
DEFAULT_FOOTER = "Gracias por su compra"


class Command(NamedTuple):
    name: str
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = {}


def _num(value: Any) -> float:
    """Lenient numeric coercion: anything unparsable or non-finite counts as 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        n = float(value)
    except (TypeError, ValueError):
        return 0.0
    return n if math.isfinite(n) else 0.0


def format_currency(amount: Any) -> str:
    """
    Whole currency units with '.' as the thousands separator: 1234567.9 -> "$1.234.567".
    """
    whole = int(math.floor(_num(amount)))
    return "$" + f"{whole:,}".replace(",", ".")


def format_phone(phone: Any) -> str:
    """
    Group 10-digit numbers as "XXX XXX XXXX"; anything else is returned as given.
    """
    if not phone:
        return ""
    cleaned = re.sub(r"\D", "", str(phone))
    if len(cleaned) == 10:
        return f"{cleaned[:3]} {cleaned[3:6]} {cleaned[6:]}"
    return str(phone)


def draw_row(left: Any, right: Any, fill_char: str = " ", max_cols: int = WIDTH_NORMAL) -> str:
    """
    Left/right justified row. The left side is truncated to 32 columns and at
    least one fill character always separates both sides.
    """
    lhs = str(left or "")[:LEFT_COLUMN_MAX]
    rhs = str(right or "")
    space = max(1, max_cols - len(lhs) - len(rhs))
    return lhs + fill_char * space + rhs


class _Builder:
    def __init__(self) -> None:
        self.commands: List[Command] = []

    def set(self, **kwargs: Any) -> "_Builder":
        self.commands.append(Command("set", (), kwargs))
        return self

    def text(self, line: str) -> "_Builder":
        self.commands.append(Command("text", (f"{line}\n",)))
        return self

    def feed(self, count: int) -> "_Builder":
        self.commands.append(Command("ln", (count,)))
        return self

    def cut(self) -> "_Builder":
        self.commands.append(Command("cut"))
        return self


def _sum_by_method(payments: List[Any], method: str) -> float:
    return sum(_num(p.get("amount")) for p in payments if isinstance(p, Mapping) and p.get("method") == method)


def render_receipt(
    payload: Mapping[str, Any],
    width: int = WIDTH_NORMAL,
    double_width: int = WIDTH_DOUBLE,
    footer: Optional[str] = None,
    credit: Optional[str] = None,
) -> List[Command]:
    """
    Render a receipt payload into printer commands.

    Layout: company header, invoice block, optional customer block, items,
    totals, payment methods, change, footer and cut.

    Raises:
        TypeError/AttributeError only when the payload is structurally invalid
        (not a mapping, or items not iterable).
    """
    company = payload.get("company") or {}
    invoice = payload.get("invoice") or {}
    totals = payload.get("totals") or {"subtotal": 0, "discount": 0, "total": 0}
    customer = payload.get("customer") or {}
    payments = list(payload.get("payments") or [])
    items = payload.get("items")
    items = list(items) if isinstance(items, (list, tuple)) else []

    divider = "-" * width
    p = _Builder()

    # Header
    p.set(font="a", align="center", bold=True, double_width=True, double_height=True)
    p.text(str(company.get("name") or ""))
    p.set(bold=False, normal_textsize=True)
    p.text(f"NIT: {company.get('nit') or ''}")
    if company.get("regime"):
        p.text(str(company["regime"]))
    if company.get("address"):
        p.text(str(company["address"]))
    if company.get("phone"):
        p.text(f"TEL: {format_phone(company['phone'])}")
    p.text(divider)

    # Invoice
    p.set(align="left", bold=True)
    p.text(draw_row("FACTURA:", invoice.get("number") or "---", max_cols=width))
    p.set(bold=False)
    p.text(draw_row("ASESOR:", str(invoice.get("cashier") or "").upper(), max_cols=width))
    p.text(draw_row("FECHA:", invoice.get("date") or "", max_cols=width))
    p.text(draw_row("HORA:", invoice.get("time") or "", max_cols=width))
    p.text(divider)

    # Customer
    if customer.get("name"):
        p.text(draw_row("CLIENTE:", str(customer["name"]).upper()[:20], max_cols=width))
        if customer.get("id_number"):
            p.text(draw_row("NIT/CC:", str(customer["id_number"]), max_cols=width))
        p.text(divider)

    # Items
    for item in items:
        item = item if isinstance(item, Mapping) else {}
        p.set(bold=True).text(str(item.get("description") or "").upper()).set(bold=False)
        qty = _num(item.get("qty"))
        price = _num(item.get("price"))
        qty_label = int(qty) if qty.is_integer() else qty
        p.text(draw_row(f"{qty_label} x {format_currency(price)}", format_currency(qty * price), max_cols=width))
    p.text(divider)

    # Totals
    total = _num(totals.get("total"))
    if _num(totals.get("discount")) > 0:
        p.text(draw_row("SUBTOTAL:", format_currency(totals.get("subtotal")), max_cols=width))
        p.text(draw_row("DESCUENTO:", f"-{format_currency(totals.get('discount'))}", max_cols=width))
    p.feed(1)
    p.set(bold=True, double_width=True, double_height=True)
    p.text(draw_row("TOTAL:", format_currency(total), max_cols=double_width))
    p.set(bold=False, normal_textsize=True)
    p.text(divider)

    # Payments
    p.set(align="center", bold=True).text("MEDIOS DE PAGO")
    cash = _sum_by_method(payments, "cash")
    transfer = _sum_by_method(payments, "bank_transfer")
    card = _sum_by_method(payments, "credit_card")
    balance = _sum_by_method(payments, "account_balance")

    p.set(align="left", bold=False)
    p.text(draw_row("EFECTIVO", format_currency(cash), max_cols=width))
    # Transfer is the fallback line when nothing but cash was used
    if transfer > 0 or (card < 1 and balance < 1):
        p.text(draw_row("TRANSFERENCIA", format_currency(transfer), max_cols=width))
    if card > 0:
        p.text(draw_row("TARJETA", format_currency(card), max_cols=width))
    if balance > 0:
        p.text(draw_row("SALDO FAVOR", format_currency(balance), max_cols=width))
    p.text("." * width)

    change = max(0.0, cash + transfer + card + balance - total)
    p.set(bold=True).text(draw_row("CAMBIO", format_currency(change), max_cols=width)).set(bold=False)

    # Footer
    p.feed(2)
    p.set(align="center")
    for line in str(company.get("footer") or footer or DEFAULT_FOOTER).split("\n"):
        p.text(line.strip())
    p.text(divider)
    if credit:
        p.text(str(credit))
    p.feed(3)
    p.cut()
    return p.commands


def sample_payload() -> Dict[str, Any]:
    """A small receipt used by the --test-print command."""
    return {
        "company": {"name": "POS PRINTER", "nit": "000000000-0", "footer": "Test page\nPrinter is working"},
        "invoice": {"number": "TEST-0001", "cashier": "agent", "date": "", "time": ""},
        "items": [{"description": "Test item", "qty": 1, "price": 1000}],
        "totals": {"subtotal": 1000, "discount": 0, "total": 1000},
        "payments": [{"method": "cash", "amount": 1000}],
    }


__all__ = [
    "Command",
    "WIDTH_DOUBLE",
    "WIDTH_NORMAL",
    "draw_row",
    "format_currency",
    "format_phone",
    "render_receipt",
    "sample_payload",
]
