"""Bills (cobranças): eligibility, prioritization and display formatting.

The billing API is loose about field names, so Bill accepts every spelling
seen in practice (camelCase, snake_case and legacy short names).
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Any of these in the status text means the bill is no longer payable
SETTLED_STATUS_MARKERS: tuple[str, ...] = ("pago", "quitado", "liquidado", "cancelado")

BillCategory = Literal["overdue", "current_month", "future"]

CATEGORY_RANK: dict[str, int] = {
    "overdue": 0,
    "current_month": 1,
    "future": 2,
}

_ISO_DATE_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")

INVALID_DATE_LABEL = "Data inválida"


def parse_due_date(value: Any) -> date | None:
    """Parse the YYYY-MM-DD prefix of an API date. None if unusable.

    Only the calendar part is read so a trailing time or offset can never
    shift the day.
    """
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    match = _ISO_DATE_PREFIX.match(value.strip())
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


class Bill(BaseModel):
    """A charge on a client's service, as returned by the billing API."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    due_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices("dataVencimento", "data_vencimento", "vencimento", "due_date"),
    )
    payment_date: str | None = Field(
        default=None,
        validation_alias=AliasChoices("dataPagamento", "data_pagamento", "payment_date"),
    )
    status_text: str = Field(
        default="",
        validation_alias=AliasChoices("statusDescricao", "status_descricao", "status_text"),
    )
    amount: Decimal | None = Field(
        default=None,
        validation_alias=AliasChoices("valor", "valorTotal", "valor_total", "amount"),
    )

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, value: Any) -> str | None:
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("due_date", mode="before")
    @classmethod
    def _lenient_due_date(cls, value: Any) -> date | None:
        return parse_due_date(value)

    @field_validator("payment_date", mode="before")
    @classmethod
    def _blank_payment_date(cls, value: Any) -> str | None:
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("status_text", mode="before")
    @classmethod
    def _status_as_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _lenient_amount(cls, value: Any) -> Decimal | None:
        if value is None or value == "":
            return None
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None

    def is_eligible(self) -> bool:
        """Payable: has an id, no payment date, and no settled/cancelled status."""
        if not self.id:
            return False
        if self.payment_date is not None:
            return False
        status = self.status_text.lower()
        return not any(marker in status for marker in SETTLED_STATUS_MARKERS)


def eligible_bills(bills: list[Bill]) -> list[Bill]:
    return [bill for bill in bills if bill.is_eligible()]


def categorize(due: date, today: date) -> BillCategory:
    """overdue (before today), current_month, or future."""
    if due < today:
        return "overdue"
    if due.year == today.year and due.month == today.month:
        return "current_month"
    return "future"


def _priority_key(bill: Bill, today: date) -> tuple[int, int, int]:
    # (unparsable last, category rank, most recent due date first)
    if bill.due_date is None:
        return (1, 0, 0)
    rank = CATEGORY_RANK[categorize(bill.due_date, today)]
    return (0, rank, -bill.due_date.toordinal())


def prioritize_bills(bills: list[Bill], today: date) -> list[Bill]:
    """Order bills: overdue, then current month, then future.

    Within a category the latest due date comes first. Bills whose due date
    could not be parsed go to the end. The sort is stable.
    """
    return sorted(bills, key=lambda bill: _priority_key(bill, today))


def select_bill(bills: list[Bill], today: date) -> Bill | None:
    """The eligible bill to offer for payment, or None if none is eligible."""
    ranked = prioritize_bills(eligible_bills(bills), today)
    return ranked[0] if ranked else None


def format_due_date(due: date | None) -> str:
    """dd/mm/yyyy, or a fixed label when the date is unknown."""
    if due is None:
        return INVALID_DATE_LABEL
    return due.strftime("%d/%m/%Y")


def format_amount(amount: Decimal | None) -> str:
    """Brazilian currency display with two decimals: R$ 89,90."""
    value = amount if amount is not None else Decimal("0")
    return f"R$ {value:.2f}".replace(".", ",")
