"""
Ledger transaction representation.

Amounts are signed integers in minor currency units (cents). A transaction's
origin is fixed at creation: either entered manually or imported from a bank
feed.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Any


class Origin(str, Enum):
    """Provenance of a transaction."""

    MANUAL = "manual"
    BANK = "bank"


def parse_date(value: str | date | None) -> date | None:
    """Parse an ISO calendar date.

    Accepts date and datetime objects as well as ISO strings; only the
    date portion (first 10 characters) of a string is considered.

    Returns:
        date or None if the value is missing or unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def _coerce_amount(value: Any) -> int:
    """Coerce an amount to integer minor units, rejecting fractional values."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Amount must be whole minor units, got {value!r}")
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise ValueError(f"Amount must be whole minor units, got {value!r}") from None
    raise ValueError(f"Invalid amount: {value!r}")


@dataclass(frozen=True)
class Transaction:
    """A financial ledger entry.

    Instances are immutable; updates produce a new instance via
    dataclasses.replace (see with_conflict_flag).
    """

    id: str
    date: str
    account_id: str
    amount: int
    payee: str = ""
    payee_name: str | None = None
    category: str | None = None
    notes: str | None = None
    origin: Origin = Origin.MANUAL
    imported_id: str | None = None
    has_conflict: bool = False
    cleared: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _coerce_amount(self.amount))
        if not isinstance(self.origin, Origin):
            object.__setattr__(self, "origin", Origin(self.origin))

    @property
    def display_payee(self) -> str:
        """Payee text shown to the user (payee_name wins over payee)."""
        return self.payee_name or self.payee or ""

    @property
    def parsed_date(self) -> date | None:
        return parse_date(self.date)

    @property
    def is_manual(self) -> bool:
        return self.origin == Origin.MANUAL

    @property
    def is_bank(self) -> bool:
        return self.origin == Origin.BANK

    def with_conflict_flag(self, has_conflict: bool) -> Transaction:
        return replace(self, has_conflict=has_conflict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], account_id: str | None = None) -> Transaction:
        """Build a transaction from an API/JSON record.

        Accepts both snake_case and the engine's camelCase account key. A
        record without an origin tag is treated as manually entered.

        Raises:
            ValueError: If required fields are missing or the amount is not
                an integer number of minor units.
        """
        tx_id = data.get("id")
        if tx_id is None or tx_id == "":
            raise ValueError("Transaction id is required")

        account = data.get("account_id") or data.get("accountId") or account_id
        if not account:
            raise ValueError(f"Transaction {tx_id} has no account")

        if "amount" not in data:
            raise ValueError(f"Transaction {tx_id} has no amount")

        return cls(
            id=str(tx_id),
            date=str(data.get("date") or ""),
            account_id=str(account),
            amount=data["amount"],
            payee=data.get("payee") or "",
            payee_name=data.get("payee_name"),
            category=data.get("category"),
            notes=data.get("notes"),
            origin=Origin(data.get("origin") or Origin.MANUAL.value),
            imported_id=data.get("imported_id"),
            has_conflict=bool(data.get("hasConflict", data.get("has_conflict", False))),
            cleared=bool(data.get("cleared", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "date": self.date,
            "account_id": self.account_id,
            "amount": self.amount,
            "payee": self.payee,
            "payee_name": self.payee_name,
            "category": self.category,
            "notes": self.notes,
            "origin": self.origin.value,
            "imported_id": self.imported_id,
            "has_conflict": self.has_conflict,
            "cleared": self.cleared,
        }


TransactionSource = Mapping[str, Iterable[Transaction]] | Iterable[Transaction]


def flatten_transactions(source: TransactionSource) -> list[Transaction]:
    """Flatten an account -> transactions mapping (or a flat iterable).

    Mapping order and per-account order are preserved.
    """
    if isinstance(source, Mapping):
        flat: list[Transaction] = []
        for transactions in source.values():
            flat.extend(transactions)
        return flat
    return list(source)
