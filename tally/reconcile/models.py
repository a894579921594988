"""
Data models for scan sessions.

All structured data uses dataclasses for type hints, __eq__, and __repr__.
Catalog items are frozen: a new upload replaces the whole catalog.
Timestamps are epoch milliseconds so they travel unchanged through JSON.
"""

from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional


class ScanMode(str, Enum):
    """
    How repeat scans of the same code are treated for a session.

    SET:      each code counts once, any repeat is a duplicate
    MULTISET: a code may be scanned up to its required quantity
    """
    SET = "set"
    MULTISET = "multiset"


@dataclass(frozen=True)
class Item:
    """
    One expected row from the uploaded spreadsheet.

    `attributes` keeps every source column in sheet order (the code column
    included) so reports can echo the row exactly as it was uploaded.
    """
    code: Optional[str]
    required_quantity: Optional[int] = None
    attributes: dict[str, Any] = field(default_factory=dict, hash=False)

    @property
    def quota(self) -> int:
        """Scans needed to satisfy this row (absent or zero means one)."""
        return max(1, self.required_quantity or 1)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "requiredQuantity": self.required_quantity,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Item":
        return cls(
            code=data.get("code"),
            required_quantity=data.get("requiredQuantity"),
            attributes=dict(data.get("attributes") or {}),
        )


@dataclass(frozen=True)
class Catalog:
    """Ordered list of expected items for one session version."""
    items: tuple[Item, ...] = ()
    columns: tuple[str, ...] = ()
    code_column: Optional[str] = None
    quantity_column: Optional[str] = None

    # code -> all items sharing it (built on init)
    _by_code: dict = field(default_factory=dict, init=False, repr=False, compare=False, hash=False)

    def __post_init__(self):
        """Build the code lookup."""
        by_code: dict[str, list[Item]] = {}
        for item in self.items:
            if item.code is None:
                continue
            by_code.setdefault(item.code, []).append(item)
        object.__setattr__(self, "_by_code", by_code)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def declares_quantity(self) -> bool:
        return self.quantity_column is not None

    @property
    def descriptive_columns(self) -> list[str]:
        """Source columns other than the code column, in sheet order."""
        return [c for c in self.columns if c != self.code_column]

    def lookup(self, code: str) -> list[Item]:
        """All items whose code equals `code` (empty list if none)."""
        return list(self._by_code.get(code, []))

    def contains(self, code: str) -> bool:
        return code in self._by_code

    def quota(self, code: str, mode: ScanMode) -> int:
        """
        Maximum accepted scans for a code.

        Set mode: always 1.
        Multiset mode: sum of the quotas of every item sharing the code,
        1 for codes that are not in the catalog.
        """
        if mode == ScanMode.SET:
            return 1
        items = self._by_code.get(code)
        if not items:
            return 1
        return sum(item.quota for item in items)

    def to_dict(self) -> dict:
        return {
            "codeColumn": self.code_column,
            "quantityColumn": self.quantity_column,
            "columns": list(self.columns),
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Catalog":
        return cls(
            items=tuple(Item.from_dict(i) for i in data.get("items", [])),
            columns=tuple(data.get("columns", [])),
            code_column=data.get("codeColumn"),
            quantity_column=data.get("quantityColumn"),
        )


@dataclass(frozen=True)
class Ledger:
    """
    Append-only record of accepted codes, in acceptance order.

    Mutations return a new Ledger; a session swaps its ledger in one step.
    """
    entries: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, code: str) -> bool:
        return code in self.entries

    def count(self, code: str) -> int:
        return self.entries.count(code)

    def counts(self) -> Counter:
        return Counter(self.entries)

    def distinct(self) -> list[str]:
        """Distinct codes in first-seen order."""
        return list(dict.fromkeys(self.entries))

    def append(self, code: str) -> "Ledger":
        return Ledger(self.entries + (code,))

    def to_list(self) -> list[str]:
        return list(self.entries)

    @classmethod
    def from_list(cls, codes) -> "Ledger":
        return cls(tuple(codes or ()))


@dataclass
class Session:
    """
    One shared scan session: a catalog version bound to its ledger.

    `id` never changes. Everything else is replaced in place by the owner
    (hub or store); participants only ever hold a possibly-stale copy.
    """
    id: str
    catalog: Catalog
    ledger: Ledger
    mode: ScanMode
    created_at: int
    expires_at: int
    participant_count: int = 0

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at

    def touch(self, now_ms: int, ttl_ms: int) -> None:
        """Refresh the expiry, never moving it backwards."""
        self.expires_at = max(self.expires_at, now_ms + ttl_ms)

    def with_catalog(self, catalog: Catalog, mode: ScanMode) -> "Session":
        """Swap the catalog and reset the ledger in one step."""
        return replace(self, catalog=catalog, ledger=Ledger(), mode=mode)

    def to_dict(self) -> dict:
        return {
            "code": self.id,
            "catalog": self.catalog.to_dict(),
            "scannedCodes": self.ledger.to_list(),
            "mode": self.mode.value,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
            "participantCount": self.participant_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        return cls(
            id=data["code"],
            catalog=Catalog.from_dict(data.get("catalog") or {}),
            ledger=Ledger.from_list(data.get("scannedCodes")),
            mode=ScanMode(data.get("mode", ScanMode.SET.value)),
            created_at=int(data.get("createdAt", 0)),
            expires_at=int(data.get("expiresAt", 0)),
            participant_count=int(data.get("participantCount", 0)),
        )
