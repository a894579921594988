"""
Scan Classifier - decides what an incoming scan does to a session.

Decision Matrix:
| Valid? | In catalog? | Count < quota? | Mode     | Result          |
|--------|-------------|----------------|----------|-----------------|
| ✗      | -           | -              | -        | INVALID         |
| ✓      | ✓           | ✓              | -        | ACCEPTED        |
| ✓      | ✗           | ✓              | -        | SURPLUS         |
| ✓      | -           | ✗              | SET      | DUPLICATE       |
| ✓      | -           | ✗              | MULTISET | QUOTA_EXCEEDED  |

classify() is pure; apply() produces the mutated session. Only ACCEPTED and
SURPLUS mutate the ledger.
"""

import unicodedata
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional

from .catalog import canonical_code, get_default_config
from .models import Item, ScanMode, Session
from .report import progress_percentage

GROUP_SEPARATOR = "\x1d"  # GS1 barcodes embed it between fields


class ScanOutcome(str, Enum):
    ACCEPTED = "accepted"
    SURPLUS = "surplus"
    DUPLICATE = "duplicate"
    QUOTA_EXCEEDED = "quota-exceeded"
    INVALID = "invalid-input"


MUTATING_OUTCOMES = {ScanOutcome.ACCEPTED, ScanOutcome.SURPLUS}


@dataclass(frozen=True)
class Decision:
    """
    Result of classifying one scan against a session snapshot.

    Counts describe the session as it will be once the decision is applied.
    """
    outcome: ScanOutcome
    code: Optional[str]
    items: tuple[Item, ...] = ()
    count: int = 0               # accepted scans of this code
    quota: int = 1
    total_scanned: int = 0       # ledger size
    progress: int = 0            # percentage complete
    reason: str = ""

    @property
    def mutates(self) -> bool:
        return self.outcome in MUTATING_OUTCOMES

    @property
    def is_duplicate(self) -> bool:
        return self.outcome in (ScanOutcome.DUPLICATE, ScanOutcome.QUOTA_EXCEEDED)

    @property
    def message(self) -> str:
        """Human-readable notification for this outcome."""
        return describe(self)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "code": self.code,
            "count": self.count,
            "quota": self.quota,
            "totalScanned": self.total_scanned,
            "progressPercent": self.progress,
            "isDuplicate": self.is_duplicate,
            "message": self.message,
        }


def validate_code(raw: Any, max_length: Optional[int] = None) -> tuple[Optional[str], str]:
    """
    Canonicalize a decoded scan and check it is usable.

    The length limit defaults to `max_code_length` from the column config.

    Returns:
        (code, "") when valid, (None, reason) otherwise
    """
    if max_length is None:
        max_length = get_default_config().settings.max_code_length
    code = canonical_code(raw)
    if code is None:
        return None, "empty code"
    if len(code) > max_length:
        return None, f"code longer than {max_length} characters"
    for ch in code:
        if ch != GROUP_SEPARATOR and unicodedata.category(ch) == "Cc":
            return None, "code contains control characters"
    return code, ""


def classify(session: Session, raw_code: Any, max_length: Optional[int] = None) -> Decision:
    """
    Classify a scan against a consistent session snapshot.

    Args:
        session: Current catalog + ledger
        raw_code: Decoded text (or a numeric cell value)
        max_length: Longest code accepted (configured limit if None)

    Returns:
        Decision; never raises for bad input
    """
    ledger = session.ledger
    catalog = session.catalog

    code, reason = validate_code(raw_code, max_length)
    if code is None:
        return Decision(
            outcome=ScanOutcome.INVALID,
            code=None,
            total_scanned=len(ledger),
            progress=progress_percentage(catalog, ledger, session.mode),
            reason=reason,
        )

    items = tuple(catalog.lookup(code))
    quota = catalog.quota(code, session.mode)
    count = ledger.count(code)

    if count >= quota:
        outcome = ScanOutcome.DUPLICATE if session.mode == ScanMode.SET else ScanOutcome.QUOTA_EXCEEDED
        return Decision(
            outcome=outcome,
            code=code,
            items=items,
            count=count,
            quota=quota,
            total_scanned=len(ledger),
            progress=progress_percentage(catalog, ledger, session.mode),
        )

    after = ledger.append(code)
    return Decision(
        outcome=ScanOutcome.ACCEPTED if items else ScanOutcome.SURPLUS,
        code=code,
        items=items,
        count=count + 1,
        quota=quota,
        total_scanned=len(after),
        progress=progress_percentage(catalog, after, session.mode),
    )


def apply(session: Session, decision: Decision) -> Session:
    """Session with the decision's ledger mutation applied (same object if none)."""
    if not decision.mutates:
        return session
    return replace(session, ledger=session.ledger.append(decision.code))


def describe(decision: Decision) -> str:
    """Distinct notification text per outcome."""
    code = decision.code
    outcome = decision.outcome

    if outcome == ScanOutcome.ACCEPTED:
        if decision.quota > 1:
            return f"Scanned {code} ({decision.count}/{decision.quota})"
        return f"Scanned {code}"
    if outcome == ScanOutcome.SURPLUS:
        return f"Extra item: {code} is not in the catalog"
    if outcome == ScanOutcome.DUPLICATE:
        return f"Duplicate code: {code} was already scanned"
    if outcome == ScanOutcome.QUOTA_EXCEEDED:
        return f"Quantity reached: {code} already scanned {decision.count} of {decision.quota}"
    return f"Invalid scan: {decision.reason or 'unreadable code'}"
