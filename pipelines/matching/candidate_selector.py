"""
Candidate Selection Logic.

Responsibilities:
- Describe the hard filters a candidate source applies (industry membership,
  amount range, active status).
- Provide an in-memory candidate source over plain records.

Non-Responsibilities:
- No scoring.
- No similarity computation.
- No ranking decisions.

Invariant:
Candidate selection must never exclude a record that satisfies every filter.
An empty selection is a valid result, not an error.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Sequence

from subsidymatch.normalize import normalize_industry, normalize_text

ACTIVE_STATUS = "active"


@dataclass(frozen=True)
class CandidateFilters:
    industries: Sequence[str] = field(default_factory=tuple)
    min_amount: Optional[int] = None
    max_amount: Optional[int] = None
    status: Optional[str] = ACTIVE_STATUS

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "CandidateFilters":
        data = data or {}
        return cls(
            industries=tuple(data.get("industries") or ()),
            min_amount=data.get("min_amount", data.get("minAmount")),
            max_amount=data.get("max_amount", data.get("maxAmount")),
            status=data.get("status", ACTIVE_STATUS),
        )

    def industry_keys(self) -> List[str]:
        """Canonical industry keys plus raw labels, so unknown labels still match verbatim."""
        keys = []
        for industry in self.industries:
            canonical = normalize_industry(industry)
            keys.append(canonical if canonical else normalize_text(str(industry)))
        return keys

    def matches(self, record: Mapping[str, Any]) -> bool:
        if self.status is not None and record.get("status", ACTIVE_STATUS) != self.status:
            return False

        if self.industries:
            industry = record.get("industry")
            if industry is None:
                return False
            key = normalize_industry(industry) or normalize_text(str(industry))
            if key not in self.industry_keys():
                return False

        amount = record.get("max_amount")
        if self.min_amount is not None and (amount is None or amount < self.min_amount):
            return False
        if self.max_amount is not None and (amount is None or amount > self.max_amount):
            return False
        return True


class CandidateSource(Protocol):
    def fetch(self, filters: CandidateFilters) -> List[dict]: ...


class StaticCandidateSource:
    """Candidate source over an in-memory list of records."""

    def __init__(self, records: Iterable[Mapping[str, Any]]):
        self._records = [dict(r) for r in records]

    def fetch(self, filters: Optional[CandidateFilters] = None) -> List[dict]:
        filters = filters or CandidateFilters()
        return [dict(r) for r in self._records if filters.matches(r)]
