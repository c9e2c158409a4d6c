"""
Subsidies Repository.

Responsibilities:
- Read subsidy candidates from the subsidies table, applying hard filters.
- Transaction-safe upserts for imports.

Non-Responsibilities:
- No business logic.
- No feature extraction.
- No scoring.

Invariant:
Repositories must not encode domain decisions.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from subsidymatch.database import Subsidy, get_sessionmaker
from subsidymatch.normalize import normalize_industry, normalize_text

from pipelines.matching.candidate_selector import ACTIVE_STATUS, CandidateFilters


def _stored_industry(industry: Any) -> Optional[str]:
    if not isinstance(industry, str) or not industry.strip():
        return None
    return normalize_industry(industry) or normalize_text(industry)


class SubsidyRepository:
    """Candidate source backed by the SQLite subsidies table."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._Session = get_sessionmaker(self.db_path)

    def fetch(self, filters: Optional[CandidateFilters] = None) -> List[dict]:
        filters = filters or CandidateFilters()
        session = self._Session()
        try:
            query = session.query(Subsidy)
            if filters.status is not None:
                query = query.filter(Subsidy.status == filters.status)
            if filters.industries:
                query = query.filter(Subsidy.industry.in_(filters.industry_keys()))
            if filters.min_amount is not None:
                query = query.filter(Subsidy.max_amount >= filters.min_amount)
            if filters.max_amount is not None:
                query = query.filter(Subsidy.max_amount <= filters.max_amount)
            return [row.to_record() for row in query.order_by(Subsidy.id).all()]
        finally:
            session.close()

    def upsert(self, records: Iterable[Mapping[str, Any]]) -> Dict[str, int]:
        """Insert or update subsidies by id. Returns counts of new and updated rows."""
        counts = {"new": 0, "updated": 0}
        session = self._Session()
        try:
            for record in records:
                row = session.get(Subsidy, str(record["id"]))
                if row is None:
                    row = Subsidy(id=str(record["id"]))
                    session.add(row)
                    counts["new"] += 1
                else:
                    counts["updated"] += 1
                row.name = record.get("name") or str(record["id"])
                row.industry = _stored_industry(record.get("industry"))
                row.scale = record.get("scale")
                row.needs = list(record.get("needs") or [])
                row.max_amount = record.get("max_amount")
                row.status = record.get("status") or ACTIVE_STATUS
                row.embedding = record.get("embedding")
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        return counts

    def count(self) -> int:
        session = self._Session()
        try:
            return session.query(Subsidy).count()
        finally:
            session.close()
