import hashlib
from typing import Optional

import numpy as np


def normalize_text(s: str) -> str:
    return " ".join(s.strip().lower().split())


INDUSTRY_SYNS = {
    "it": "it",
    "information technology": "it",
    "ict": "it",
    "製造業": "manufacturing",
    "manufacturing": "manufacturing",
    "サービス業": "services",
    "services": "services",
    "service": "services",
    "小売業": "retail",
    "retail": "retail",
}

NEED_SYNS = {
    "dx推進": "dx",
    "dx": "dx",
    "digital transformation": "dx",
    "業務効率化": "efficiency",
    "efficiency": "efficiency",
    "ai導入": "ai",
    "ai": "ai",
    "iot活用": "iot",
    "iot": "iot",
    "クラウド化": "cloud",
    "cloud": "cloud",
    "セキュリティ強化": "security",
    "security": "security",
    "グローバル展開": "global_expansion",
    "global expansion": "global_expansion",
    "コスト削減": "cost_reduction",
    "cost reduction": "cost_reduction",
    "人材育成": "workforce",
    "workforce": "workforce",
    "事業承継": "succession",
    "succession": "succession",
    "省エネ": "energy_saving",
    "energy saving": "energy_saving",
    "販路開拓": "sales_channels",
    "sales channels": "sales_channels",
    "研究開発": "rnd",
    "r&d": "rnd",
    "設備投資": "equipment",
    "equipment": "equipment",
    "テレワーク": "telework",
    "telework": "telework",
    "創業": "startup",
    "startup": "startup",
}


def normalize_industry(industry) -> Optional[str]:
    """Map an industry label onto its canonical key, or None when unknown."""
    if not isinstance(industry, str):
        return None
    return INDUSTRY_SYNS.get(normalize_text(industry))


def normalize_need(need) -> Optional[str]:
    if not isinstance(need, str):
        return None
    key = normalize_text(need).replace("_", " ")
    return NEED_SYNS.get(key) or NEED_SYNS.get(normalize_text(need))


def compute_state_id(candidate_id: str, state: np.ndarray) -> str:
    """Stable identifier for a candidate's prepared state, used as cache key material."""
    digest = hashlib.sha256()
    digest.update(str(candidate_id).encode("utf-8"))
    digest.update(np.ascontiguousarray(state, dtype=np.float64).tobytes())
    return f"state_{digest.hexdigest()[:16]}"
