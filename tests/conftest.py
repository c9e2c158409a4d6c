"""
Pytest configuration and shared fixtures.
"""

import pytest
import json
from pathlib import Path
from typing import Dict, Any, List

from subsidymatch.config import MatchConfig
from subsidymatch.database import init_database

from pipelines.matching.engine import MatchingEngine, MatchOptions
from storage.repositories.baselines import InMemoryBaselineCache


@pytest.fixture
def company_profile() -> Dict[str, Any]:
    """Company profile used as the query entity."""
    return {
        "id": "company-001",
        "name": "Acme Software",
        "industry": "IT",
        "scale": 50,
        "needs": ["DX推進", "AI導入"],
    }


@pytest.fixture
def subsidy_records() -> List[Dict[str, Any]]:
    """Candidate subsidies covering every known industry."""
    return [
        {
            "id": "sub-001",
            "name": "IT導入補助金",
            "industry": "IT",
            "needs": ["DX推進", "業務効率化"],
            "max_amount": 4500000,
            "status": "active",
            "embedding": [1.0, 0.0, 0.0, 0.0],
        },
        {
            "id": "sub-002",
            "name": "ものづくり補助金",
            "industry": "製造業",
            "needs": ["設備投資", "研究開発"],
            "max_amount": 12500000,
            "status": "active",
            "embedding": [0.8, 0.6, 0.0, 0.0],
        },
        {
            "id": "sub-003",
            "name": "小規模事業者持続化補助金",
            "industry": "小売業",
            "needs": ["販路開拓"],
            "max_amount": 500000,
            "status": "active",
            "embedding": [0.0, 1.0, 0.0, 0.0],
        },
        {
            "id": "sub-004",
            "name": "事業承継・引継ぎ補助金",
            "industry": "サービス業",
            "needs": ["事業承継", "人材育成"],
            "max_amount": 6000000,
            "status": "closed",
            "embedding": [0.6, 0.8, 0.0, 0.0],
        },
        {
            "id": "sub-005",
            "name": "省エネルギー投資促進支援",
            "industry": "manufacturing",
            "needs": ["省エネ", "コスト削減"],
            "max_amount": 100000000,
            "status": "active",
            "embedding": [0.0, 0.0, 1.0, 0.0],
        },
    ]


@pytest.fixture
def small_config() -> MatchConfig:
    """Small dimensions so the ensemble runs fast in tests."""
    return MatchConfig(
        dimension=32,
        hidden_layers=(16, 16, 16),
        ensemble_size=3,
        shots=50,
        max_workers=2,
        cache_pool_size=2,
    )


@pytest.fixture
def fast_options() -> MatchOptions:
    return MatchOptions(shots=20, parallelism=2, seed=7)


@pytest.fixture
def baseline_cache() -> InMemoryBaselineCache:
    return InMemoryBaselineCache()


@pytest.fixture
def engine(small_config, baseline_cache) -> MatchingEngine:
    return MatchingEngine(small_config, cache=baseline_cache)


@pytest.fixture
def db_path(tmp_path) -> Path:
    """Initialized SQLite database in a temp directory."""
    path = tmp_path / "subsidies.db"
    init_database(path)
    return path


@pytest.fixture
def subsidies_file(tmp_path, subsidy_records) -> Path:
    """Subsidy records written as an import file."""
    path = tmp_path / "subsidies.json"
    path.write_text(json.dumps({"subsidies": subsidy_records}, ensure_ascii=False), encoding="utf-8")
    return path
