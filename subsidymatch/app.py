import argparse
import asyncio
import json
import os
from pathlib import Path

from .env import load_env

from . import __version__
from .cleanup import purge_expired_baselines
from .config import MatchConfig
from .database import init_database
from .errors import MatchError
from .logger import get_logger
from .schema import validate_candidate

from pipelines.matching.engine import MatchingEngine, MatchOptions
from pipelines.matching.candidate_selector import CandidateFilters
from pipelines.matching.similarity import HttpSimilaritySource, InMemorySimilaritySource
from storage.repositories.baselines import RedisBaselineCache, SqlBaselineCache
from storage.repositories.subsidies import SubsidyRepository


def _read_json(path_str: str):
    path = Path(path_str)
    if not path.exists():
        raise SystemExit(f"Input file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _config(args: argparse.Namespace) -> MatchConfig:
    overrides = {"db_path": Path(args.db)}
    if getattr(args, "dimension", None):
        overrides["dimension"] = args.dimension
    return MatchConfig.from_env(**overrides)


def _baseline_cache(config: MatchConfig):
    if config.redis_url:
        return RedisBaselineCache.from_url(config.redis_url)
    return SqlBaselineCache(config.db_path)


def _split(value):
    return [v.strip() for v in value.split(",") if v.strip()] if value else []


def cmd_init_db(args: argparse.Namespace) -> None:
    db_path = Path(args.db)
    init_database(db_path)
    print(f"Database ready: {db_path}")


def cmd_import(args: argparse.Namespace) -> None:
    data = _read_json(args.input)
    records = data.get("subsidies", []) if isinstance(data, dict) else data
    if not isinstance(records, list):
        raise SystemExit("Input must be a JSON list of subsidies or {\"subsidies\": [...]}")

    valid = []
    skipped = 0
    for record in records:
        errors = validate_candidate(record)
        if errors:
            print(f"[skip] {errors[0]}: {str(record)[:80]}")
            skipped += 1
            continue
        valid.append(record)

    db_path = Path(args.db)
    init_database(db_path)
    counts = SubsidyRepository(db_path).upsert(valid)
    print(f"Done. new={counts['new']} updated={counts['updated']} skipped={skipped}")


def cmd_list(args: argparse.Namespace) -> None:
    db_path = Path(args.db)
    if not db_path.exists():
        print(f"Database not found: {db_path}")
        return
    records = SubsidyRepository(db_path).fetch(CandidateFilters(status=None))
    if not records:
        print("No subsidies in database.")
        return
    print(f"Found {len(records)} subsidies in {db_path}:\n")
    for record in records:
        print(f"ID: {record['id']}")
        print(f"  Name: {record['name']}")
        print(f"  Industry: {record['industry']}")
        print(f"  Needs: {', '.join(record['needs'])}")
        print(f"  Max amount: {record['max_amount']}")
        print(f"  Status: {record['status']}")
        print()


def cmd_match(args: argparse.Namespace) -> None:
    query = _read_json(args.query)
    config = _config(args)
    db_path = config.db_path
    if not db_path.exists():
        raise SystemExit(f"Database not found: {db_path}. Run 'init-db' and 'import' first.")

    engine = MatchingEngine(
        config,
        cache=_baseline_cache(config),
        candidate_source=SubsidyRepository(db_path),
    )
    filters = CandidateFilters(
        industries=tuple(_split(args.industries)),
        min_amount=args.min_amount,
        max_amount=args.max_amount,
    )
    options = MatchOptions(
        shots=args.shots if args.shots is not None else config.shots,
        parallelism=args.parallelism if args.parallelism is not None else config.ensemble_size,
        mitigate_errors=not args.no_mitigation,
        seed=args.seed,
        timeout=args.timeout,
        limit=args.limit if args.limit is not None else config.top_k,
    )
    try:
        results = asyncio.run(engine.match_from_source(query, filters, options))
    except MatchError as e:
        raise SystemExit(f"[{e.kind}] {e.message}")
    _print_json([r.to_dict() for r in results])


def cmd_vector_search(args: argparse.Namespace) -> None:
    vector = _read_json(args.vector)
    if isinstance(vector, dict):
        vector = vector.get("vector")
    config = _config(args)

    rpc_url = args.rpc_url or os.getenv("SUBSIDYMATCH_RPC_URL")
    if rpc_url:
        source = HttpSimilaritySource(rpc_url, api_key=args.api_key or os.getenv("SUBSIDYMATCH_RPC_KEY"))
    else:
        if not config.db_path.exists():
            raise SystemExit(f"Database not found: {config.db_path}. Pass --rpc-url or import subsidies.")
        source = InMemorySimilaritySource(SubsidyRepository(config.db_path).fetch())

    engine = MatchingEngine(config, similarity_source=source)
    try:
        matches = asyncio.run(engine.vector_search(vector, k=args.k))
    except MatchError as e:
        raise SystemExit(f"[{e.kind}] {e.message}")
    _print_json([m.to_dict() for m in matches])


def cmd_cleanup_cache(args: argparse.Namespace) -> None:
    before, after = purge_expired_baselines(Path(args.db))
    print(f"Removed {before - after} expired baseline entries ({after} remaining)")


def build_parser() -> argparse.ArgumentParser:
    default_db = os.getenv("SUBSIDYMATCH_DB_PATH", "data/subsidies.db")
    parser = argparse.ArgumentParser(prog="subsidymatch", description="Subsidy matching and ranking CLI")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    init = subparsers.add_parser("init-db", help="Create the SQLite database and tables")
    init.add_argument("--db", default=default_db, help="Path to SQLite database (default: data/subsidies.db)")
    init.set_defaults(func=cmd_init_db)

    imp = subparsers.add_parser("import", help="Import subsidy records from a JSON file")
    imp.add_argument("--input", required=True, help="Path to JSON list of subsidies")
    imp.add_argument("--db", default=default_db, help="Path to SQLite database")
    imp.set_defaults(func=cmd_import)

    lst = subparsers.add_parser("list", help="List all stored subsidies")
    lst.add_argument("--db", default=default_db, help="Path to SQLite database")
    lst.set_defaults(func=cmd_list)

    mat = subparsers.add_parser("match", help="Rank stored subsidies against a company profile JSON")
    mat.add_argument("--query", required=True, help="Path to company profile JSON")
    mat.add_argument("--db", default=default_db, help="Path to SQLite database")
    mat.add_argument("--industries", help="Comma-separated industry filter")
    mat.add_argument("--min-amount", type=int, help="Minimum subsidy max_amount")
    mat.add_argument("--max-amount", type=int, help="Maximum subsidy max_amount")
    mat.add_argument("--shots", type=int, help="Shots per ensemble member (default 1000)")
    mat.add_argument("--parallelism", type=int, help="Ensemble members per candidate (default 10)")
    mat.add_argument("--no-mitigation", action="store_true", help="Disable the historical bit-flip step")
    mat.add_argument("--seed", type=int, help="Invocation seed (default from config)")
    mat.add_argument("--timeout", type=float, help="Deadline in seconds")
    mat.add_argument("--limit", type=int, help="Number of results (default 10)")
    mat.add_argument("--dimension", type=int, help="State dimension override")
    mat.set_defaults(func=cmd_match)

    vec = subparsers.add_parser("vector-search", help="Re-rank similarity results for a pre-embedded query")
    vec.add_argument("--vector", required=True, help="Path to JSON list of floats (or {\"vector\": [...]})")
    vec.add_argument("--k", type=int, default=10, help="Number of results (default 10)")
    vec.add_argument("--db", default=default_db, help="Path to SQLite database")
    vec.add_argument("--rpc-url", help="Similarity RPC base URL (or set SUBSIDYMATCH_RPC_URL)")
    vec.add_argument("--api-key", help="Similarity RPC key (or set SUBSIDYMATCH_RPC_KEY)")
    vec.set_defaults(func=cmd_vector_search)

    cln = subparsers.add_parser("cleanup-cache", help="Purge expired classical baseline entries")
    cln.add_argument("--db", default=default_db, help="Path to SQLite database")
    cln.set_defaults(func=cmd_cleanup_cache)

    return parser


def main(argv=None):
    # Load .env if present (SUBSIDYMATCH_* settings)
    load_env()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        get_logger().set_level(MatchConfig.from_env().log_level)
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
