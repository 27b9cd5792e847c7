# src/labelgate/main.py — v1
"""CLI entry point: cleanup, canonicalize, search-score, quality commands.

Usage:
    labelgate cleanup [--ttl-days N]
    labelgate canonicalize <token> [<token> ...]
    labelgate search-score <items.json | ->
    labelgate quality <draft.json | ->
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter

from labelgate.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        _setup_logging(args.verbose)
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="labelgate",
        description=f"labelgate v{__version__} - supplement label quality gate and cache",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- cleanup ---
    p_cleanup = subparsers.add_parser(
        "cleanup", help="Delete expired result cache entries",
    )
    p_cleanup.add_argument(
        "--ttl-days", type=int, default=None,
        help="Age limit in days (default: OCR_CACHE_TTL_DAYS)",
    )
    p_cleanup.set_defaults(func=_cmd_cleanup)

    # --- canonicalize ---
    p_canon = subparsers.add_parser(
        "canonicalize", help="Canonicalize ingredient form tokens",
    )
    p_canon.add_argument("tokens", nargs="+", help="Raw form tokens")
    p_canon.set_defaults(func=_cmd_canonicalize)

    # --- search-score ---
    p_search = subparsers.add_parser(
        "search-score", help="Score web-search results for label usefulness",
    )
    p_search.add_argument(
        "source", help="JSON file with a list of search items, or - for stdin",
    )
    p_search.set_defaults(func=_cmd_search_score)

    # --- quality ---
    p_quality = subparsers.add_parser(
        "quality", help="Evaluate a label draft through the quality gate",
    )
    p_quality.add_argument(
        "source", help="JSON file with a label draft, or - for stdin",
    )
    p_quality.set_defaults(func=_cmd_quality)

    return parser


async def _cmd_cleanup(args: argparse.Namespace) -> int:
    """Sweep result cache rows older than the TTL."""
    from labelgate.cache.cache_factory import create_row_store
    from labelgate.cache.result_cache import ResultCache
    from labelgate.config.settings import load_settings
    from labelgate.tracking.metrics import MetricsRegistry

    settings = load_settings()
    ttl_days = args.ttl_days if args.ttl_days is not None else settings.ocr_cache_ttl_days
    if ttl_days < 1:
        logger.error("--ttl-days must be >= 1, got %d", ttl_days)
        return 1

    metrics = MetricsRegistry(settings.metrics_flush_interval_s)
    store = create_row_store(settings)
    try:
        cache = ResultCache(store, metrics=metrics, retry=settings.retry_policy)
        deleted = await cache.cleanup_expired(ttl_days)
    finally:
        store.close()
        metrics.flush()

    print(f"Deleted {deleted} expired cache entries (ttl={ttl_days}d)")
    return 0


async def _cmd_canonicalize(args: argparse.Namespace) -> int:
    """Print canonical form tokens as JSON."""
    from labelgate.normalization.form_tokens import canonicalize_form_tokens

    print(json.dumps(canonicalize_form_tokens(args.tokens)))
    return 0


async def _cmd_search_score(args: argparse.Namespace) -> int:
    """Print the quality summary and fallback query for search results."""
    from labelgate.core.models import SearchItem
    from labelgate.search.quality import construct_fallback_query, summarize_search_quality

    items = TypeAdapter(list[SearchItem]).validate_python(_read_json(args.source))
    summary = summarize_search_quality(items)
    output = summary.model_dump()
    output["fallback_query"] = construct_fallback_query(items)
    print(json.dumps(output, indent=2))
    return 0


async def _cmd_quality(args: argparse.Namespace) -> int:
    """Print the quality verdict for a label draft."""
    from labelgate.core.models import LabelDraft
    from labelgate.quality.gate import evaluate_label_draft

    payload = _read_json(args.source)
    draft = None if payload is None else LabelDraft.model_validate(payload)
    verdict = evaluate_label_draft(draft)
    print(verdict.model_dump_json(indent=2))
    return 0


def _read_json(source: str) -> Any:
    """Load JSON from a file path, or stdin for "-"."""
    if source == "-":
        return json.load(sys.stdin)
    path = Path(source)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def _setup_logging(verbose: bool) -> None:
    """Configure logging for CLI usage from settings."""
    from labelgate.config.settings import load_settings
    from labelgate.logging.logger import setup_logging

    settings = load_settings()
    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


if __name__ == "__main__":
    sys.exit(main())
