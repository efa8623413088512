"""
Command-line interface for shortsync.

Usage (examples):
  - Plan only (reads Short.io, changes nothing):
      python -m shortsync.cli sync --config ./shortio.yaml --dry-run

  - Real sync:
      SHORTIO_API_KEY=... python -m shortsync.cli sync --config ./shortio.yaml

  - Validate the links file (no network):
      python -m shortsync.cli validate --config ./shortio.yaml

Inside GitHub Actions the inputs `api_key`, `config_path` and `dry_run`
(INPUT_* variables) are honoured and the outputs `created`, `updated`,
`deleted` and `summary` are written to $GITHUB_OUTPUT.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from .core.config import AppConfig, load_config
from .core.desired import describe, load_links
from .core.differ import plan
from .core.errors import ConfigError, DomainNotFound, UpstreamError
from .core.executor import execute_sync
from .core.fetcher import LinkFetcher
from .core.logging_setup import build_logger, component_logger
from .core.shortio_client import ClientOptions, ShortioClient
from .core.summary import format_plan, format_summary

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_CONFIG = 2
EXIT_UPSTREAM = 3


def _publish_outputs(outputs: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> None:
    """Append outputs to the GitHub Actions output file, when running under Actions."""
    env = os.environ if env is None else env
    target = env.get("GITHUB_OUTPUT")
    if not target:
        return
    with open(target, "a", encoding="utf-8") as fh:
        for name, value in outputs.items():
            text = str(value)
            if "\n" in text:
                delimiter = f"ghadelimiter_{uuid.uuid4().hex}"
                fh.write(f"{name}<<{delimiter}\n{text}\n{delimiter}\n")
            else:
                fh.write(f"{name}={text}\n")


def _annotate_failure(message: str) -> None:
    if os.environ.get("GITHUB_ACTIONS") == "true":
        print(f"::error::{message}")


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="shortsync", description="Reconcile Short.io links with a YAML file")

    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("sync", help="Create/update/delete Short.io links to match the links file")
    s.add_argument("--config", default=None, help="Links file (default: shortio.yaml)")
    s.add_argument("--dry-run", action="store_true", default=None, help="Log intended changes only")

    # Short.io / HTTP
    s.add_argument("--api-key", default=None, help="Short.io API key (prefer SHORTIO_API_KEY)")
    s.add_argument("--base-url", default=None, help="Short.io API base URL")
    s.add_argument("--timeout-sec", type=int, default=None, help="HTTP timeout seconds")
    s.add_argument("--retries", type=int, default=None, help="HTTP retries on 429/5xx gateway errors")
    s.add_argument("--concurrency", type=int, default=None, help="Domains fetched in parallel")
    s.add_argument("--managed-tag", default=None, help="Tag marking links owned by shortsync")

    # Logging
    s.add_argument("--logs-dir", default=None, help="Logs base directory")
    s.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    s.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")

    v = sub.add_parser("validate", help="Validate the links file without contacting Short.io")
    v.add_argument("--config", default="shortio.yaml", help="Links file")

    return p


def _overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "app": {"dry_run": args.dry_run, "concurrency": args.concurrency},
        "shortio": {
            "api_key": args.api_key,
            "base_url": args.base_url,
            "timeout_sec": args.timeout_sec,
            "retries": args.retries,
        },
        "sync": {"config_path": args.config, "managed_tag": args.managed_tag},
        "logging": {
            "base_dir": args.logs_dir,
            "console_level": args.console_level,
            "file_level": args.file_level,
        },
    }


def _build_client(cfg: AppConfig, logger: Union[logging.Logger, logging.LoggerAdapter]) -> ShortioClient:
    return ShortioClient(
        cfg.shortio.api_key,
        base_url=cfg.shortio.base_url,
        options=ClientOptions(
            timeout_sec=float(cfg.shortio.timeout_sec),
            retries=int(cfg.shortio.retries),
            backoff_factor=float(cfg.shortio.backoff_factor),
        ),
        logger=logger,
    )


def _sync_cmd(args: argparse.Namespace) -> int:
    # 1) Config (no logger yet: report on stderr)
    try:
        cfg = load_config(_overrides_from_args(args))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        _annotate_failure(f"Configuration error: {e}")
        return EXIT_CONFIG

    dry_run = cfg.app.dry_run
    managed_tag = cfg.sync.managed_tag

    # 2) Logger
    logger = build_logger(
        run_id=cfg.run_id,
        action="sync",
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        dry_run=dry_run,
        secrets=[cfg.shortio.api_key],
    )

    # 3) Desired state
    config_path = Path(cfg.sync.config_path).resolve()
    logger.info("Reading config from: %s", config_path)
    if dry_run:
        logger.info("Running in dry-run mode - no changes will be made")
    try:
        links = load_links(config_path)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        _annotate_failure(f"Configuration error: {e}")
        return EXIT_CONFIG
    n_links, n_domains = describe(links)
    logger.info("Found %d links across %d domain(s)", n_links, n_domains)

    client = _build_client(cfg, component_logger(logger, "http"))
    try:
        # 4) Observed state + diff
        fetcher = LinkFetcher(
            client,
            page_size=cfg.sync.page_size,
            max_workers=cfg.app.concurrency,
            logger=component_logger(logger, "fetch"),
        )
        logger.info("Computing diff between config and Short.io...")
        try:
            diff = plan(links, fetcher, managed_tag=managed_tag)
        except (DomainNotFound, UpstreamError) as e:
            logger.error("Cannot read Short.io state: %s", e)
            _annotate_failure(str(e))
            return EXIT_UPSTREAM
        logger.info("Changes to make: %s", format_plan(diff))

        if diff.is_empty:
            logger.info("No changes needed - everything is in sync")
            _publish_outputs({"created": 0, "updated": 0, "deleted": 0, "summary": "No changes needed"})
            print("No changes needed")
            return EXIT_OK

        # 5) Apply
        result = execute_sync(diff, client, dry_run, managed_tag=managed_tag, logger=logger)
    finally:
        client.close()

    summary = format_summary(result, dry_run)
    logger.info("%s", summary)
    print(summary)
    _publish_outputs({
        "created": result.created,
        "updated": result.updated,
        "deleted": result.deleted,
        "summary": summary,
    })

    if result.errors:
        logger.error("Sync completed with %d errors", len(result.errors))
        _annotate_failure(f"Sync completed with {len(result.errors)} errors")
        return EXIT_PARTIAL
    return EXIT_OK


def _validate_cmd(args: argparse.Namespace) -> int:
    try:
        links = load_links(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    n_links, n_domains = describe(links)
    print(f"OK: {n_links} links across {n_domains} domain(s)")
    return EXIT_OK


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.cmd == "sync":
        return _sync_cmd(args)
    if args.cmd == "validate":
        return _validate_cmd(args)

    parser.error("Unknown command")  # pragma: no cover
    return 2  # pragma: no cover


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
