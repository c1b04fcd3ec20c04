"""Operator command line: corpus ingest and the retrieval smoke battery."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

import httpx

from memex import smoke
from memex.audit_entry import format_timestamp
from memex.corpus import BhsCorpusDriver, Chunk, CorpusConfig, DriverError

logger = logging.getLogger("memex.cli")

DEFAULT_MEMEX_URL = "http://localhost:7720"
DEFAULT_SHARD = "bhs.corpus.all"
DEFAULT_INGEST_ACTOR = "bhs-ingest"
SMOKE_TIMEOUT = 300.0
INGEST_TIMEOUT = 1800.0

_DRIVERS = {BhsCorpusDriver.NAME: BhsCorpusDriver}


class _CommandError(Exception):
    """A subcommand failed in a way worth reporting to the operator."""


def parse_shard(text: str) -> tuple[str, str, str]:
    """Split ``namespace.category.entity_id``; every part must be non-empty."""
    parts = text.split(".", 2)
    if len(parts) == 3 and all(parts):
        namespace, category, entity_id = parts
        return namespace, category, entity_id
    raise ValueError(
        f"shard must be in `namespace.category.entity_id` form, got {text!r}"
    )


def parse_kv(text: str) -> tuple[str, str]:
    """Split ``key=value`` at the first ``=``."""
    key, sep, value = text.partition("=")
    if not sep:
        raise ValueError(f"expected key=value, got {text!r}")
    return key, value


def _kv_argument(text: str) -> tuple[str, str]:
    try:
        return parse_kv(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _status_text(response: httpx.Response) -> str:
    return f"{response.status_code} {response.reason_phrase}".rstrip()


def _consent_token(source_entity: str, namespace: str) -> dict[str, Any]:
    return {
        "token_id": str(uuid.uuid4()),
        "source_entity": source_entity,
        "namespace": namespace,
        "scope": "AllContent",
        "issued_at": format_timestamp(datetime.now(timezone.utc)),
        "expires_at": None,
        "signature": [],
    }


@dataclass(frozen=True)
class _IngestInfo:
    token_count: int
    offset: int


def _ensure_shard(
    http: httpx.Client, memex: str, shard: str, namespace: str, pinned: bool
) -> None:
    base = memex.rstrip("/")
    existing = http.get(f"{base}/v1/shards/{shard}")
    if existing.is_success:
        logger.info("shard %s already exists — reusing", shard)
        return
    if existing.status_code != 404:
        raise _CommandError(
            f"unexpected status from GET /v1/shards/{shard}: "
            f"{_status_text(existing)} {existing.text}"
        )
    created = http.post(
        f"{base}/v1/shards",
        headers={"X-Memex-Namespace": namespace},
        json={"shard": shard, "pinned": pinned},
    )
    if not created.is_success:
        raise _CommandError(
            f"create shard {shard} failed: {_status_text(created)} {created.text}"
        )
    logger.info("shard %s created pinned=%s", shard, pinned)


def _send_ingest(
    http: httpx.Client,
    memex: str,
    shard: str,
    actor: str,
    namespace: str,
    chunk: Chunk,
) -> _IngestInfo:
    body = {
        "content_id": chunk.id,
        "content": chunk.text,
        "shard": shard,
        "consent_token": _consent_token(actor, namespace),
    }
    response = http.post(f"{memex.rstrip('/')}/v1/ingest", json=body)
    if not response.is_success:
        raise _CommandError(
            f"/v1/ingest returned {_status_text(response)}: {response.text}"
        )
    try:
        data = response.json()
        return _IngestInfo(int(data["token_count"]), int(data["offset"]))
    except (ValueError, KeyError, TypeError) as exc:
        raise _CommandError(f"decoding ingest response: {exc}") from exc


def _run_ingest(args: argparse.Namespace) -> int:
    try:
        namespace, _, _ = parse_shard(args.shard)
    except ValueError as exc:
        raise _CommandError(str(exc)) from exc
    corpus = Path(args.corpus)
    if not corpus.exists():
        raise _CommandError(f"corpus root not found: {corpus}")

    driver = _DRIVERS[args.driver]()
    config = CorpusConfig(root=str(corpus), options=list(args.driver_options))
    metadata = driver.init(config)
    logger.info(
        "driver initialized driver=%s corpus=%s name=%s accepts=%s memex=%s "
        "shard=%s dry_run=%s",
        args.driver,
        corpus,
        metadata.name,
        metadata.accepts,
        args.memex,
        args.shard,
        args.dry_run,
    )

    http = None if args.dry_run else httpx.Client(timeout=INGEST_TIMEOUT)
    emitted = ok = failed = total_tokens = 0
    try:
        if http is not None:
            _ensure_shard(http, args.memex, args.shard, namespace, args.pinned)

        while args.limit is None or emitted < args.limit:
            chunk = driver.next_chunk()
            if chunk is None:
                break
            emitted += 1

            if http is None:
                print(
                    f"{chunk.id} bytes={len(chunk.text.encode('utf-8'))} "
                    f"source_ref={chunk.source_ref} metadata={len(chunk.metadata)}"
                )
                continue

            try:
                info = _send_ingest(
                    http, args.memex, args.shard, args.actor, namespace, chunk
                )
            except (_CommandError, httpx.HTTPError) as exc:
                failed += 1
                logger.error(
                    "ingest failed idx=%d content_id=%s error=%s", emitted, chunk.id, exc
                )
                continue
            ok += 1
            total_tokens += info.token_count
            logger.info(
                "ingested idx=%d content_id=%s tokens=%d offset=%d",
                emitted,
                chunk.id,
                info.token_count,
                info.offset,
            )
    finally:
        try:
            driver.finish()
        except DriverError as exc:
            logger.warning("driver finish reported an error: %s", exc)
        if http is not None:
            http.close()

    logger.info(
        "ingest complete emitted=%d ok=%d failed=%d total_tokens=%d",
        emitted,
        ok,
        failed,
        total_tokens,
    )
    if failed:
        raise _CommandError(f"{failed} of {emitted} ingest requests failed")
    return 0


def _run_smoke(args: argparse.Namespace) -> int:
    config = smoke.load_config(args.config)
    actor = args.actor if args.actor is not None else config.actor
    with httpx.Client(timeout=SMOKE_TIMEOUT) as client:
        report = smoke.run(client, args.memex, actor, config)
    smoke.print_report(report, config)
    return 0 if report.all_passed() else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memex-cli", description="Operator CLI for memex"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    ingest = commands.add_parser(
        "ingest", help="Run a corpus driver and POST every chunk it emits to /v1/ingest."
    )
    ingest.add_argument(
        "--driver",
        choices=sorted(_DRIVERS),
        default=BhsCorpusDriver.NAME,
        help="Corpus driver that owns the corpus format.",
    )
    ingest.add_argument("--corpus", required=True, help="Corpus root on disk.")
    ingest.add_argument("--memex", default=DEFAULT_MEMEX_URL, help="Memex server URL.")
    ingest.add_argument(
        "--shard",
        default=DEFAULT_SHARD,
        help="Target shard in namespace.category.entity_id form.",
    )
    ingest.add_argument(
        "--actor",
        default=DEFAULT_INGEST_ACTOR,
        help="Identity used as consent source entity and audit actor.",
    )
    ingest.add_argument(
        "--pinned", action="store_true", help="Pin the shard when first created."
    )
    ingest.add_argument(
        "--dry-run", action="store_true", help="Print chunks without POSTing them."
    )
    ingest.add_argument("--limit", type=int, help="Stop after this many chunks.")
    ingest.add_argument(
        "--driver-option",
        dest="driver_options",
        action="append",
        type=_kv_argument,
        default=[],
        metavar="KEY=VALUE",
        help="Free-form option passed to the driver; repeatable.",
    )
    ingest.set_defaults(handler=_run_ingest)

    smoke_cmd = commands.add_parser(
        "smoke", help="Run a YAML battery of retrieval queries against /v1/retrieve."
    )
    smoke_cmd.add_argument("--config", required=True, help="YAML smoke config.")
    smoke_cmd.add_argument("--memex", default=DEFAULT_MEMEX_URL, help="Memex server URL.")
    smoke_cmd.add_argument(
        "--actor", help="Override the X-Memex-Actor identity from the config."
    )
    smoke_cmd.set_defaults(handler=_run_smoke)
    return parser


def _configure_logging() -> None:
    level_name = os.environ.get("MEMEX_LOG", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the operator CLI; returns the process exit code."""
    _configure_logging()
    args = _build_parser().parse_args(argv)
    try:
        return args.handler(args)
    except (_CommandError, DriverError, httpx.HTTPError, OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())