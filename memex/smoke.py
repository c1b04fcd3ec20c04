"""Retrieval smoke battery: YAML-configured queries checked against /v1/retrieve.

Two expectation kinds:

- ``positive``: at least one hit's ``source_id`` matches one of the glob
  patterns within the ``max_rank`` window. A failure points at the pipeline.
- ``negative``: the top-1 hit's score is below ``max_top_score``. A failure
  means scores are uncalibrated and every query lights up the cache.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import httpx
import yaml

DEFAULT_TOP_K = 10
DEFAULT_ACTOR = "smoke-test"
_UNRESOLVED = "<unresolved>"


class SmokeConfigError(ValueError):
    """A smoke configuration could not be read or is invalid."""


@dataclass(frozen=True)
class PositiveExpectation:
    """A hit's source id must match one of ``match_globs`` at rank <= ``max_rank``."""

    match_globs: tuple[str, ...]
    max_rank: Optional[int] = None


@dataclass(frozen=True)
class NegativeExpectation:
    """The top-1 hit's score must be below ``max_top_score``."""

    max_top_score: float


Expectation = Union[PositiveExpectation, NegativeExpectation]


@dataclass(frozen=True)
class SmokeQuery:
    name: str
    query: str
    expect: Expectation


def _require(data: Any, key: str, where: str) -> Any:
    if not isinstance(data, dict):
        raise SmokeConfigError(f"{where}: expected a mapping")
    if key not in data:
        raise SmokeConfigError(f"{where}: missing field `{key}`")
    return data[key]


def _as_int(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise SmokeConfigError(f"{where}: expected a non-negative integer")
    return value


def _as_float(value: Any, where: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SmokeConfigError(f"{where}: expected a number")
    return float(value)


def _as_str(value: Any, where: str) -> str:
    if not isinstance(value, str):
        raise SmokeConfigError(f"{where}: expected a string")
    return value


def _as_str_list(value: Any, where: str) -> list[str]:
    if not isinstance(value, list):
        raise SmokeConfigError(f"{where}: expected a list")
    return [_as_str(item, where) for item in value]


def _parse_expectation(data: Any, where: str) -> Expectation:
    kind = _require(data, "kind", where)
    if kind == "positive":
        globs = _as_str_list(_require(data, "match_globs", where), f"{where}.match_globs")
        max_rank = data.get("max_rank")
        if max_rank is not None:
            max_rank = _as_int(max_rank, f"{where}.max_rank")
        return PositiveExpectation(match_globs=tuple(globs), max_rank=max_rank)
    if kind == "negative":
        score = _as_float(
            _require(data, "max_top_score", where), f"{where}.max_top_score"
        )
        return NegativeExpectation(max_top_score=score)
    raise SmokeConfigError(f"{where}: unknown expectation kind {kind!r}")


@dataclass
class SmokeConfig:
    """Shards to compose, retrieval depth, default actor and the query battery."""

    shards: list[str]
    queries: list[SmokeQuery]
    top_k: int = DEFAULT_TOP_K
    actor: str = DEFAULT_ACTOR

    @classmethod
    def from_dict(cls, data: Any) -> "SmokeConfig":
        shards = _as_str_list(_require(data, "shards", "config"), "config.shards")
        raw_queries = _require(data, "queries", "config")
        if not isinstance(raw_queries, list):
            raise SmokeConfigError("config.queries: expected a list")
        queries = []
        for index, raw in enumerate(raw_queries):
            where = f"config.queries[{index}]"
            queries.append(
                SmokeQuery(
                    name=_as_str(_require(raw, "name", where), f"{where}.name"),
                    query=_as_str(_require(raw, "query", where), f"{where}.query"),
                    expect=_parse_expectation(
                        _require(raw, "expect", where), f"{where}.expect"
                    ),
                )
            )
        top_k = data.get("top_k")
        actor = data.get("actor")
        return cls(
            shards=shards,
            queries=queries,
            top_k=DEFAULT_TOP_K if top_k is None else _as_int(top_k, "config.top_k"),
            actor=DEFAULT_ACTOR if actor is None else _as_str(actor, "config.actor"),
        )


@dataclass(frozen=True)
class Hit:
    """One retrieval hit as returned over HTTP."""

    shard: str
    offset: int
    length: int
    score: float
    source_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Hit":
        try:
            source_id = data.get("source_id")
            return cls(
                shard=str(data["shard"]),
                offset=int(data["offset"]),
                length=int(data["length"]),
                score=float(data["score"]),
                source_id=None if source_id is None else str(source_id),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ValueError(f"invalid hit: {exc}") from exc


@dataclass(frozen=True)
class RetrieveResponse:
    """Body of a /v1/retrieve response."""

    query_id: str
    hits: list[Hit] = field(default_factory=list)
    shard_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RetrieveResponse":
        try:
            return cls(
                query_id=str(data["query_id"]),
                hits=[Hit.from_dict(hit) for hit in data["hits"]],
                shard_count=int(data["shard_count"]),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"invalid retrieve response: {exc}") from exc


@dataclass(frozen=True)
class QueryOutcome:
    name: str
    passed: bool
    detail: str


@dataclass
class SmokeReport:
    outcomes: list[QueryOutcome] = field(default_factory=list)

    def pass_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.passed)

    def fail_count(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.passed)

    def all_passed(self) -> bool:
        return self.fail_count() == 0


def _glob_regex(pattern: str) -> "re.Pattern[str]":
    """Compile a glob; ``*`` crosses ``/``, ``**`` spans directories, ``{a,b}`` alternates."""
    parts: list[str] = []
    in_alternate = False
    i, n = 0, len(pattern)
    while i < n:
        char = pattern[i]
        if char == "\\":
            if i + 1 >= n:
                raise ValueError(f"dangling escape in {pattern!r}")
            parts.append(re.escape(pattern[i + 1]))
            i += 2
        elif pattern.startswith("**", i):
            end = i + 2
            before_ok = i == 0 or pattern[i - 1] in "/{,"
            after_ok = end == n or pattern[end] in "/},"
            if not (before_ok and after_ok):
                raise ValueError(f"invalid use of ** in {pattern!r}")
            if end < n and pattern[end] == "/":
                parts.append("(?:.*/)?")
                i = end + 1
            else:
                parts.append(".*")
                i = end
        elif char == "*":
            parts.append(".*")
            i += 1
        elif char == "?":
            parts.append(".")
            i += 1
        elif char == "[":
            j = i + 1
            negate = j < n and pattern[j] in "!^"
            if negate:
                j += 1
            start = j
            if j < n and pattern[j] == "]":
                j += 1
            while j < n and pattern[j] != "]":
                j += 1
            if j >= n:
                raise ValueError(f"unclosed character class in {pattern!r}")
            body = "".join(
                ch if ch == "-" else re.escape(ch) for ch in pattern[start:j]
            )
            parts.append(f"[{'^' if negate else ''}{body}]")
            i = j + 1
        elif char == "{":
            if in_alternate:
                raise ValueError(f"nested alternate groups in {pattern!r}")
            in_alternate = True
            parts.append("(?:")
            i += 1
        elif char == "}" and in_alternate:
            in_alternate = False
            parts.append(")")
            i += 1
        elif char == "," and in_alternate:
            parts.append("|")
            i += 1
        else:
            parts.append(re.escape(char))
            i += 1
    if in_alternate:
        raise ValueError(f"unclosed alternate group in {pattern!r}")
    return re.compile("(?:" + "".join(parts) + r")\Z", re.DOTALL)


def _source_label(hit: Hit) -> str:
    return hit.source_id if hit.source_id is not None else _UNRESOLVED


def eval_positive(
    response: RetrieveResponse,
    match_globs: Sequence[str],
    max_rank: Optional[int],
    config_top_k: int,
) -> tuple[bool, str]:
    """Pass if a hit within the rank window has a source id matching a glob."""
    limit = config_top_k if max_rank is None else max_rank
    try:
        patterns = [_glob_regex(glob) for glob in match_globs]
    except ValueError as exc:
        return False, f"invalid glob pattern: {exc}"

    for rank, hit in enumerate(response.hits[:limit], start=1):
        if hit.source_id is None:
            continue
        if any(pattern.match(hit.source_id) for pattern in patterns):
            return True, f"rank={rank} source={hit.source_id} score={hit.score:.3f}"

    summary = ", ".join(f"{_source_label(h)}@{h.score:.3f}" for h in response.hits[:3])
    return False, f"no glob match within top-{limit}; top-3: [{summary or 'no hits'}]"


def eval_negative(response: RetrieveResponse, max_top_score: float) -> tuple[bool, str]:
    """Pass if the top-1 score is below the threshold or nothing came back."""
    if not response.hits:
        return True, "no hits returned"
    top = response.hits[0]
    source = _source_label(top)
    if top.score < max_top_score:
        return True, (
            f"top1 score={top.score:.3f} < threshold {max_top_score:.3f} (source={source})"
        )
    return False, (
        f"top1 score={top.score:.3f} >= threshold {max_top_score:.3f} (source={source})"
    )


def parse_config(text: str) -> SmokeConfig:
    """Parse a smoke configuration from YAML text."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise SmokeConfigError(f"invalid YAML: {exc}") from exc
    return SmokeConfig.from_dict(data)


def load_config(path: Union[str, PathLike]) -> SmokeConfig:
    """Read a smoke configuration; it must name at least one shard and query."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SmokeConfigError(f"reading smoke config: {path}: {exc}") from exc
    try:
        config = parse_config(text)
    except SmokeConfigError as exc:
        raise SmokeConfigError(f"parsing {path}: {exc}") from exc
    if not config.shards:
        raise SmokeConfigError("smoke config has no shards")
    if not config.queries:
        raise SmokeConfigError("smoke config has no queries")
    return config


def run(
    client: httpx.Client, memex_url: str, actor: str, config: SmokeConfig
) -> SmokeReport:
    """Run every query against a live memex and evaluate its expectation."""
    url = f"{memex_url.rstrip('/')}/v1/retrieve"
    report = SmokeReport()
    for query in config.queries:
        body = {"query": query.query, "shards": list(config.shards), "top_k": config.top_k}
        response = client.post(url, headers={"X-Memex-Actor": actor}, json=body)
        if not response.is_success:
            status = f"{response.status_code} {response.reason_phrase}".rstrip()
            report.outcomes.append(
                QueryOutcome(query.name, False, f"HTTP {status}: {response.text}")
            )
            continue
        parsed = RetrieveResponse.from_dict(response.json())
        expect = query.expect
        if isinstance(expect, PositiveExpectation):
            passed, detail = eval_positive(
                parsed, expect.match_globs, expect.max_rank, config.top_k
            )
        else:
            passed, detail = eval_negative(parsed, expect.max_top_score)
        report.outcomes.append(QueryOutcome(query.name, passed, detail))
    return report


def format_report(report: SmokeReport, config: SmokeConfig) -> str:
    """Render a report as the lines that ``print_report`` writes."""
    width = max([8, *(len(outcome.name) for outcome in report.outcomes)])
    lines = [
        "=== memex retrieval smoke ===",
        f"shards: {','.join(config.shards)}    top_k: {config.top_k}",
    ]
    for outcome in report.outcomes:
        tag = "PASS" if outcome.passed else "FAIL"
        lines.append(f"{tag}  {outcome.name:<{width}}  {outcome.detail}")
    lines.append("---")
    lines.append(f"{report.pass_count()} pass, {report.fail_count()} fail")
    return "\n".join(lines)


def print_report(report: SmokeReport, config: SmokeConfig) -> None:
    print(format_report(report, config))