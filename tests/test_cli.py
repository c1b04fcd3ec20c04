import json
from unittest.mock import patch

import httpx
import pytest

from memex.cli import main, parse_kv, parse_shard

_REAL_CLIENT = httpx.Client


def _mock_http(handler):
    transport = httpx.MockTransport(handler)
    return patch.object(
        httpx,
        "Client",
        side_effect=lambda *args, **kwargs: _REAL_CLIENT(
            transport=transport, timeout=kwargs.get("timeout")
        ),
    )


@pytest.fixture
def corpus(tmp_path):
    root = tmp_path / "corpus"
    (root / "sub").mkdir(parents=True)
    (root / "a.md").write_text("---\ntitle: A\n---\n# A\n", encoding="utf-8")
    (root / "sub" / "b.md").write_text("# B body\n", encoding="utf-8")
    (root / "empty.md").write_text("---\ntitle: x\n---\n", encoding="utf-8")
    (root / "notes.txt").write_text("ignored\n", encoding="utf-8")
    return root


def test_parse_valid_shard():
    assert parse_shard("bhs.corpus.all") == ("bhs", "corpus", "all")


def test_parse_shard_keeps_dots_in_entity_id():
    assert parse_shard("a.b.c.d") == ("a", "b", "c.d")


@pytest.mark.parametrize("text", ["bhs.corpus", "bhs", "", "a..c", "a.b."])
def test_parse_invalid_shard(text):
    with pytest.raises(ValueError):
        parse_shard(text)


def test_driver_options_kv_parses():
    assert parse_kv("locale=en-US") == ("locale", "en-US")
    assert parse_kv("token=abc=def") == ("token", "abc=def")


def test_driver_options_kv_rejects_bare():
    with pytest.raises(ValueError, match="expected key=value"):
        parse_kv("no-equals-sign")


def test_bad_driver_option_is_usage_error(corpus):
    with pytest.raises(SystemExit) as info:
        main(["ingest", "--corpus", str(corpus), "--driver-option", "bare"])
    assert info.value.code == 2


def test_dry_run_prints_chunks(corpus, capsys):
    code = main(["ingest", "--corpus", str(corpus), "--dry-run"])
    out = capsys.readouterr().out.splitlines()
    assert code == 0
    assert out == [
        "a.md bytes=4 source_ref=a.md metadata=0",
        "sub/b.md bytes=9 source_ref=sub/b.md metadata=0",
    ]


def test_dry_run_honours_limit(corpus, capsys):
    code = main(["ingest", "--corpus", str(corpus), "--dry-run", "--limit", "1"])
    out = capsys.readouterr().out.splitlines()
    assert code == 0
    assert out == ["a.md bytes=4 source_ref=a.md metadata=0"]


def test_missing_corpus_fails(tmp_path, capsys):
    code = main(["ingest", "--corpus", str(tmp_path / "nope"), "--dry-run"])
    assert code == 1
    assert "corpus root not found" in capsys.readouterr().err


def test_invalid_shard_fails(corpus, capsys):
    code = main(["ingest", "--corpus", str(corpus), "--shard", "bhs.corpus", "--dry-run"])
    assert code == 1
    assert "namespace.category.entity_id" in capsys.readouterr().err


def test_ingest_creates_shard_and_posts_chunks(corpus):
    calls = []

    def handler(request):
        calls.append(request)
        if request.method == "GET":
            return httpx.Response(404, json={"error": "missing", "code": "not_found"})
        if request.url.path == "/v1/shards":
            return httpx.Response(200, json={"shard": "bhs.corpus.all"})
        body = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "content_id": body["content_id"],
                "shard": body["shard"],
                "token_count": 3,
                "offset": 0,
            },
        )

    with _mock_http(handler):
        code = main(["ingest", "--corpus", str(corpus), "--pinned"])

    assert code == 0
    assert [f"{c.method} {c.url.path}" for c in calls] == [
        "GET /v1/shards/bhs.corpus.all",
        "POST /v1/shards",
        "POST /v1/ingest",
        "POST /v1/ingest",
    ]
    assert json.loads(calls[1].content) == {"shard": "bhs.corpus.all", "pinned": True}
    assert calls[1].headers["X-Memex-Namespace"] == "bhs"
    bodies = [json.loads(c.content) for c in calls[2:]]
    assert [b["content_id"] for b in bodies] == ["a.md", "sub/b.md"]
    assert bodies[0]["content"] == "# A\n"
    consent = bodies[0]["consent_token"]
    assert consent["source_entity"] == "bhs-ingest"
    assert consent["namespace"] == "bhs"
    assert consent["scope"] == "AllContent"
    assert consent["signature"] == []
    assert consent["expires_at"] is None


def test_ingest_reuses_existing_shard(corpus):
    calls = []

    def handler(request):
        calls.append(request)
        if request.method == "GET":
            return httpx.Response(200, json={"shard": "bhs.corpus.all"})
        return httpx.Response(
            200,
            json={"content_id": "x", "shard": "bhs.corpus.all", "token_count": 1, "offset": 0},
        )

    with _mock_http(handler):
        code = main(["ingest", "--corpus", str(corpus), "--limit", "1"])

    assert code == 0
    assert [c.url.path for c in calls] == ["/v1/shards/bhs.corpus.all", "/v1/ingest"]


def test_ingest_unexpected_shard_status_fails(corpus, capsys):
    def handler(request):
        return httpx.Response(500, text="boom")

    with _mock_http(handler):
        code = main(["ingest", "--corpus", str(corpus)])

    assert code == 1
    assert "unexpected status from GET /v1/shards/bhs.corpus.all" in capsys.readouterr().err


def test_ingest_reports_failed_requests(corpus, capsys):
    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, json={})
        return httpx.Response(500, text="broken")

    with _mock_http(handler):
        code = main(["ingest", "--corpus", str(corpus)])

    assert code == 1
    assert "2 of 2 ingest requests failed" in capsys.readouterr().err


_SMOKE_YAML = """
shards: [bhs.corpus.all]
queries:
  - name: founder
    query: "Who founded it?"
    expect:
      kind: positive
      match_globs:
        - history/*.md
  - name: off-topic
    query: "Price of tea"
    expect:
      kind: negative
      max_top_score: {threshold}
"""


def _smoke_handler(seen_actors):
    def handler(request):
        seen_actors.append(request.headers["X-Memex-Actor"])
        body = json.loads(request.content)
        assert body["shards"] == ["bhs.corpus.all"]
        return httpx.Response(
            200,
            json={
                "query_id": "q",
                "shard_count": 1,
                "hits": [
                    {
                        "shard": "bhs.corpus.all",
                        "offset": 0,
                        "length": 0,
                        "score": 0.9,
                        "source_id": "history/cash.md",
                    }
                ],
            },
        )

    return handler


def test_smoke_all_pass(tmp_path, capsys):
    config = tmp_path / "smoke.yaml"
    config.write_text(_SMOKE_YAML.format(threshold=0.95), encoding="utf-8")
    actors = []
    with _mock_http(_smoke_handler(actors)):
        code = main(["smoke", "--config", str(config)])
    out = capsys.readouterr().out
    assert code == 0
    assert "2 pass, 0 fail" in out
    assert actors == ["smoke-test", "smoke-test"]


def test_smoke_failure_exits_nonzero_and_actor_override(tmp_path, capsys):
    config = tmp_path / "smoke.yaml"
    config.write_text(_SMOKE_YAML.format(threshold=0.5), encoding="utf-8")
    actors = []
    with _mock_http(_smoke_handler(actors)):
        code = main(["smoke", "--config", str(config), "--actor", "operator"])
    out = capsys.readouterr().out
    assert code == 1
    assert "1 pass, 1 fail" in out
    assert "FAIL  off-topic" in out
    assert actors == ["operator", "operator"]


def test_smoke_missing_config_fails(tmp_path, capsys):
    code = main(["smoke", "--config", str(tmp_path / "missing.yaml")])
    assert code == 1
    assert "reading smoke config" in capsys.readouterr().err