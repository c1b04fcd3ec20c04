# memex

Client-side and storage pieces for a memex retrieval service:

- shard identifiers and metadata (`namespace.category.entity_id`),
- a small ordered key-value store with named trees, backed by SQLite,
- a position map that resolves token offsets in a shard back to the
  content id they were ingested from,
- a tamper-evident, hash-chained audit log,
- a markdown corpus driver that strips YAML frontmatter,
- `memex-cli`, an operator command that ingests a corpus into a running
  memex server and runs a retrieval smoke battery against it.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## What this package does not do

It does not contain the memex HTTP server, the shard manager that keeps
shards resident in a GPU cache, the retrieval pipeline, or a client for
the tokenizing/retrieval backend. `memex-cli` talks to a memex server
that is already running elsewhere, over HTTP.

## Operator CLI

`memex-cli` has two subcommands. Log verbosity is taken from the
`MEMEX_LOG` environment variable (default `INFO`). The exit status is 0
on success and 1 on failure.

### ingest

Walks a markdown corpus, strips YAML frontmatter from each `*.md` file
and posts one chunk per file to `/v1/ingest`. Files are visited in
sorted order, so re-runs produce the same chunk ids; a chunk's id is the
file's path relative to the corpus root, with forward slashes. Files
that are empty after the frontmatter is removed are skipped. Before
ingesting, the target shard is fetched with `GET /v1/shards/{shard}` and
created with `POST /v1/shards` if the server answers 404.

```
memex-cli ingest --corpus ./sources --shard bhs.corpus.all --dry-run
memex-cli ingest --corpus ./sources --shard bhs.corpus.all --memex http://localhost:7720
```

| Option                        | Default                 | Meaning                                          |
|-------------------------------|-------------------------|--------------------------------------------------|
| `--corpus PATH`               | required                | corpus root on disk                              |
| `--driver NAME`               | `bhs-corpus`            | corpus driver (only `bhs-corpus` is available)   |
| `--memex URL`                 | `http://localhost:7720` | memex server URL                                 |
| `--shard KEY`                 | `bhs.corpus.all`        | target shard, `namespace.category.entity_id`     |
| `--actor NAME`                | `bhs-ingest`            | consent source entity and audit actor            |
| `--pinned`                    | off                     | pin the shard when it is created                 |
| `--dry-run`                   | off                     | print chunks instead of posting them             |
| `--limit N`                   | none                    | stop after N chunks                              |
| `--driver-option KEY=VALUE`   | none                    | passed to the driver; repeatable                 |

In dry-run mode each chunk is printed as
`<id> bytes=<utf-8 length> source_ref=<ref> metadata=<count>`.
The command fails if any ingest request fails.

### smoke

Runs a battery of retrieval queries described in a YAML file against
`/v1/retrieve` and reports PASS/FAIL for each; the exit status is 1 if
any query fails.

```
memex-cli smoke --config smoke.yaml --memex http://localhost:7720
```

```yaml
shards: [bhs.corpus.all]
top_k: 5              # optional, default 10
actor: smoke-test     # optional, default "smoke-test"; --actor overrides
queries:
  - name: founder
    query: "Who founded the society?"
    expect:
      kind: positive
      match_globs:
        - history/people-*.md
      max_rank: 3     # optional, defaults to top_k
  - name: off-topic
    query: "Price of tea"
    expect:
      kind: negative
      max_top_score: 0.30
```

A `positive` expectation passes when a hit whose source id matches one
of the globs appears within `max_rank`; hits without a source id are
skipped. In globs, `*` also crosses `/`, `**` spans directories, and
`{a,b}` alternates. A `negative` expectation passes when the top hit
scores below `max_top_score`, or when there are no hits.

## Using the library

Shard identifiers:

```python
from memex.shard import ShardId

shard = ShardId.parse("bhs.corpus.all")
shard.to_key()               # "bhs.corpus.all"
ShardId.parse("bhs.corpus")  # None
```

Storage and position resolution:

```python
from memex.kvstore import Store
from memex.sidecar import PositionMap

with Store("memex.db") as store:
    positions = PositionMap(store)
    positions.record(shard, offset=0, length=120, content_id="history/about.md")
    positions.resolve(shard, 42)   # SourceRef(content_id="history/about.md", offset_within_source=42)
```

The audit log links each entry to the one before it by SHA-256. Its
methods are coroutines:

```python
from memex.audit_entry import Ingest
from memex.audit_filter import AuditFilter
from memex.audit_log import AuditLog

log = AuditLog(store)
await log.append(Ingest(shard="bhs.corpus.all", content_id="a.md"), "bhs-ingest", "bhs")
await log.query(AuditFilter(action_type="Ingest", limit=10))
await log.verify_chain(0, 0)   # True while the chain is intact
```

`AuditLog.query` returns at most 100 entries unless `limit` is set.

The corpus driver:

```python
from memex.corpus import BhsCorpusDriver, CorpusConfig, strip_frontmatter

strip_frontmatter("---\ntitle: foo\n---\n# Heading\n")   # "# Heading\n"

driver = BhsCorpusDriver()
driver.init(CorpusConfig(root="./sources"))
for chunk in driver.chunks():
    print(chunk.id, len(chunk.text))
driver.finish()
```

Calling `next_chunk` before `init` raises `DriverError` with
`kind == "config"`; calling `init` again restarts from the first file.

The smoke battery can be driven from code with `memex.smoke.load_config`,
`memex.smoke.run` (given an `httpx.Client`) and
`memex.smoke.format_report`.