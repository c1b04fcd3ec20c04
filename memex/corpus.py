"""Markdown corpus driver: walks ``*.md`` files, strips YAML frontmatter, emits chunks."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Union


@dataclass
class CorpusConfig:
    """Where the corpus lives and free-form driver options."""

    root: str
    options: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class Chunk:
    """One unit of content emitted by a driver."""

    id: str
    text: str
    source_ref: str
    metadata: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class DriverMetadata:
    """A driver's self-description."""

    name: str
    description: str
    accepts: list[str] = field(default_factory=list)


class DriverError(Exception):
    """A driver reported a structured error from one of its operations."""

    def __init__(
        self, export: str, kind: str, message: str, context: Optional[str] = None
    ) -> None:
        self.export = export
        self.kind = kind
        self.message = message
        self.context = context
        suffix = f" (context: {context})" if context is not None else ""
        super().__init__(f"driver reported {kind}: {message}{suffix}")


def strip_frontmatter(text: str) -> str:
    """Strip a leading ``---`` YAML frontmatter block.

    Handles LF, CRLF and a leading BOM. Returns the input unchanged if there
    is no frontmatter or the block is not terminated.
    """
    trimmed = text.lstrip("\ufeff")
    if not trimmed.startswith("---"):
        return text
    after_first = trimmed[3:]
    if after_first.startswith("\r\n"):
        rest = after_first[2:]
    elif after_first.startswith("\n"):
        rest = after_first[1:]
    else:
        return text
    position = 0
    while position < len(rest):
        newline = rest.find("\n", position)
        end = len(rest) if newline == -1 else newline + 1
        line = rest[position:end]
        if line.rstrip("\n").rstrip("\r") == "---":
            return rest[end:]
        position = end
    return text


def _collect_markdown(directory: Path, found: list[Path]) -> None:
    with os.scandir(directory) as entries:
        for entry in entries:
            path = Path(entry.path)
            if entry.is_dir(follow_symlinks=False):
                _collect_markdown(path, found)
            elif entry.is_file(follow_symlinks=False) and path.suffix == ".md":
                found.append(path)


def walk_markdown(root: Union[str, os.PathLike]) -> list[Path]:
    """All ``*.md`` files under ``root``, recursively, in sorted order."""
    found: list[Path] = []
    _collect_markdown(Path(root), found)
    return sorted(found)


def _relative_id(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path).replace("\\", "/")


class BhsCorpusDriver:
    """Emits one chunk per markdown file, in deterministic order.

    Lifecycle: ``init`` → ``next_chunk`` until None → ``finish``.
    Calling ``init`` again restarts from the first file.
    """

    NAME = "bhs-corpus"
    DESCRIPTION = (
        "BHS markdown corpus — strips YAML frontmatter, emits one chunk per file"
    )

    def __init__(self) -> None:
        self._root: Optional[Path] = None
        self._files: list[Path] = []
        self._cursor = 0

    def init(self, config: CorpusConfig) -> DriverMetadata:
        root = Path(config.root)
        try:
            files = walk_markdown(root)
        except OSError as exc:
            raise DriverError(
                "init", "io", f"walking corpus: {exc}", config.root
            ) from exc
        self._root = root
        self._files = files
        self._cursor = 0
        return DriverMetadata(
            name=self.NAME, description=self.DESCRIPTION, accepts=["*.md"]
        )

    def next_chunk(self) -> Optional[Chunk]:
        """The next non-empty chunk, or None when the corpus is exhausted."""
        if self._root is None:
            raise DriverError("next-chunk", "config", "next_chunk called before init")
        while self._cursor < len(self._files):
            path = self._files[self._cursor]
            self._cursor += 1
            rel = _relative_id(path, self._root)
            try:
                raw = path.read_bytes().decode("utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise DriverError(
                    "next-chunk", "io", f"reading {rel}: {exc}", rel
                ) from exc
            body = strip_frontmatter(raw)
            if not body.strip():
                continue
            return Chunk(id=rel, text=body, source_ref=rel, metadata=[])
        return None

    def finish(self) -> None:
        self._root = None
        self._files = []
        self._cursor = 0

    def chunks(self) -> Iterator[Chunk]:
        """Yield the remaining chunks until the driver is exhausted."""
        while True:
            chunk = self.next_chunk()
            if chunk is None:
                return
            yield chunk