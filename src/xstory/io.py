"""Input loading and artefact writing for the xstory command line."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from .retrieval.types import Document

__all__ = [
    "LoadedDocument",
    "SUPPORTED_TEXT_SUFFIXES",
    "infer_title",
    "iter_corpus_documents",
    "load_input_resource",
    "write_json",
]

SUPPORTED_TEXT_SUFFIXES = {".md", ".markdown", ".txt"}
JSON_SUFFIXES = {".json"}


@dataclass(slots=True)
class LoadedDocument:
    """Loaded input: free text, or a JSON object of pipeline fields."""

    content: str
    source: Path
    metadata: dict[str, Any]
    fields: dict[str, Any] | None = None

    @property
    def structured(self) -> bool:
        return self.fields is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "source": str(self.source),
            "metadata": self.metadata,
            "fields": self.fields,
        }


def load_input_resource(source: Path | str, *, encoding: str = "utf-8") -> LoadedDocument:
    """Load Markdown, plain text or JSON input."""

    source_path = Path(source).expanduser()
    if not source_path.exists():
        raise FileNotFoundError(f"Input not found: {source_path}")

    suffix = source_path.suffix.lower()
    if suffix in SUPPORTED_TEXT_SUFFIXES:
        text = source_path.read_text(encoding=encoding)
        metadata = {
            "kind": "markdown" if suffix != ".txt" else "text",
            "length": len(text),
            "path": str(source_path),
        }
        return LoadedDocument(content=text, source=source_path, metadata=metadata)

    if suffix in JSON_SUFFIXES:
        try:
            payload = json.loads(source_path.read_text(encoding=encoding))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Input is not valid JSON: {source_path}") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"JSON input must be an object of pipeline fields: {source_path}")
        metadata = {"kind": "json", "keys": sorted(payload), "path": str(source_path)}
        return LoadedDocument(
            content=json.dumps(payload, ensure_ascii=False),
            source=source_path,
            metadata=metadata,
            fields=payload,
        )

    raise ValueError(f"Unsupported input format for {source_path}")


def infer_title(text: str, fallback: str) -> str:
    for line in text.splitlines():
        candidate = line.strip()
        if not candidate:
            continue
        if candidate.startswith("#"):
            return candidate.lstrip("#").strip()
    return fallback


def iter_corpus_documents(directory: Path | str, *, encoding: str = "utf-8") -> Iterator[Document]:
    """Yield one reference document per text file under *directory*."""

    root = Path(directory).expanduser()
    if not root.is_dir():
        raise NotADirectoryError(f"Corpus directory not found: {root}")
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in SUPPORTED_TEXT_SUFFIXES:
            continue
        text = path.read_text(encoding=encoding)
        relative = path.relative_to(root).as_posix()
        yield Document(id=relative, title=infer_title(text, path.stem), content=text, note_id=relative)


def write_json(path: Path, payload: Any, *, encoding: str = "utf-8") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str), encoding=encoding)
    return path
