"""Design and plan documents stored under the project state directory."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from ..errors import NotFoundError, PersistenceError


def _resolve(project_path: str | Path, relpath: str) -> Path:
    root = Path(project_path).resolve()
    target = (root / relpath).resolve()
    if not target.is_relative_to(root):
        raise PersistenceError(f"Document path escapes the project: {relpath}")
    return target


async def read_document(project_path: str | Path, relpath: str | None) -> str:
    if not relpath:
        raise NotFoundError("Document not found")
    target = _resolve(project_path, relpath)

    def _read() -> str:
        if not target.is_file():
            raise NotFoundError(f"Document not found: {relpath}")
        return target.read_text(encoding="utf-8")

    return await asyncio.to_thread(_read)


async def write_document(project_path: str | Path, relpath: str, content: str) -> None:
    target = _resolve(project_path, relpath)

    def _write() -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    try:
        await asyncio.to_thread(_write)
    except OSError as exc:
        raise PersistenceError(f"Failed to write {relpath}: {exc}") from exc


async def delete_document(project_path: str | Path, relpath: str) -> bool:
    target = _resolve(project_path, relpath)

    def _delete() -> bool:
        if not target.exists():
            return False
        target.unlink()
        return True

    return await asyncio.to_thread(_delete)


def design_markdown(title: str, design: dict[str, Any]) -> str:
    """Render a structured design payload as a Markdown document."""

    lines = [f"# Design: {title}", ""]
    if design.get("summary"):
        lines += ["## Summary", "", str(design["summary"]), ""]
    if design.get("approach"):
        lines += ["## Approach", "", str(design["approach"]), ""]
    components = design.get("components") or []
    if components:
        lines += ["## Components", ""]
        for component in components:
            lines.append(f"### {component.get('name', 'Component')}")
            lines += ["", str(component.get("description", "")), ""]
            for path in component.get("files") or []:
                lines.append(f"- `{path}`")
            lines.append("")
    for key, heading in (("dependencies", "Dependencies"), ("considerations", "Considerations")):
        items = design.get(key) or []
        if items:
            lines += [f"## {heading}", "", *(f"- {item}" for item in items), ""]
    if design.get("estimatedComplexity"):
        lines += [f"**Estimated complexity**: {design['estimatedComplexity']}", ""]
    return "\n".join(lines).rstrip() + "\n"


__all__ = [
    "delete_document",
    "design_markdown",
    "read_document",
    "write_document",
]
