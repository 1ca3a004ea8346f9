"""Prompt construction for agent runs."""

from __future__ import annotations

from ..errors import InvalidStateError
from .models import Task

SEPARATOR = "\n\n---\n\n"


def compose_prompt(system_prompt: str, user_prompt: str) -> str:
    if system_prompt:
        return f"{system_prompt}{SEPARATOR}{user_prompt}"
    return user_prompt


def build_design_prompt(task: Task) -> str:
    sections = [
        "## Requirements",
        "",
        f"**Title**: {task.title}",
        "",
        "**Description**:",
        task.description or "(none)",
    ]
    if task.prompt:
        sections += ["", "**Additional notes**:", task.prompt]
    sections += ["", "---", "", "Write a technical design document for the requirements above."]
    return "\n".join(sections)


def build_execution_prompt(task: Task, design_text: str | None = None) -> str:
    """Prompt for a task-execution run; needs a task prompt or a design document."""

    if not task.prompt and not design_text:
        raise InvalidStateError(f"Task {task.id} has no prompt or design document to execute")
    sections = [f"# Task: {task.title}"]
    if task.description:
        sections += ["", task.description]
    if design_text:
        sections += ["", "## Design document", "", design_text.strip()]
    if task.prompt:
        sections += ["", "## Instructions", "", task.prompt]
    return "\n".join(sections)


__all__ = ["SEPARATOR", "build_design_prompt", "build_execution_prompt", "compose_prompt"]
