"""Default JSON schemas for structured agent output, one per lane kind."""

from __future__ import annotations

import copy
from typing import Any

from ..board.lanes import output_type_for_lane

SCHEMA_VERSION = "1.0"

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

DESIGN_OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "summary": {"type": "string", "description": "Brief summary of the design approach"},
        "approach": {
            "type": "string",
            "description": "Detailed technical approach and architecture decisions",
        },
        "components": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "description": {"type": "string"},
                    "files": _STRING_LIST,
                },
                "required": ["name", "description", "files"],
            },
        },
        "dependencies": {**_STRING_LIST, "description": "External dependencies required"},
        "considerations": {**_STRING_LIST, "description": "Constraints and edge cases"},
        "estimatedComplexity": {"type": "string", "enum": ["low", "medium", "high"]},
    },
    "required": ["summary", "approach", "components", "estimatedComplexity"],
}

DEVELOPMENT_OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "summary": {"type": "string", "description": "Summary of changes made"},
        "changes": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "file": {"type": "string"},
                    "action": {"type": "string", "enum": ["created", "modified", "deleted"]},
                    "description": {"type": "string"},
                },
                "required": ["file", "action", "description"],
            },
        },
        "testsAdded": _STRING_LIST,
        "breakingChanges": _STRING_LIST,
        "nextSteps": _STRING_LIST,
    },
    "required": ["summary", "changes"],
}

TESTING_OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "summary": {"type": "string", "description": "Summary of test results"},
        "testsRun": {"type": "number"},
        "testsPassed": {"type": "number"},
        "testsFailed": {"type": "number"},
        "issues": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "severity": {"type": "string", "enum": ["low", "medium", "high", "critical"]},
                    "description": {"type": "string"},
                    "location": {"type": "string"},
                },
                "required": ["severity", "description"],
            },
        },
        "coverage": {
            "type": "object",
            "properties": {
                "lines": {"type": "number"},
                "functions": {"type": "number"},
                "branches": {"type": "number"},
            },
        },
    },
    "required": ["summary", "testsRun", "testsPassed", "testsFailed"],
}

GENERIC_OUTPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "summary": {"type": "string", "description": "Summary of the task execution"},
        "details": {"type": "string"},
        "result": {"type": "string", "enum": ["success", "partial", "failed"]},
        "artifacts": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string"},
                    "path": {"type": "string"},
                    "description": {"type": "string"},
                },
            },
        },
    },
    "required": ["summary", "result"],
}

_SCHEMAS = {
    "design": DESIGN_OUTPUT_SCHEMA,
    "development": DEVELOPMENT_OUTPUT_SCHEMA,
    "testing": TESTING_OUTPUT_SCHEMA,
    "generic": GENERIC_OUTPUT_SCHEMA,
}


def default_schema_for_lane(lane_id: str) -> dict[str, Any]:
    return copy.deepcopy(_SCHEMAS[output_type_for_lane(lane_id)])


__all__ = [
    "DESIGN_OUTPUT_SCHEMA",
    "DEVELOPMENT_OUTPUT_SCHEMA",
    "GENERIC_OUTPUT_SCHEMA",
    "SCHEMA_VERSION",
    "TESTING_OUTPUT_SCHEMA",
    "default_schema_for_lane",
]
