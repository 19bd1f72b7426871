"""Structured insights contract.

The structured insights payload is stored as JSON text in `aggregations.insights`
(legacy rows hold plain markdown). This module defines:
- One JSON Schema per section (each section comes from its own model call)
- Validation helpers returning human-readable errors
- Fallback payloads used when a section reply is unusable
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator


_BULLETS = {"type": "array", "items": {"type": "string"}}

_SUMMARY_BULLETS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["summary", "bullets"],
    "properties": {
        "summary": {"type": "string"},
        "bullets": _BULLETS,
    },
    "additionalProperties": True,
}

SECTION_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "executiveOverview": {
        "type": "object",
        "required": ["mainInsight", "keyThemes", "emergingTrends"],
        "properties": {
            "mainInsight": {"type": "string", "minLength": 1},
            "keyThemes": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["name", "articleCount"],
                    "properties": {
                        "name": {"type": "string", "minLength": 1},
                        "articleCount": {"type": "integer", "minimum": 0},
                    },
                    "additionalProperties": True,
                },
            },
            "emergingTrends": _BULLETS,
        },
        "additionalProperties": True,
    },
    "marketMoves": _SUMMARY_BULLETS_SCHEMA,
    "techShifts": _SUMMARY_BULLETS_SCHEMA,
    "industryImpact": {
        "type": "object",
        "required": ["summary", "industries"],
        "properties": {
            "summary": {"type": "string"},
            "industries": {
                "type": "array",
                "items": {
                    "type": "object",
                    "required": ["name", "bullets"],
                    "properties": {
                        "name": {"type": "string", "minLength": 1},
                        "bullets": _BULLETS,
                    },
                    "additionalProperties": True,
                },
            },
        },
        "additionalProperties": True,
    },
    "policySignals": _SUMMARY_BULLETS_SCHEMA,
}

SECTION_ORDER = ["executiveOverview", "marketMoves", "techShifts", "industryImpact", "policySignals"]

STRUCTURED_INSIGHTS_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": SECTION_ORDER,
    "properties": dict(SECTION_SCHEMAS),
    "additionalProperties": True,
}

THEMES_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["themes", "mainInsight", "trends"],
    "properties": {
        "themes": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "description", "articleCount"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "description": {"type": "string"},
                    "articleCount": {"type": "integer", "minimum": 0},
                },
                "additionalProperties": True,
            },
        },
        "mainInsight": {"type": "string"},
        "trends": _BULLETS,
    },
    "additionalProperties": True,
}

SECTION_FALLBACKS: Dict[str, Dict[str, Any]] = {
    "executiveOverview": {
        "mainInsight": "Multiple significant developments across the tech landscape this week.",
        "keyThemes": [],
        "emergingTrends": [],
    },
    "marketMoves": {"summary": "Market activity details available in the articles.", "bullets": []},
    "techShifts": {"summary": "Technical developments detailed in the articles.", "bullets": []},
    "industryImpact": {"summary": "Industry applications detailed in the articles.", "industries": []},
    "policySignals": {"summary": "Policy and economic signals detailed in the articles.", "bullets": []},
}

_SECTION_VALIDATORS = {name: Draft202012Validator(schema) for name, schema in SECTION_SCHEMAS.items()}
_VALIDATOR = Draft202012Validator(STRUCTURED_INSIGHTS_SCHEMA)
_THEMES_VALIDATOR = Draft202012Validator(THEMES_SCHEMA)


def _errors(validator: Draft202012Validator, payload: Any) -> List[str]:
    errors = []
    for e in sorted(validator.iter_errors(payload), key=lambda x: [str(p) for p in x.path]):
        path = ".".join(str(p) for p in e.path) if e.path else "<root>"
        errors.append(f"{path}: {e.message}")
    return errors


def validate_section(name: str, payload: Any) -> List[str]:
    """Return a list of human-readable validation errors for one section (empty means valid)."""
    return _errors(_SECTION_VALIDATORS[name], payload)


def validate_structured_insights(payload: Any) -> List[str]:
    return _errors(_VALIDATOR, payload)


def validate_themes(payload: Any) -> List[str]:
    return _errors(_THEMES_VALIDATOR, payload)


def fallback_section(name: str) -> Dict[str, Any]:
    return json.loads(json.dumps(SECTION_FALLBACKS[name]))


def empty_insights() -> Dict[str, Any]:
    """Structure returned when there is nothing to analyze."""
    return {
        "executiveOverview": {"mainInsight": "No articles to analyze.", "keyThemes": [], "emergingTrends": []},
        "marketMoves": {"summary": "", "bullets": []},
        "techShifts": {"summary": "", "bullets": []},
        "industryImpact": {"summary": "", "industries": []},
        "policySignals": {"summary": "", "bullets": []},
    }


def _load(text: Optional[str]) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def is_structured_insights(text: Optional[str]) -> bool:
    """True for stored JSON insights, False for legacy markdown (or nothing)."""
    parsed = _load(text)
    return isinstance(parsed, dict) and "executiveOverview" in parsed


def parse_structured_insights(text: Optional[str]) -> Optional[Dict[str, Any]]:
    parsed = _load(text)
    if isinstance(parsed, dict) and "executiveOverview" in parsed:
        return parsed
    return None
