"""Interception decision log schema enforcement."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator

from cachestore.models import RESPONSE_TYPES

OUTCOMES = [
    "passthrough",
    "hit",
    "miss_stored",
    "miss_uncached",
    "fallback",
    "failed",
]

DECISION_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": [
        "request_id",
        "received_at",
        "method",
        "url",
        "version",
        "outcome",
        "reason",
        "latency_ms_total",
        "revalidate_scheduled",
    ],
    "properties": {
        "request_id": {"type": "string"},
        "received_at": {"type": "string", "format": "date-time"},
        "method": {"type": "string"},
        "url": {"type": "string"},
        "version": {"type": "string"},
        "outcome": {"type": "string", "enum": OUTCOMES},
        "reason": {"type": "string"},
        "generation": {"type": ["string", "null"]},
        "status": {"type": ["integer", "null"], "minimum": 0},
        "response_type": {"type": ["string", "null"], "enum": list(RESPONSE_TYPES) + [None]},
        "entry_age_seconds": {"type": ["integer", "null"], "minimum": 0},
        "latency_ms_total": {"type": "number", "minimum": 0},
        "revalidate_scheduled": {"type": "boolean"},
    },
}

_validator = Draft7Validator(DECISION_SCHEMA)


def validate_decision(payload: Dict[str, Any]) -> None:
    errors = sorted(_validator.iter_errors(payload), key=lambda e: e.path)
    if errors:
        messages = ", ".join(error.message for error in errors)
        raise ValueError(f"decision log validation failed: {messages}")


@dataclass
class DecisionRecord:
    request_id: str
    method: str
    url: str
    version: str
    outcome: str
    reason: str
    latency_ms_total: float
    revalidate_scheduled: bool = False
    generation: Optional[str] = None
    status: Optional[int] = None
    response_type: Optional[str] = None
    entry_age_seconds: Optional[int] = None
    received_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "request_id": self.request_id,
            "received_at": self.received_at,
            "method": self.method,
            "url": self.url,
            "version": self.version,
            "outcome": self.outcome,
            "reason": self.reason,
            "generation": self.generation,
            "status": self.status,
            "response_type": self.response_type,
            "entry_age_seconds": self.entry_age_seconds,
            "latency_ms_total": self.latency_ms_total,
            "revalidate_scheduled": self.revalidate_scheduled,
        }
        validate_decision(payload)
        return payload
