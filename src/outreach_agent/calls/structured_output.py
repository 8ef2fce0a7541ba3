"""Structured output normalization.

The voice provider returns extraction results keyed by opaque ids, each
value shaped like ``{"name": <schema>, "result": <value>}``. Older calls
were backfilled in a flat shape that carries ``needs_attention`` at the
top level. Everything here is pure and never raises on malformed input.

Usage:
    flat = flatten_structured_outputs(payload)
    outcome = extract_structured_output_by_name(payload, "call_outcome")
    parsed = parse_all_structured_outputs(payload)
"""
from __future__ import annotations

import json
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from outreach_agent.core.logging import get_logger

log = get_logger(__name__)

# Present only in the flat legacy shape
FLAT_SENTINEL = "needs_attention"

# Schema whose fields are spread into the flat record instead of nested
CLASSIFICATION_SCHEMA = "attention_classification"

# Field that identifies a schema's payload when the key and name drifted
SCHEMA_MARKER_FIELDS: dict[str, tuple[str, ...]] = {
    "call_outcome": ("call_outcome",),
    "pet_health_status": ("pet_recovery_status",),
    "medication_compliance": ("medication_compliance",),
    "owner_sentiment": ("owner_sentiment",),
    "escalation_tracking": ("escalation_triggered",),
    "follow_up_status": ("recheck_reminder_delivered", "follow_up_call_needed"),
}


def _is_entry(value: Any) -> bool:
    return isinstance(value, Mapping) and "name" in value and "result" in value


def flatten_structured_outputs(payload: Any) -> dict[str, Any]:
    """Convert the provider payload into a flat ``{field: value}`` record.

    - Missing or non-mapping payloads yield ``{}``.
    - A payload carrying the flat sentinel is returned as-is.
    - ``{name, result}`` entries are keyed by name; a result that itself
      holds ``name`` is unwrapped one level, and the classification
      schema's fields are spread at the top level.
    """
    if not isinstance(payload, Mapping):
        return {}

    if FLAT_SENTINEL in payload:
        return dict(payload)

    flat: dict[str, Any] = {}
    for value in payload.values():
        if not _is_entry(value):
            continue

        name = value["name"]
        if not isinstance(name, str):
            continue
        result = value["result"]

        if isinstance(result, Mapping) and name in result:
            flat[name] = result[name]
        elif name == CLASSIFICATION_SCHEMA and isinstance(result, Mapping):
            flat.update(result)
        else:
            flat[name] = result

    return flat


def _result_or_self(output: Mapping[str, Any]) -> dict[str, Any]:
    result = output.get("result")
    if isinstance(result, Mapping) and result:
        return dict(result)
    return {key: value for key, value in output.items() if key != "name"}


def extract_structured_output_by_name(
    payload: Any,
    schema_name: str,
) -> dict[str, Any] | None:
    """Find the raw output for ``schema_name``.

    An entry matches when its key equals or contains the schema name, when
    its ``name`` equals it, or when it directly carries one of the schema's
    marker fields. The first match in payload order wins.
    """
    if not isinstance(payload, Mapping):
        return None

    markers = SCHEMA_MARKER_FIELDS.get(schema_name, ())

    for key, value in payload.items():
        if not isinstance(value, Mapping):
            continue

        if isinstance(key, str) and (key == schema_name or schema_name in key):
            return _result_or_self(value)

        if value.get("name") == schema_name:
            return _result_or_self(value)

        if any(marker in value for marker in markers):
            return dict(value)

    return None


def parse_attention_types(raw: Any) -> list[str]:
    """Accept a list, a JSON array string, or a comma-separated string."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(item) for item in raw if item is not None and str(item).strip()]
    if not isinstance(raw, str):
        return []

    try:
        decoded = json.loads(raw)
    except ValueError:
        return [part.strip() for part in raw.split(",") if part.strip()]

    if isinstance(decoded, list):
        return [str(item) for item in decoded if item is not None and str(item).strip()]
    return [raw] if raw.strip() else []


# =============================================================================
# Typed schema results
# =============================================================================


class SchemaResult(BaseModel):
    """Base for per-schema results: unknown fields dropped, all optional."""

    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


def _as_list(value: Any) -> Any:
    if isinstance(value, str):
        return parse_attention_types(value)
    return value


class CallOutcome(SchemaResult):
    call_outcome: str | None = None
    conversation_stage_reached: str | None = None
    owner_available: bool | None = None
    call_duration_appropriate: bool | None = None


class PetHealth(SchemaResult):
    pet_recovery_status: str | None = None
    symptoms_reported: list[str] | None = None
    new_concerns_raised: bool | None = None
    condition_resolved: bool | None = None

    @field_validator("symptoms_reported", mode="before")
    @classmethod
    def coerce_symptoms(cls, value: Any) -> Any:
        return _as_list(value)


class MedicationCompliance(SchemaResult):
    medication_discussed: bool | None = None
    medication_compliance: str | None = None
    medication_issues: list[str] | None = None
    medication_guidance_provided: bool | None = None

    @field_validator("medication_issues", mode="before")
    @classmethod
    def coerce_issues(cls, value: Any) -> Any:
        return _as_list(value)


class OwnerSentiment(SchemaResult):
    owner_sentiment: str | None = None
    owner_engagement_level: str | None = None
    expressed_gratitude: bool | None = None
    expressed_concern_about_care: bool | None = None


class Escalation(SchemaResult):
    escalation_triggered: bool | None = None
    escalation_type: str | None = None
    transfer_attempted: bool | None = None
    transfer_successful: bool | None = None
    escalation_reason: str | None = None


class FollowUp(SchemaResult):
    recheck_reminder_delivered: bool | None = None
    recheck_confirmed: bool | None = None
    appointment_requested: bool | None = None
    follow_up_call_needed: bool | None = None
    follow_up_reason: str | None = None


class AttentionClassification(SchemaResult):
    """Flat classification fields used to flag calls for staff review."""

    needs_attention: bool = False
    attention_types: list[str] = []
    attention_severity: str = "routine"
    attention_summary: str | None = None

    @field_validator("needs_attention", mode="before")
    @classmethod
    def coerce_needs_attention(cls, value: Any) -> bool:
        return value is True or (isinstance(value, str) and value.lower() == "true")

    @field_validator("attention_types", mode="before")
    @classmethod
    def coerce_attention_types(cls, value: Any) -> list[str]:
        return parse_attention_types(value)

    @field_validator("attention_severity", mode="before")
    @classmethod
    def coerce_severity(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
        return "routine"

    @field_validator("attention_summary", mode="before")
    @classmethod
    def coerce_summary(cls, value: Any) -> str | None:
        if value is None:
            return None
        return value if isinstance(value, str) else str(value)

    @property
    def is_critical(self) -> bool:
        return self.needs_attention and self.attention_severity == "critical"


# Schema name -> typed result model and the call record column it feeds
SCHEMA_MODELS: dict[str, tuple[type[SchemaResult], str]] = {
    "call_outcome": (CallOutcome, "call_outcome_data"),
    "pet_health_status": (PetHealth, "pet_health_data"),
    "medication_compliance": (MedicationCompliance, "medication_compliance_data"),
    "owner_sentiment": (OwnerSentiment, "owner_sentiment_data"),
    "escalation_tracking": (Escalation, "escalation_data"),
    "follow_up_status": (FollowUp, "follow_up_data"),
}


def _decode(model: type[SchemaResult], raw: Mapping[str, Any] | None) -> SchemaResult | None:
    if raw is None:
        return None
    try:
        return model.model_validate(dict(raw))
    except ValidationError as e:
        log.warning(
            "Undecodable structured output",
            schema=model.__name__,
            errors=e.error_count(),
        )
        return None


class StructuredOutputs(BaseModel):
    """All structured outputs of one call."""

    flat: dict[str, Any] = {}
    attention: AttentionClassification = AttentionClassification()
    schemas: dict[str, SchemaResult | None] = {}

    def column_values(self) -> dict[str, dict[str, Any] | None]:
        """Per-schema values keyed by call record column."""
        values: dict[str, dict[str, Any] | None] = {}
        for schema_name, (_, column) in SCHEMA_MODELS.items():
            result = self.schemas.get(schema_name)
            values[column] = result.model_dump(exclude_none=True) if result else None
        return values


def parse_all_structured_outputs(payload: Any, schema_payload: Any = None) -> StructuredOutputs:
    """Flatten the payload and decode every known schema.

    Schemas are looked up in ``schema_payload`` when given, which lets the
    flat attention fields come from the analysis block while the per-schema
    results come from the artifact.
    """
    flat = flatten_structured_outputs(payload)

    try:
        attention = AttentionClassification.model_validate(flat)
    except ValidationError:
        attention = AttentionClassification()

    source = schema_payload if schema_payload is not None else payload
    schemas = {
        schema_name: _decode(model, extract_structured_output_by_name(source, schema_name))
        for schema_name, (model, _) in SCHEMA_MODELS.items()
    }

    return StructuredOutputs(flat=flat, attention=attention, schemas=schemas)
