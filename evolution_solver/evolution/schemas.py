"""JSON schemas for structured oracle output.

Structured outputs require an object at the root, so list replies are wrapped
in ``ideas`` / ``enriched_ideas``.
"""

from typing import Any

BUSINESS_CASE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "npv_success": {
            "type": "number",
            "description": "NPV if successful, in millions USD (10% discount rate)",
        },
        "capex_est": {
            "type": "number",
            "description": "Estimated CAPEX in millions USD (minimum $50K)",
        },
        "timeline_months": {
            "type": "integer",
            "description": "Implementation timeline in months",
        },
        "likelihood": {
            "type": "number",
            "description": "Probability of success (0-1)",
        },
        "risk_factors": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Key risk factors for the idea",
        },
        "yearly_cashflows": {
            "type": "array",
            "items": {"type": "number"},
            "description": "Expected cashflows for years 1-5 in millions USD",
        },
    },
    "required": [
        "npv_success",
        "capex_est",
        "timeline_months",
        "likelihood",
        "risk_factors",
        "yearly_cashflows",
    ],
    "additionalProperties": False,
}

_IDEA_PROPERTIES: dict[str, Any] = {
    "idea_id": {"type": "string", "description": "Identifier (replaced by the solver)"},
    "title": {"type": "string", "description": "Short, catchy title for the idea"},
    "description": {
        "type": "string",
        "description": "2-3 sentence description of the business idea",
    },
    "core_mechanism": {
        "type": "string",
        "description": "1-2 sentence explanation of how the idea works",
    },
    "is_offspring": {
        "type": "boolean",
        "description": "Whether this idea is based on an existing top performer",
    },
}

VARIATOR_SCHEMA: dict[str, Any] = {
    "name": "variator_response",
    "schema": {
        "type": "object",
        "properties": {
            "ideas": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": _IDEA_PROPERTIES,
                    "required": list(_IDEA_PROPERTIES),
                    "additionalProperties": False,
                },
            }
        },
        "required": ["ideas"],
        "additionalProperties": False,
    },
}

_ENRICHED_IDEA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "idea_id": {"type": "string", "description": "Must match the input idea_id"},
        "title": {"type": "string", "description": "Must match the input title"},
        "description": {"type": "string", "description": "Must match the input description"},
        "business_case": BUSINESS_CASE_SCHEMA,
    },
    "required": ["idea_id", "title", "description", "business_case"],
    "additionalProperties": False,
}

SINGLE_IDEA_ENRICHER_SCHEMA: dict[str, Any] = {
    "name": "single_idea_enricher_response",
    "schema": _ENRICHED_IDEA,
}

BATCH_ENRICHER_SCHEMA: dict[str, Any] = {
    "name": "enricher_response",
    "schema": {
        "type": "object",
        "properties": {
            "enriched_ideas": {"type": "array", "items": _ENRICHED_IDEA},
        },
        "required": ["enriched_ideas"],
        "additionalProperties": False,
    },
}
