"""Prompt templates for the variation and enrichment phases."""

from evolution_solver.core.types import EvolutionConfig

# A max_capex at or above this is treated as "no capital preference"
CAPEX_GUIDANCE_THRESHOLD = 100.0

VARIATOR_SYSTEM_PROMPT = """You are an expert in creative business solution generation.

Problem to solve: {problem_context}{guidance}

Focus on {deal_types}

Generate {num_needed} new solutions:
{mix_text}

Each solution must have:
- "title": Short, catchy title
- "description": Business model in plain terms
- "core_mechanism": How value is created and captured
- "is_offspring": true for offspring, false for wildcards

Requirements:
- Business models must be realistic and implementable
- Explain complex ideas simply (avoid jargon)
- Focus on partnerships that reduce capital requirements
- Consider timing advantages (why now?)
- Describe each solution fully; later analysis sees each idea on its own.
"""

OFFSPRING_MIX = """- {offspring_count} OFFSPRING: Evolve the top performers' best features OR find creative ways to lower direct CAPEX (getting a non-investor to bear costs, or lower costs in general), greatly reduce risk factors, or increase NPV. BE CREATIVE AND BOLD HERE.
- {wildcard_count} WILDCARDS: Completely fresh approaches"""

WILDCARD_MIX = "- {wildcard_count} WILDCARDS: All new creative solutions"

ENRICHER_SYSTEM_PROMPT = """You are a business strategist expert in financial modeling and deal structuring. Provide realistic, data-driven business cases.

Problem context: {problem_context}{guidance}

Required fields in business_case object (ALL monetary values in millions USD):
- "npv_success": 5-year NPV if successful in $M
- "capex_est": Initial capital required in $M (minimum 0.05)
- "timeline_months": Time to first revenue
- "risk_factors": Array of key risks
- "likelihood": Success probability (0-1)
- "yearly_cashflows": Array of 5 yearly cash flows in $M

Keep idea_id, title and description exactly as given.
"""


def variator_guidance(config: EvolutionConfig) -> str:
    """Preference guidance appended to the variation prompt."""
    guidance = ""
    if config.max_capex < CAPEX_GUIDANCE_THRESHOLD:
        guidance += (
            "\n\nPREFERRED APPROACH: Focus on capital-efficient solutions with initial "
            f"investment under ${config.max_capex:g}M. Low-cost, high-impact strategies "
            "are especially valued."
        )
    if config.min_profits > 0:
        guidance += (
            "\nTARGET OUTCOME: Aim for solutions with 5-year NPV potential above "
            f"${config.min_profits:g}M."
        )
    return guidance


def enricher_guidance(config: EvolutionConfig) -> str:
    """Preference guidance appended to the enrichment prompt."""
    guidance = ""
    if config.max_capex < CAPEX_GUIDANCE_THRESHOLD:
        guidance += (
            "\n\nPREFERRED APPROACH: Capital-efficient solutions under "
            f"${config.max_capex:g}M initial investment are preferred. Consider "
            "partnerships, phased rollouts or asset-light models."
        )
    if config.min_profits > 0:
        guidance += (
            "\nTARGET RETURNS: The solution should ideally achieve 5-year NPV above "
            f"${config.min_profits:g}M."
        )
    return guidance
