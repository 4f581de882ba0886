"""
Deal analysis prompts for the insight generator.

The model receives one deal's pipeline facts and returns a short Markdown
analysis: win probability assessment, risks, opportunities, next actions.
"""

from ..models.deal import STAGE_TITLES, Deal


# =============================================================================
# System Prompt
# =============================================================================

DEAL_INSIGHT_SYSTEM_PROMPT = """You are a senior sales strategist reviewing a single opportunity in a B2B sales pipeline.

Given the deal facts below, write a concise analysis in Markdown with exactly these sections:

# Deal Analysis for <deal title>

## Win Probability: <your estimate>%

### Key Risk Factors:
Numbered list, 2-4 items.

### Opportunities:
Numbered list, 2-4 items.

### Recommended Actions:
Numbered list, 3-5 concrete next steps the rep can take this week.

## Rules

- Ground every point in the facts given. Do not invent stakeholders, competitors or numbers.
- The pipeline's stage probability is a baseline; adjust it only with a reason drawn from the facts.
- Flag a deal that has sat in its stage for more than 14 days, or whose expected close date has passed.
- Keep the whole analysis under 300 words."""


# =============================================================================
# User Prompt Template
# =============================================================================

DEAL_INSIGHT_USER_PROMPT_TEMPLATE = """Analyze this deal.

<deal>
Title: {title}
Company: {company}
Primary contact: {contact}
Value: {value:,.2f} {currency}
Stage: {stage}
Stage probability: {probability}%
Days in current stage: {days_in_stage}
Priority: {priority}
Expected close: {due_date}
Notes: {notes}
</deal>"""


def build_insight_messages(deal: Deal) -> list[dict[str, str]]:
    """
    Build the chat messages for analyzing a deal.

    Args:
        deal: The deal to analyze

    Returns:
        System and user messages for a chat completion
    """
    user_prompt = DEAL_INSIGHT_USER_PROMPT_TEMPLATE.format(
        title=deal.title or 'Untitled deal',
        company=deal.company or 'Unknown',
        contact=deal.contact or 'Unknown',
        value=deal.value,
        currency=deal.currency,
        stage=STAGE_TITLES.get(deal.stage, deal.stage),
        probability=deal.probability,
        days_in_stage=deal.days_in_stage,
        priority=deal.priority,
        due_date=deal.due_date.date().isoformat() if deal.due_date else 'not set',
        notes=deal.notes or 'none',
    )
    return [
        {'role': 'system', 'content': DEAL_INSIGHT_SYSTEM_PROMPT},
        {'role': 'user', 'content': user_prompt},
    ]
