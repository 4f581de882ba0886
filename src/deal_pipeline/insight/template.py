"""
Offline insight generator.

Builds a deterministic Markdown analysis from the deal's own fields. Used when
no OpenAI key is configured so the insight panel still works in development.
"""

from datetime import datetime, timezone

from ..config import config
from ..models.deal import STAGE_TITLES, Deal, DealStage
from .base import InsightGenerator

# Days in stage after which a deal is called out as stalled
STALL_THRESHOLD_DAYS = 14


class TemplateInsightGenerator(InsightGenerator):
    """Rule-based analysis; never calls out to a model."""

    async def analyze(self, deal: Deal) -> str:
        risks: list[str] = []
        opportunities: list[str] = []
        actions: list[str] = []

        if deal.days_in_stage > STALL_THRESHOLD_DAYS:
            risks.append(
                f'Deal has been in {STAGE_TITLES.get(deal.stage, deal.stage)} for '
                f'{deal.days_in_stage} days without moving'
            )
        due = deal.due_date
        if due is not None and due.tzinfo is None:
            due = due.replace(tzinfo=timezone.utc)
        if due is not None and due < datetime.now(tz=timezone.utc):
            risks.append('Expected close date has already passed')
        if deal.contact_id == config.UNKNOWN_CONTACT_ID or not deal.contact:
            risks.append('No confirmed primary contact on record')

        if deal.priority == 'high':
            opportunities.append('Flagged high priority: worth senior attention this week')
        if deal.stage == DealStage.NEGOTIATION.value:
            opportunities.append('Buyer is engaged on terms; momentum favours closing')

        if deal.stage == DealStage.QUALIFICATION.value:
            actions.append('Confirm budget, authority and timeline with the contact')
        elif deal.stage == DealStage.PROPOSAL.value:
            actions.append('Walk the buyer through the proposal and capture objections')
        elif deal.stage == DealStage.NEGOTIATION.value:
            actions.append('Agree the remaining commercial terms and a signature date')
        actions.append('Update the expected close date after the next conversation')

        def numbered(items: list[str], empty: str) -> str:
            if not items:
                return f'1. {empty}'
            return '\n'.join(f'{i}. {item}' for i, item in enumerate(items, start=1))

        return (
            f'# Deal Analysis for {deal.title or "Untitled deal"}\n\n'
            f'## Win Probability: {deal.probability}%\n\n'
            f'### Key Risk Factors:\n{numbered(risks, "No specific risks recorded")}\n\n'
            f'### Opportunities:\n{numbered(opportunities, "No specific opportunities recorded")}\n\n'
            f'### Recommended Actions:\n{numbered(actions, "Review the deal with your manager")}\n\n'
            f'This deal is currently in the {STAGE_TITLES.get(deal.stage, deal.stage)} stage '
            f'and has been there for {deal.days_in_stage} days.'
        )
