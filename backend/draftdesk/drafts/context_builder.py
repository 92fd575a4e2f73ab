"""
Context building and prompt construction for draft generation.

Turns database rows (deal, shortlisted spaces, thread, inbound email) into a
normalized ``StructuredContext`` and renders the three prompt shapes used
against the language model: generate, refine and fact-check.
"""
import json
import logging

from draftdesk.drafts.models import DealInfo, SpaceInfo, StructuredContext, ThreadEmail
from draftdesk.models.deals import Deal, Space
from draftdesk.models.emails import Email

logger = logging.getLogger(__name__)

# Thread messages (besides the inbound one) included in the prompt
MAX_HISTORY_IN_PROMPT = 5
HISTORY_EXCERPT_CHARS = 400


def _thread_email(email: Email) -> ThreadEmail:
    return ThreadEmail(
        id=email.id,
        from_address=email.from_address,
        to_address=email.to_address,
        subject=email.subject,
        body=email.body,
        sent_at=email.sent_at,
    )


def build_structured_context(
    deal: Deal,
    spaces: list[Space],
    email_thread: list[Email],
    inbound_email: Email,
) -> StructuredContext:
    """Extract and normalize the data the drafter may use."""
    context = StructuredContext(
        deal=DealInfo(
            seeker_name=deal.seeker_name,
            seeker_email=deal.seeker_email,
            company_name=deal.company_name,
            team_size=deal.team_size,
            monthly_budget=deal.monthly_budget,
            requirements=deal.requirements or {},
        ),
        spaces=[
            SpaceInfo(
                id=space.id,
                name=space.name,
                address=space.address,
                neighborhood=space.neighborhood,
                host_company=space.host_company,
                host_context=space.host_context,
                amenities=space.amenities or {},
                availability=space.availability or {},
                monthly_rate=space.monthly_rate,
                detailed_amenities=space.detailed_amenities,
            )
            for space in spaces
        ],
        email_history=[
            _thread_email(email)
            for email in sorted(email_thread, key=lambda e: e.sent_at)
        ],
        inbound_email=_thread_email(inbound_email),
    )

    logger.info(
        "Built draft context",
        extra={
            "deal_id": deal.id,
            "space_count": len(context.spaces),
            "thread_length": len(context.email_history),
        }
    )
    return context


def _format_history(context: StructuredContext) -> str:
    earlier = [e for e in context.email_history if e.id != context.inbound_email.id]
    if not earlier:
        return "(no earlier messages)"

    lines = []
    for email in earlier[-MAX_HISTORY_IN_PROMPT:]:
        excerpt = email.body.strip()
        if len(excerpt) > HISTORY_EXCERPT_CHARS:
            excerpt = excerpt[:HISTORY_EXCERPT_CHARS] + "..."
        lines.append(
            f"[{email.sent_at:%b %d, %Y}] From: {email.from_address}\n"
            f"Subject: {email.subject}\n{excerpt}"
        )
    return "\n\n".join(lines)


def _format_space(position: int, space: SpaceInfo) -> str:
    lines = [
        "",
        f"{position}. {space.name}",
        f"   - Address: {space.address}",
        f"   - Host: {space.host_company}",
    ]
    if space.host_context:
        lines.append(f"   - Context: {space.host_context}")
    lines += [
        f"   - Rate: ${space.monthly_rate}/month",
        f"   - Amenities: {json.dumps(space.amenities, indent=2)}",
        f"   - Availability: {json.dumps(space.availability, indent=2)}",
    ]
    return "\n".join(lines)


def build_email_prompt(
    context: StructuredContext,
    agent_name: str = "Alex",
    agent_company: str = "Tandem",
) -> str:
    """Build the prompt for a fresh reply to the inbound email."""
    deal = context.deal
    inbound = context.inbound_email

    spaces_block = "\n".join(
        _format_space(i, space) for i, space in enumerate(context.spaces, start=1)
    )

    return f"""You are {agent_name}, a professional real estate agent at {agent_company} helping {deal.seeker_name} from {deal.company_name} find office space.

DEAL CONTEXT:
- Company: {deal.company_name}
- Team size: {deal.team_size} people
- Budget: ${deal.monthly_budget}/month
- Requirements: {json.dumps(deal.requirements, indent=2)}

AVAILABLE SPACES:
{spaces_block or '(no spaces shortlisted yet)'}

EARLIER IN THIS THREAD:
{_format_history(context)}

INBOUND EMAIL TO RESPOND TO:
From: {inbound.from_address}
Subject: {inbound.subject}

{inbound.body}

TASK:
Write a professional, helpful email response that:
1. Addresses ALL questions asked in the inbound email with clear, direct answers
2. Uses specific data from the spaces (amenities, availability, host context)
3. When a question asks "does X have Y?", answer YES or NO clearly if the data shows it
4. Uses the host context to give background on host companies when asked
5. Proposes a concrete tour schedule based on the availability windows
6. Maintains a friendly, professional, enthusiastic tone
7. Signs off as "{agent_name}" from {agent_company}

IMPORTANT CONSTRAINTS:
- Only reference amenities/features that are explicitly listed in the space data
- Use actual availability windows from the data
- If proposing tours, consider travel time between locations (spaces in the same neighborhood are ~15 min apart)
- Be specific with times and addresses

Respond with ONLY the email body (no subject line, no metadata). Start with a greeting and end with a signature."""


def build_refinement_prompt(
    context: StructuredContext,
    previous_body: str,
    instruction: str,
    previous_version: int,
    agent_name: str = "Alex",
    agent_company: str = "Tandem",
) -> str:
    """Build the prompt that rewrites the current draft per a broker instruction."""
    base_prompt = build_email_prompt(context, agent_name, agent_company)

    return f"""{base_prompt}

PREVIOUS DRAFT (Version {previous_version}):
{previous_body}

USER REFINEMENT INSTRUCTION:
{instruction}

TASK:
Regenerate the email incorporating the user's refinement instruction while:
1. Preserving all answers to the original questions
2. Maintaining professional tone and accuracy
3. Keeping all factual information correct
4. Enhancing the draft based on the specific instruction

IMPORTANT: Do not remove or contradict information from the previous draft unless the instruction specifically asks you to. Build upon it.

Respond with ONLY the refined email body (no subject line, no metadata)."""


def build_validation_prompt(body: str, context: StructuredContext) -> str:
    """Build the strict fact-check prompt for a generated draft."""
    valid_prices = ", ".join(f"${space.monthly_rate}" for space in context.spaces) or "none"

    spaces_block = "\n".join(
        "\n".join([
            "",
            f"Space {i}: {space.name}",
            f"- Address: {space.address}",
            f"- Monthly Rate: ${space.monthly_rate}",
            f"- Amenities: {json.dumps(space.amenities)}",
            "- Detailed Amenities: " + json.dumps(space.detailed_amenities or {}),
        ])
        for i, space in enumerate(context.spaces, start=1)
    )

    return f"""You are a fact-checker. Review this email draft for accuracy against the provided data.

EMAIL DRAFT:
{body}

AVAILABLE DATA:
{spaces_block}

VALIDATION CHECKLIST:
1. Are all prices mentioned in the draft exactly matching the data? (Valid prices: {valid_prices})
2. Are all amenities mentioned in the draft explicitly listed in the space data?
3. Are all addresses mentioned correctly?
4. Are there any claims about features not in the data?

Respond in this exact format:
STATUS: [PASSED/WARNINGS/FAILED]
ISSUES:
- [List each issue found, or write "None" if passed]

Be strict. If the draft mentions "parking" but the data doesn't explicitly show parking details, that's an issue."""
