"""
Confidence scoring and reasoning derivation for generated drafts.

Everything here is a pure function of (draft text, structured context): the
same inputs always give the same score and reasoning, so these run without
the language model and are unit tested on their own.
"""
import re

from draftdesk.drafts.models import (
    CalendarCheck,
    CrmLookup,
    DataSource,
    QuestionAddressed,
    Reasoning,
    SpaceInfo,
    SpaceSlotCheck,
    StructuredContext,
    TourRoute,
    ValidationResult,
)

CONFIDENCE_BASE = 50
CONFIDENCE_CAP = 95  # never 100% confident

MINUTES_PER_TOUR_STOP = 30
MINUTES_BETWEEN_NEIGHBORHOODS = 15

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_QUESTION_RE = re.compile(r"[^.!?\n]+\?")
_LIST_MARKER_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s*")
_CLOCK_TIME_RE = re.compile(r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm)\b", re.IGNORECASE)
_WORD_RE = re.compile(r"[a-z0-9][a-z0-9/-]*")

_STOPWORDS = {
    "about", "also", "anything", "been", "could", "does", "from", "have", "just",
    "know", "like", "need", "should", "still", "than", "that", "them", "then",
    "there", "they", "this", "what", "when", "where", "which", "will", "with",
    "would", "your", "into", "were",
}


def calculate_confidence(body: str, spaces: list[SpaceInfo], agent_name: str = "Alex") -> int:
    """Heuristic completeness score in [50, 95] from keyword presence."""
    score = CONFIDENCE_BASE
    lower_body = body.lower()

    # Key requirements
    if "parking" in lower_body:
        score += 10
    if "after-hours" in lower_body or "24/7" in lower_body:
        score += 10
    if "tour" in lower_body or "schedule" in lower_body:
        score += 10

    for space in spaces:
        if space.name.lower() in lower_body:
            score += 5

    # Professional structure
    if "hi " in lower_body or "hello" in lower_body:
        score += 5
    if "best" in lower_body or "regards" in lower_body or agent_name.lower() in lower_body:
        score += 5

    return min(score, CONFIDENCE_CAP)


def apply_validation(confidence: int, validation: ValidationResult | None) -> int:
    """Apply the fact-check adjustment (-10 warnings, -25 failed), never below zero."""
    if validation is None:
        return confidence
    return max(0, confidence + validation.confidence_adjustment)


def extract_questions(inbound_body: str) -> list[str]:
    """Return the question sentences of an email, skipping quoted replies."""
    unquoted = "\n".join(
        line for line in (inbound_body or "").splitlines()
        if not line.lstrip().startswith(">")
    )

    questions: list[str] = []
    for match in _QUESTION_RE.finditer(unquoted):
        question = _LIST_MARKER_RE.sub("", match.group(0).strip()).strip()
        if len(question) > 3 and question not in questions:
            questions.append(question)
    return questions


def _keywords(text: str) -> set[str]:
    return {
        word for word in _WORD_RE.findall(text.lower())
        if (len(word) >= 4 or "/" in word) and word not in _STOPWORDS
    }


def _space_data_points(space: SpaceInfo, lower_body: str) -> list[str]:
    data_points = []
    if "parking" in lower_body:
        data_points.append("parking availability")
    if "after-hours" in lower_body or "24/7" in lower_body or "access" in lower_body:
        data_points.append("24/7 access information")
    if space.address.lower() in lower_body:
        data_points.append("location details")
    if space.monthly_rate and any(token in lower_body for token in ("rate", "price", "$")):
        data_points.append("pricing information")
    return data_points or ["general space information"]


def build_crm_lookups(spaces: list[SpaceInfo], body: str) -> list[CrmLookup]:
    """Per-space CRM detail, flagging spaces excluded by dog policy."""
    lower_body = body.lower()
    lookups = []

    for space in spaces:
        detailed = space.detailed_amenities or {}
        dog_policy = detailed.get("dogPolicy") or {}
        dogs_disallowed = dog_policy.get("allowed") is False

        lookups.append(CrmLookup(
            space_id=space.id,
            space_name=space.name,
            address=space.address,
            details={
                key: detailed.get(key)
                for key in ("parking", "dogPolicy", "access", "meetingRooms", "rentInclusions")
                if detailed.get(key) is not None
            },
            excluded=dogs_disallowed and "dog" in lower_body,
            excluded_reason=(
                f"Dogs not allowed: {dog_policy.get('reason') or 'Building policy'}"
                if dogs_disallowed else None
            ),
        ))

    return lookups


def build_calendar_checks(spaces: list[SpaceInfo]) -> list[CalendarCheck]:
    """One check per weekday that any space lists tour windows for."""
    days = {day.lower() for space in spaces for day in space.availability}
    ordered_days = [d for d in WEEKDAYS if d in days] + sorted(days - set(WEEKDAYS))

    checks = []
    for day in ordered_days:
        slot_checks = []
        for space in spaces:
            slots = next(
                (v for k, v in space.availability.items() if k.lower() == day),
                [],
            )
            slot_checks.append(SpaceSlotCheck(
                space_name=space.name,
                available=bool(slots),
                slots=list(slots),
            ))
        checks.append(CalendarCheck(day=day.capitalize(), spaces=slot_checks))
    return checks


def _format_minutes(total: int) -> str:
    hours, minutes = divmod(total, 60)
    if not hours:
        return f"{minutes} min"
    label = "hour" if hours == 1 else "hours"
    return f"{hours} {label}" + (f" {minutes} min" if minutes else "")


def build_tour_route(spaces: list[SpaceInfo], calendar_checks: list[CalendarCheck]) -> TourRoute | None:
    """Suggest a single-trip tour when the shortlist spans several neighborhoods."""
    stops = [space for space in spaces if space.neighborhood]
    if len({space.neighborhood for space in stops}) < 2:
        return None

    neighborhood_changes = sum(
        1 for prev, nxt in zip(stops, stops[1:]) if prev.neighborhood != nxt.neighborhood
    )
    total_minutes = (
        MINUTES_PER_TOUR_STOP * len(stops)
        + MINUTES_BETWEEN_NEIGHBORHOODS * neighborhood_changes
    )

    recommended = "First window all spaces share"
    if calendar_checks:
        best = max(calendar_checks, key=lambda check: sum(s.available for s in check.spaces))
        recommended = f"{best.day} window"

    return TourRoute(
        recommended=recommended,
        route=" → ".join(space.neighborhood for space in stops),
        stops=[space.name for space in stops],
        total_minutes=total_minutes,
        total_time=(
            f"{_format_minutes(total_minutes)} ({MINUTES_PER_TOUR_STOP} min per space "
            f"+ {MINUTES_BETWEEN_NEIGHBORHOODS} min between neighborhoods)"
        ),
    )


def analyze_email_draft(body: str, context: StructuredContext) -> Reasoning:
    """Derive the reviewer-facing reasoning for a generated draft."""
    lower_body = body.lower()
    body_words = _keywords(body)
    inbound = context.inbound_email

    # Questions from the inbound email, split by whether the draft touches them
    questions_addressed: list[QuestionAddressed] = []
    needs_human_review: list[str] = []
    questions = extract_questions(inbound.body)
    for question in questions:
        if _keywords(question) & body_words:
            questions_addressed.append(QuestionAddressed(
                question=question,
                answer="Addressed in draft",
                source_email_id=inbound.id,
                source_text=inbound.body[:200],
            ))
        else:
            needs_human_review.append(question)

    # Source documents, one entry per document
    sources: dict[str, DataSource] = {}
    for space in context.spaces:
        if space.name.lower() not in lower_body:
            continue
        sources[f"space-{space.id}"] = DataSource(
            source_type="space",
            source_id=space.id,
            source_name=space.name,
            source_title=f"Space Listing: {space.name}",
            source_subtitle=f"CRM Record #{space.id}",
            details={
                "address": space.address,
                "monthly_rate": space.monthly_rate,
                "host_company": space.host_company,
            },
            data_points_used=_space_data_points(space, lower_body),
        )

    sources[f"email-{inbound.id}"] = DataSource(
        source_type="email",
        source_id=inbound.id,
        source_name=inbound.from_address,
        source_title=f'Email: "{inbound.subject}"',
        source_subtitle=f"From: {inbound.from_address} • {inbound.sent_at:%b %d, %Y}",
        details={
            "from": inbound.from_address,
            "to": inbound.to_address,
            "sent_at": inbound.sent_at.isoformat(),
            "subject": inbound.subject,
        },
        data_points_used=[q.lower() for q in questions] or ["inbound request"],
    )

    # Scheduling
    scheduling_logic = []
    listed_days = {day.lower() for space in context.spaces for day in space.availability}
    if any(day in lower_body for day in (listed_days or WEEKDAYS)):
        scheduling_logic.append("Used availability windows from space data")
    if _CLOCK_TIME_RE.search(body):
        scheduling_logic.append("Proposed specific tour times")

    calendar_checks = build_calendar_checks(context.spaces)

    return Reasoning(
        questions_addressed=questions_addressed,
        data_used=list(sources.values()),
        scheduling_logic=scheduling_logic or None,
        crm_lookups=build_crm_lookups(context.spaces, body),
        calendar_checks=calendar_checks,
        tour_route=build_tour_route(context.spaces, calendar_checks),
        needs_human_review=needs_human_review,
    )
