from __future__ import annotations

import logging
import math
import re
from bisect import insort
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Sequence

from app.schemas.timetable import (
    SessionType,
    TimetableRequest,
    TimetableResponse,
    TimetableSession,
)
from app.services.errors import InvalidTimetableRequest, UnknownSubjectError

logger = logging.getLogger(__name__)

# Windows are minutes since midnight, end exclusive
BLOCK_PRESETS = {
    "morning": (6 * 60, 12 * 60),
    "afternoon": (12 * 60, 18 * 60),
    "evening": (18 * 60, 24 * 60),
}
DEFAULT_BLOCKS = ("Morning", "Afternoon")

SESSION_CATALOG: tuple[tuple[SessionType, int], ...] = (
    ("deep_focus", 90),
    ("review", 60),
    ("deep_focus", 90),
    ("quick_recap", 30),
)

SESSION_TITLES = {
    "deep_focus": "Deep Focus",
    "review": "Review",
    "quick_recap": "Quick Recap",
}

GRANULARITY_MINUTES = 30
MIN_SESSION_MINUTES = 15
_EPSILON = 1e-6

_BLOCK_LABEL = re.compile(
    r"^\s*(?P<name>[A-Za-z][\w ]*?)\s*"
    r"(?:\(\s*(?P<start>\d{1,2}(?::\d{2})?)\s*-\s*(?P<end>\d{1,2}(?::\d{2})?)\s*\))?\s*$"
)


@dataclass(frozen=True)
class SubjectSnapshot:
    id: str
    name: str
    color: str
    outstanding_minutes: float = 0.0


@dataclass(frozen=True)
class TimeBlock:
    name: str
    start_minute: int
    end_minute: int

    @property
    def length(self) -> int:
        return self.end_minute - self.start_minute


@dataclass
class PlannedSession:
    subject: SubjectSnapshot
    session_type: SessionType
    duration_minutes: int
    day_index: int | None = None
    block: TimeBlock | None = None
    start_minute: int | None = None


def _parse_clock(value: str) -> int | None:
    """Parse "6" or "06:30" into minutes since midnight."""
    hours, _, minutes = value.partition(":")
    if minutes and int(minutes) >= 60:
        return None
    total = int(hours) * 60 + int(minutes or 0)
    if total > 24 * 60:
        return None
    return total


def parse_time_block(label: str) -> TimeBlock | None:
    """Parse a block label such as "Morning" or "Morning (6-12)".

    The leading word selects a preset window; a parenthesized hour range
    overrides it, which also allows custom blocks like "Night (21-23)".
    Returns None for labels that describe no usable window.
    """
    match = _BLOCK_LABEL.match(label or "")
    if not match:
        return None

    name = match.group("name").strip()
    window = BLOCK_PRESETS.get(name.lower())
    if window:
        name = name.capitalize()

    if match.group("start") is not None:
        start = _parse_clock(match.group("start"))
        end = _parse_clock(match.group("end"))
        if start is not None and end is not None and start < end:
            window = (start, end)

    if window is None:
        return None
    return TimeBlock(name=name, start_minute=window[0], end_minute=window[1])


def resolve_blocks(labels: Iterable[str] | None) -> list[TimeBlock]:
    """Turn preferred block labels into ordered, de-duplicated TimeBlocks.

    Unrecognized labels are ignored. Falls back to Morning + Afternoon when
    nothing usable remains.
    """
    blocks: list[TimeBlock] = []
    seen: set[str] = set()
    for label in labels or []:
        block = parse_time_block(label)
        if block is None:
            logger.debug("Ignoring unrecognized time block %r", label)
            continue
        key = block.name.lower()
        if key in seen:
            continue
        seen.add(key)
        blocks.append(block)

    if blocks:
        return blocks
    return [parse_time_block(name) for name in DEFAULT_BLOCKS]


def _covered_minutes(blocks: Sequence[TimeBlock]) -> int:
    """Length of the union of block windows (custom blocks may overlap)."""
    total = 0
    current_start = current_end = None
    for block in sorted(blocks, key=lambda b: (b.start_minute, b.end_minute)):
        if current_end is None or block.start_minute > current_end:
            if current_end is not None:
                total += current_end - current_start
            current_start, current_end = block.start_minute, block.end_minute
        else:
            current_end = max(current_end, block.end_minute)
    if current_end is not None:
        total += current_end - current_start
    return total


def daily_capacity(hours_per_day: float, blocks: Sequence[TimeBlock]) -> int:
    """Minutes a single day can host: the budget, bounded by the block windows."""
    # Clamp before converting: huge budgets overflow to inf
    budget = min(hours_per_day * 60 + _EPSILON, _covered_minutes(blocks))
    return max(0, int(math.floor(budget)))


def parse_exam_date(value: str | date | None) -> date | None:
    if value is None or isinstance(value, date):
        return value
    if not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise InvalidTimetableRequest(
            f"exam_date must be an ISO date (YYYY-MM-DD), got {value!r}"
        ) from exc


def effective_horizon(days_count: int, exam_date: date | None, today: date) -> int:
    """Number of plannable days starting today, never running past the exam."""
    if exam_date is None:
        return days_count
    return max(0, min(days_count, (exam_date - today).days))


def validate_request(request: TimetableRequest) -> date | None:
    """Reject malformed constraints and return the parsed exam date."""
    if not request.subject_ids:
        raise InvalidTimetableRequest("subject_ids must contain at least one subject")
    hours = request.hours_per_day
    if not (math.isfinite(hours) and hours > 0):
        raise InvalidTimetableRequest("hours_per_day must be a positive number")
    if request.days_count <= 0:
        raise InvalidTimetableRequest("days_count must be a positive integer")
    return parse_exam_date(request.exam_date)


def select_subjects(
    subjects: Iterable[SubjectSnapshot], subject_ids: Sequence[str]
) -> list[SubjectSnapshot]:
    """Resolve requested ids against the snapshot, keeping first-seen request order."""
    by_id = {subject.id: subject for subject in subjects}
    ordered_ids = list(dict.fromkeys(subject_ids))
    missing = [subject_id for subject_id in ordered_ids if subject_id not in by_id]
    if missing:
        raise UnknownSubjectError(missing)
    return [by_id[subject_id] for subject_id in ordered_ids]


def _water_fill(
    subjects: Sequence[SubjectSnapshot], owed: dict[str, float], total_available: float
) -> dict[str, float]:
    """Proportional allocation capped at each subject's owed minutes.

    Whatever saturated subjects cannot absorb is handed to the rest, again
    proportionally. At least one subject saturates per pass, so N passes
    are enough.
    """
    allocation = {subject.id: 0.0 for subject in subjects}
    active = [subject.id for subject in subjects if owed[subject.id] > 0]

    for _ in range(len(subjects)):
        remaining = total_available - sum(allocation.values())
        if remaining <= _EPSILON or not active:
            break
        weight = sum(owed[subject_id] for subject_id in active)
        changed = False
        still_active: list[str] = []
        for subject_id in active:
            share = remaining * owed[subject_id] / weight
            grant = min(share, owed[subject_id] - allocation[subject_id])
            if grant > _EPSILON:
                allocation[subject_id] += grant
                changed = True
            if owed[subject_id] - allocation[subject_id] > _EPSILON:
                still_active.append(subject_id)
        if not changed:
            break
        active = still_active

    return allocation


def distribute_minutes(
    subjects: Sequence[SubjectSnapshot],
    total_available: int,
    granularity: int = GRANULARITY_MINUTES,
) -> dict[str, int]:
    """Decide how many minutes each subject gets on the plan.

    Args:
        subjects: Subjects in tie-breaking order
        total_available: Minutes the whole horizon can host
        granularity: Allocations are rounded down to multiples of this many
            minutes; only the final leftover (at least 15) breaks the grid

    Returns:
        Mapping of subject id to allocated minutes. The values never sum to
        more than ``total_available``.
    """
    allocation = {subject.id: 0 for subject in subjects}
    if not subjects or total_available <= 0:
        return allocation

    owed = {subject.id: max(0.0, float(subject.outstanding_minutes)) for subject in subjects}
    total_outstanding = sum(owed.values())

    if total_outstanding <= 0:
        # Nothing is owed: split evenly so a selection never yields an empty plan
        targets = {subject.id: total_available / len(subjects) for subject in subjects}
        ceilings: dict[str, int] | None = None
    else:
        targets = _water_fill(subjects, owed, total_available)
        ceilings = {
            subject_id: math.ceil(minutes / granularity - _EPSILON) * granularity
            for subject_id, minutes in owed.items()
        }

    for subject_id, minutes in targets.items():
        allocation[subject_id] = int((minutes + _EPSILON) // granularity) * granularity
    spent = sum(allocation.values())

    # Floor guarantee: every subject that is owed time gets at least one granule,
    # or whatever capacity is left when that still makes a session
    for subject in subjects:
        if allocation[subject.id] > 0:
            continue
        if ceilings is not None and owed[subject.id] <= 0:
            continue
        grant = min(granularity, total_available - spent)
        if grant < MIN_SESSION_MINUTES:
            break
        allocation[subject.id] = grant
        spent += grant

    leftover = int(min(sum(targets.values()), total_available) - spent + _EPSILON)
    while leftover >= MIN_SESSION_MINUTES:
        amount = min(granularity, leftover)
        candidates = [
            subject
            for subject in subjects
            if ceilings is None
            or (owed[subject.id] > 0 and allocation[subject.id] + amount <= ceilings[subject.id])
        ]
        if not candidates:
            break
        recipient = max(
            candidates,
            key=lambda subject: _donation_priority(subject, owed, allocation, ceilings is None),
        )
        allocation[recipient.id] += amount
        leftover -= amount

    return allocation


def _donation_priority(
    subject: SubjectSnapshot,
    owed: dict[str, float],
    allocation: dict[str, int],
    equal_split: bool,
) -> float:
    allocated = allocation[subject.id]
    if equal_split:
        return -allocated
    if allocated == 0:
        return math.inf
    return owed[subject.id] / allocated


def _remainder_type(minutes: int) -> SessionType:
    """Type for a final short session: the largest catalog entry it can stand in for."""
    fitting = [entry for entry in SESSION_CATALOG if entry[1] <= minutes]
    if not fitting:
        return "quick_recap"
    return max(fitting, key=lambda entry: entry[1])[0]


def sequence_sessions(
    subjects: Sequence[SubjectSnapshot],
    allocation: dict[str, int],
    max_session_minutes: int,
) -> dict[str, list[PlannedSession]]:
    """Break each subject's allocation into typed sessions.

    Cycles deep_focus 90, review 60, deep_focus 90, quick_recap 30. A final
    short remainder becomes one session of exactly that length. Minutes too
    small for a session (under 15) move on to the next subject.
    Catalog entries longer than ``max_session_minutes`` are skipped.
    """
    catalog = [entry for entry in SESSION_CATALOG if entry[1] <= max_session_minutes]
    queues: dict[str, list[PlannedSession]] = {}
    carry = 0

    for subject in subjects:
        minutes = allocation.get(subject.id, 0) + carry
        carry = 0
        sessions: list[PlannedSession] = []
        queues[subject.id] = sessions
        if max_session_minutes < MIN_SESSION_MINUTES:
            continue

        position = 0
        while minutes > 0:
            if catalog:
                session_type, length = catalog[position % len(catalog)]
                position += 1
            else:
                session_type, length = "quick_recap", max_session_minutes
            if minutes < length:
                if minutes < MIN_SESSION_MINUTES:
                    carry = minutes
                    break
                session_type, length = _remainder_type(minutes), minutes
            sessions.append(PlannedSession(subject, session_type, length))
            minutes -= length

    if carry:
        logger.debug("Dropping %d minutes too short for a study session", carry)
    return queues


def _earliest_free_start(
    occupied: Sequence[tuple[int, int]], block: TimeBlock, duration: int
) -> int | None:
    """First start inside the block where ``duration`` minutes overlap nothing.

    ``occupied`` must be sorted and non-overlapping.
    """
    candidate = block.start_minute
    for start, end in occupied:
        if end <= candidate:
            continue
        if start >= candidate + duration:
            break
        candidate = end
    if candidate + duration <= block.end_minute:
        return candidate
    return None


def _place_session(
    session: PlannedSession,
    blocks: Sequence[TimeBlock],
    day_capacity: list[int],
    occupied: list[list[tuple[int, int]]],
) -> bool:
    duration = session.duration_minutes
    for day_index, remaining in enumerate(day_capacity):
        if remaining < duration:
            continue
        for block in blocks:
            start = _earliest_free_start(occupied[day_index], block, duration)
            if start is None:
                continue
            session.day_index = day_index
            session.block = block
            session.start_minute = start
            insort(occupied[day_index], (start, start + duration))
            day_capacity[day_index] -= duration
            return True
    return False


def place_sessions(
    queues: Sequence[Sequence[PlannedSession]],
    blocks: Sequence[TimeBlock],
    day_capacity: list[int],
) -> tuple[list[PlannedSession], int]:
    """Assign day, block and start time to sessions, round-robin across subjects.

    Args:
        queues: One session queue per subject, in tie-breaking order
        blocks: Preferred blocks, scanned in order within each day
        day_capacity: Remaining minutes per day; one entry per horizon day.
            Decremented in place as sessions are placed.

    Returns:
        tuple: (placed sessions in placement order, minutes that did not fit)
    """
    occupied: list[list[tuple[int, int]]] = [[] for _ in day_capacity]
    pending = [list(queue) for queue in queues]
    placed: list[PlannedSession] = []
    unplaced_minutes = 0

    while any(pending):
        for queue in pending:
            if not queue:
                continue
            session = queue.pop(0)
            if _place_session(session, blocks, day_capacity, occupied):
                placed.append(session)
            else:
                unplaced_minutes += session.duration_minutes

    return placed, unplaced_minutes


def _format_clock(minute: int) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"


def assemble_schedule(
    placed: Sequence[PlannedSession],
    subject_order: Sequence[str],
    start_date: date,
    allocated_minutes: int = 0,
    unplaced_minutes: int = 0,
) -> TimetableResponse:
    rank = {subject_id: index for index, subject_id in enumerate(subject_order)}
    ordered = sorted(
        placed,
        key=lambda s: (s.day_index, s.start_minute, rank.get(s.subject.id, len(rank))),
    )

    sessions: list[TimetableSession] = []
    for index, planned in enumerate(ordered, start=1):
        session_date = start_date + timedelta(days=planned.day_index)
        sessions.append(
            TimetableSession(
                id=f"session-{index}",
                subject_id=planned.subject.id,
                subject_name=planned.subject.name,
                subject_color=planned.subject.color,
                title=f"{SESSION_TITLES[planned.session_type]}: {planned.subject.name}",
                duration_minutes=planned.duration_minutes,
                start_time=_format_clock(planned.start_minute),
                day_index=planned.day_index,
                session_type=planned.session_type,
                block=planned.block.name,
                date=session_date,
                day=session_date.strftime("%A"),
            )
        )

    total_minutes = sum(session.duration_minutes for session in sessions)
    return TimetableResponse(
        sessions=sessions,
        total_hours=round(total_minutes / 60, 1),
        days=max((session.day_index for session in sessions), default=-1) + 1,
        subjects_covered=len({session.subject_id for session in sessions}),
        allocated_minutes=allocated_minutes,
        unplaced_minutes=unplaced_minutes,
    )


def empty_schedule() -> TimetableResponse:
    return TimetableResponse(sessions=[], total_hours=0, days=0, subjects_covered=0)


def generate_timetable(
    subjects: Iterable[SubjectSnapshot],
    request: TimetableRequest,
    reference: date | None = None,
) -> TimetableResponse:
    """Generate a study timetable for the requested subjects.

    Args:
        subjects: Snapshot of the subject store; must contain every requested id
        request: Generation constraints
        reference: The plan's first day (day_index 0). Defaults to today.

    Raises:
        InvalidTimetableRequest: Malformed constraints or unknown subject ids.
    """
    today = reference or date.today()
    exam_date = validate_request(request)
    selected = select_subjects(subjects, request.subject_ids)
    blocks = resolve_blocks(request.preferred_blocks)

    horizon = effective_horizon(request.days_count, exam_date, today)
    capacity = daily_capacity(request.hours_per_day, blocks)
    if horizon == 0 or capacity < MIN_SESSION_MINUTES:
        logger.info(
            "No study capacity (horizon=%d days, daily capacity=%d min); returning empty timetable",
            horizon,
            capacity,
        )
        return empty_schedule()

    allocation = distribute_minutes(selected, capacity * horizon)
    max_session = min(capacity, max(block.length for block in blocks))
    queues = sequence_sessions(selected, allocation, max_session)

    day_capacity = [capacity] * horizon
    placed, unplaced = place_sessions(
        [queues[subject.id] for subject in selected], blocks, day_capacity
    )
    if unplaced:
        logger.info("%d allocated minutes did not fit the %d-day horizon", unplaced, horizon)

    schedule = assemble_schedule(
        placed,
        [subject.id for subject in selected],
        today,
        allocated_minutes=sum(allocation.values()),
        unplaced_minutes=unplaced,
    )
    logger.debug(
        "Generated %d sessions over %d days for %d/%d subjects (%.1f h)",
        len(schedule.sessions),
        schedule.days,
        schedule.subjects_covered,
        len(selected),
        schedule.total_hours,
    )
    return schedule
