from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


# Step kinds a wizard can be built from.
IDENTITY = "identity"
QUALIFICATIONS = "qualifications"
IDENTITY_QUALIFICATIONS = "identity_qualifications"
DOCUMENTS = "documents"
REVIEW = "review"


@dataclass(frozen=True)
class StepFlow:
    """Ordered wizard steps, 1-based."""

    kinds: tuple[str, ...]

    @property
    def step_count(self) -> int:
        return len(self.kinds)

    @property
    def first_step(self) -> int:
        return 1

    @property
    def terminal_step(self) -> int:
        return len(self.kinds)

    def kind_of(self, step: int) -> str:
        return self.kinds[self.clamp(step) - 1]

    def clamp(self, step: int) -> int:
        return min(max(int(step), 1), len(self.kinds))

    def step_of(self, kind: str) -> int | None:
        try:
            return self.kinds.index(kind) + 1
        except ValueError:
            return None

    def captures_identity(self, step: int) -> bool:
        return self.kind_of(step) in {IDENTITY, IDENTITY_QUALIFICATIONS}

    def captures_qualifications(self, step: int) -> bool:
        return self.kind_of(step) in {QUALIFICATIONS, IDENTITY_QUALIFICATIONS}


THREE_STEP_FLOW = StepFlow((IDENTITY_QUALIFICATIONS, DOCUMENTS, REVIEW))
FOUR_STEP_FLOW = StepFlow((IDENTITY, QUALIFICATIONS, DOCUMENTS, REVIEW))

STEP_FLOWS: dict[int, StepFlow] = {
    3: THREE_STEP_FLOW,
    4: FOUR_STEP_FLOW,
}


def flow_for_step_count(step_count: int) -> StepFlow:
    try:
        return STEP_FLOWS[int(step_count)]
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported step count: {step_count}")


# Canonical application statuses. Independent of the step index.
PENDING = "Pending"
SUBMITTED = "submitted"
SCREENING = "screening"
INTERVIEW = "interview"
HIRED = "hired"
REJECTED = "rejected"


ALL_STATUSES: tuple[str, ...] = (
    PENDING,
    SUBMITTED,
    SCREENING,
    INTERVIEW,
    HIRED,
    REJECTED,
)


TERMINAL_STATUSES: frozenset[str] = frozenset({HIRED, REJECTED})


# Admin console actions map onto plain statuses.
_ALIASES = {
    "pending": PENDING,
    "approve": INTERVIEW,
    "approved": INTERVIEW,
    "reject": REJECTED,
    "hire": HIRED,
    "submit": SUBMITTED,
}


STATUS_GRAPH: dict[str, frozenset[str]] = {
    PENDING: frozenset({SUBMITTED, REJECTED}),
    SUBMITTED: frozenset({SCREENING, INTERVIEW, REJECTED}),
    SCREENING: frozenset({INTERVIEW, REJECTED}),
    INTERVIEW: frozenset({HIRED, REJECTED}),
    HIRED: frozenset(),
    REJECTED: frozenset(),
}


def normalize_status(raw: str | None) -> str | None:
    if raw is None:
        return None
    normalized = raw.strip().lower().replace(" ", "_")
    if not normalized:
        return None
    if normalized in _ALIASES:
        return _ALIASES[normalized]
    return normalized


def is_known_status(status: str | None) -> bool:
    return normalize_status(status) in STATUS_GRAPH


def is_terminal_status(status: str | None) -> bool:
    return normalize_status(status) in TERMINAL_STATUSES


def is_submitted_or_later(status: str | None) -> bool:
    normalized = normalize_status(status)
    return normalized is not None and normalized != PENDING and normalized in STATUS_GRAPH


def allowed_next_statuses(status: str | None) -> frozenset[str]:
    normalized = normalize_status(status)
    if normalized is None:
        return frozenset()
    return STATUS_GRAPH.get(normalized, frozenset())


def can_transition(from_status: str | None, to_status: str | None) -> bool:
    to_normalized = normalize_status(to_status)
    from_normalized = normalize_status(from_status)

    if to_normalized is None or to_normalized not in STATUS_GRAPH:
        return False

    # Records without a status yet can only enter as Pending.
    if from_normalized is None:
        return to_normalized == PENDING

    if from_normalized not in STATUS_GRAPH:
        return False

    if from_normalized == to_normalized:
        return False

    return to_normalized in STATUS_GRAPH[from_normalized]


def path_is_valid(path: Iterable[str]) -> bool:
    items = [normalize_status(item) for item in path]
    if len(items) < 2:
        return False
    for index in range(len(items) - 1):
        if not can_transition(items[index], items[index + 1]):
            return False
    return True
