from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, Iterable, Protocol, Sequence


# Profile completeness weights used when a job has no requirements configured.
COMPLETENESS_WEIGHTS = {
    "name": 20,
    "email": 15,
    "phone": 10,
    "address": 15,
    "document": 25,
    "credential": 15,
}


@dataclass(frozen=True)
class RequiredDocument:
    document_type: str
    percentage: float


@dataclass(frozen=True)
class ApplicantProfile:
    has_name: bool = False
    has_email: bool = False
    has_phone: bool = False
    has_address: bool = False

    @classmethod
    def from_applicant(cls, applicant: Any) -> "ApplicantProfile":
        def present(*names: str) -> bool:
            return any(str(getattr(applicant, name, None) or "").strip() for name in names)

        return cls(
            has_name=present("first_name", "last_name"),
            has_email=present("email"),
            has_phone=present("phone"),
            has_address=present("street_address", "barangay", "city", "province", "zip_code"),
        )


class _ScopedDocument(Protocol):
    application_id: int | None


def _to_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def parse_required_documents(raw: Iterable[Any] | None) -> list[RequiredDocument]:
    """Job JSON ({document_type, percentage}) to typed requirements. Malformed entries are skipped."""
    parsed = []
    for item in raw or []:
        if isinstance(item, RequiredDocument):
            parsed.append(item)
            continue
        if not isinstance(item, dict):
            continue
        document_type = str(item.get("document_type") or "").strip()
        if not document_type:
            continue
        parsed.append(RequiredDocument(document_type=document_type, percentage=_to_float(item.get("percentage"))))
    return parsed


def documents_in_scope(documents: Iterable[_ScopedDocument], application_id: int | None) -> list[_ScopedDocument]:
    """Documents attached to this application plus applicant-scoped ones."""
    return [doc for doc in documents if doc.application_id is None or doc.application_id == application_id]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _completeness(documents: set[str], credentials: set[str], profile: ApplicantProfile | None) -> float:
    profile = profile or ApplicantProfile()
    score = 0
    if profile.has_name:
        score += COMPLETENESS_WEIGHTS["name"]
    if profile.has_email:
        score += COMPLETENESS_WEIGHTS["email"]
    if profile.has_phone:
        score += COMPLETENESS_WEIGHTS["phone"]
    if profile.has_address:
        score += COMPLETENESS_WEIGHTS["address"]
    if documents:
        score += COMPLETENESS_WEIGHTS["document"]
    if credentials:
        score += COMPLETENESS_WEIGHTS["credential"]
    return score


def compliance_score(
    document_types: Iterable[str],
    credentials: Iterable[str],
    required_documents: Sequence[RequiredDocument | dict],
    required_credentials: Iterable[str],
    profile: ApplicantProfile | None = None,
) -> int:
    """
    Match percentage (0-100) of an applicant against a job's requirements.

    Document requirements carry weights that need not sum to 100. With both kinds
    configured, the document side is weighted min(total/100, 1) and credentials get the
    remainder; with one kind, that side's raw percentage is returned; with none, a profile
    completeness score is used instead of 0.
    """
    # Stored types are normalised at staging; matching here is exact.
    held_documents = {t for t in document_types if t}
    held_credentials = {str(c).strip() for c in credentials if c and str(c).strip()}
    requirements = parse_required_documents(required_documents)
    wanted_credentials = []
    for tag in required_credentials or []:
        cleaned = str(tag or "").strip()
        if cleaned and cleaned not in wanted_credentials:
            wanted_credentials.append(cleaned)

    document_total = sum(req.percentage for req in requirements)
    document_score = sum(req.percentage for req in requirements if req.document_type in held_documents)
    credential_total = len(wanted_credentials)
    credential_score = sum(1 for tag in wanted_credentials if tag in held_credentials)

    if document_total > 0 and credential_total > 0:
        document_match = document_score / document_total * 100
        credential_match = credential_score / credential_total * 100
        document_weight = min(document_total / 100, 1)
        credential_weight = max(0.0, 1 - document_weight)
        match = document_match * document_weight + credential_match * credential_weight
    elif document_total > 0:
        match = document_score / document_total * 100
    elif credential_total > 0:
        match = credential_score / credential_total * 100
    else:
        match = _completeness(held_documents, held_credentials, profile)

    return _round_half_up(min(100.0, max(0.0, match)))
