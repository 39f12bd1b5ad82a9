from __future__ import annotations

from dataclasses import dataclass
import re
from pathlib import Path

from jobportal.core.errors import ValidationError

MAX_FILENAME_LENGTH = 150
OCTET_STREAM_MIME_TYPES = {"application/octet-stream", "binary/octet-stream"}
MB = 1024 * 1024

PDF_EXTENSIONS = {".pdf"}
PDF_MIME_TYPES = {"application/pdf", "application/x-pdf"}

WORD_EXTENSIONS = {".doc", ".docx"}
WORD_MIME_TYPES = {
    "application/msword",
    "application/vnd.ms-word",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

IMAGE_EXTENSIONS = {".jpeg", ".jpg", ".png", ".webp"}
IMAGE_MIME_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/pjpeg",
    "image/png",
    "image/webp",
}

# Declared document type tags with dedicated slots.
RESUME = "resume"
FILE_201 = "201 file"
ID_PICTURE = "2x2 ID picture"
GENERIC_DOCUMENT = "document"

# Requirement types admins configure on jobs.
JOB_DOCUMENT_TYPES: tuple[str, ...] = (
    "BIO-DATA",
    "PHOTOCOPY OF SECURITY LICENSE / SBR",
    "BARANGAY CLEARANCE",
    "POLICE CLEARANCE",
    "NBI CLEARANCE",
    "EMPLOYMENT CERTIFICATE",
    "DRUG TEST",
    "NEURO-PSYCHIATRIC TEST / MEDICAL EXAMINATION",
    "RE-TRAINING CERTIFICATE / GUN",
    "BIRTH CERTIFICATE",
    "EDUCATIONAL DIPLOMA'S / TRANSCRIPT OF RECORD",
    "OTHER GKE, OPENING AND CLOSING REPORT",
    "VACCINATION CARD",
)

_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class SlotPolicy:
    document_type: str
    label: str
    max_bytes: int
    allowed_extensions: frozenset[str]
    allowed_mime_types: frozenset[str]
    # Single slots keep one document per owner scope; a new upload replaces the old one.
    single: bool = True
    bucket: str = "resumes"
    # Applicant-scoped documents are reused across applications.
    applicant_scoped: bool = True


SLOT_POLICIES: dict[str, SlotPolicy] = {
    RESUME: SlotPolicy(
        document_type=RESUME,
        label="Resume",
        max_bytes=10 * MB,
        allowed_extensions=frozenset(PDF_EXTENSIONS | WORD_EXTENSIONS),
        allowed_mime_types=frozenset(PDF_MIME_TYPES | WORD_MIME_TYPES),
    ),
    FILE_201: SlotPolicy(
        document_type=FILE_201,
        label="201 file",
        max_bytes=10 * MB,
        allowed_extensions=frozenset(PDF_EXTENSIONS),
        allowed_mime_types=frozenset(PDF_MIME_TYPES),
    ),
    ID_PICTURE: SlotPolicy(
        document_type=ID_PICTURE,
        label="2x2 ID picture",
        max_bytes=5 * MB,
        allowed_extensions=frozenset(IMAGE_EXTENSIONS),
        allowed_mime_types=frozenset(IMAGE_MIME_TYPES),
        bucket="id-pictures",
    ),
    GENERIC_DOCUMENT: SlotPolicy(
        document_type=GENERIC_DOCUMENT,
        label="Document",
        max_bytes=10 * MB,
        allowed_extensions=frozenset(PDF_EXTENSIONS),
        allowed_mime_types=frozenset(PDF_MIME_TYPES),
        single=False,
    ),
}


def normalize_document_type(raw: str | None) -> str:
    cleaned = " ".join((raw or "").split())
    if not cleaned:
        return GENERIC_DOCUMENT
    lowered = cleaned.lower()
    for key in SLOT_POLICIES:
        if key.lower() == lowered:
            return key
    if lowered in {"2x2_id_picture", "id_picture", "id picture"}:
        return ID_PICTURE
    if lowered in {"201", "201_file"}:
        return FILE_201
    return cleaned


def slot_policy(document_type: str | None) -> SlotPolicy:
    """Policy for a declared type. Job requirement types are single PDF slots."""
    normalized = normalize_document_type(document_type)
    policy = SLOT_POLICIES.get(normalized)
    if policy is not None:
        return policy
    return SlotPolicy(
        document_type=normalized,
        label=normalized,
        max_bytes=10 * MB,
        allowed_extensions=frozenset(PDF_EXTENSIONS),
        allowed_mime_types=frozenset(PDF_MIME_TYPES),
        applicant_scoped=False,
    )


def sanitize_filename(raw: str | None, *, default: str = "file") -> str:
    name = (raw or "").strip() or default
    name = name.replace("/", "_").replace("\\", "_")
    name = _SAFE_NAME_RE.sub("_", name).strip("._") or default

    if len(name) > MAX_FILENAME_LENGTH:
        base, ext = _split_name_ext(name)
        keep = max(1, MAX_FILENAME_LENGTH - len(ext))
        name = f"{base[:keep]}{ext}"
    return name


def normalize_content_type(raw: str | None) -> str:
    content_type = (raw or "").strip().lower()
    if ";" in content_type:
        content_type = content_type.split(";", 1)[0].strip()
    return content_type


def validate_file(
    policy: SlotPolicy,
    *,
    filename: str | None,
    content_type: str | None,
    size: int,
) -> tuple[str, str]:
    """
    Checks a file against a slot policy. Returns (sanitized filename, content type).
    """
    if not (filename or "").strip():
        raise ValidationError(f"{policy.label}: a file name is required.")
    if size <= 0:
        raise ValidationError(f"{policy.label}: '{filename}' is empty.")
    if size > policy.max_bytes:
        limit_mb = policy.max_bytes // MB
        raise ValidationError(f"{policy.label}: '{filename}' exceeds the {limit_mb}MB limit.")

    safe_name = sanitize_filename(filename)
    ext = Path(safe_name).suffix.lower()
    if ext and ext not in policy.allowed_extensions:
        allowed = ", ".join(sorted(e.lstrip(".").upper() for e in policy.allowed_extensions))
        raise ValidationError(f"{policy.label}: unsupported file type '{ext}'. Allowed: {allowed}.")

    normalized_type = normalize_content_type(content_type)
    if normalized_type in OCTET_STREAM_MIME_TYPES or not normalized_type:
        if not ext:
            raise ValidationError(f"{policy.label}: could not determine the type of '{filename}'.")
        return safe_name, normalized_type or "application/octet-stream"
    if normalized_type not in policy.allowed_mime_types:
        raise ValidationError(f"{policy.label}: unsupported content type '{normalized_type}'.")
    return safe_name, normalized_type


def _split_name_ext(name: str) -> tuple[str, str]:
    ext = Path(name).suffix
    if ext:
        return name[: -len(ext)], ext
    return name, ""
