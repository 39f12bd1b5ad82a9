import pytest

from jobportal.core.errors import ValidationError
from jobportal.core.uploads import (
    FILE_201,
    GENERIC_DOCUMENT,
    ID_PICTURE,
    MB,
    RESUME,
    normalize_document_type,
    sanitize_filename,
    slot_policy,
    validate_file,
)


def test_document_type_normalization():
    assert normalize_document_type("  Resume ") == RESUME
    assert normalize_document_type("2x2 id picture") == ID_PICTURE
    assert normalize_document_type("201") == FILE_201
    assert normalize_document_type(None) == GENERIC_DOCUMENT
    assert normalize_document_type("NBI  CLEARANCE") == "NBI CLEARANCE"


def test_job_requirement_types_get_single_pdf_slots():
    policy = slot_policy("NBI CLEARANCE")
    assert policy.single
    assert not policy.applicant_scoped
    assert policy.max_bytes == 10 * MB
    assert policy.allowed_extensions == frozenset({".pdf"})


def test_generic_documents_allow_many_files():
    assert not slot_policy(GENERIC_DOCUMENT).single


def test_id_picture_goes_to_its_own_bucket():
    policy = slot_policy(ID_PICTURE)
    assert policy.bucket == "id-pictures"
    assert policy.max_bytes == 5 * MB


def test_sanitize_filename_strips_paths_and_symbols():
    assert sanitize_filename("../../etc/passwd") == "etc_passwd"
    assert sanitize_filename("My CV (final).pdf") == "My_CV_final_.pdf"
    assert sanitize_filename("   ") == "file"
    long_name = "a" * 300 + ".pdf"
    cleaned = sanitize_filename(long_name)
    assert len(cleaned) == 150
    assert cleaned.endswith(".pdf")


def test_validate_accepts_resume_word_document():
    name, content_type = validate_file(
        slot_policy(RESUME),
        filename="cv.docx",
        content_type="application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        size=2048,
    )
    assert name == "cv.docx"
    assert content_type.endswith("wordprocessingml.document")


def test_validate_rejects_oversized_file():
    with pytest.raises(ValidationError, match="exceeds the 10MB limit"):
        validate_file(slot_policy(RESUME), filename="cv.pdf", content_type="application/pdf", size=10 * MB + 1)


def test_validate_rejects_wrong_extension():
    with pytest.raises(ValidationError, match="unsupported file type"):
        validate_file(slot_policy(FILE_201), filename="file.docx", content_type="application/pdf", size=10)


def test_validate_rejects_wrong_content_type():
    with pytest.raises(ValidationError, match="unsupported content type"):
        validate_file(slot_policy(ID_PICTURE), filename="me.png", content_type="application/pdf", size=10)


def test_validate_rejects_empty_file():
    with pytest.raises(ValidationError, match="is empty"):
        validate_file(slot_policy(RESUME), filename="cv.pdf", content_type="application/pdf", size=0)


def test_octet_stream_falls_back_to_extension():
    _, content_type = validate_file(
        slot_policy(RESUME), filename="cv.pdf", content_type="application/octet-stream", size=10
    )
    assert content_type == "application/octet-stream"
