from dataclasses import dataclass
from typing import Optional

from jobportal.services.compliance import (
    ApplicantProfile,
    RequiredDocument,
    compliance_score,
    documents_in_scope,
    parse_required_documents,
)

REQUIRED_DOCUMENTS = [
    {"document_type": "NBI CLEARANCE", "percentage": 60},
    {"document_type": "BIO-DATA", "percentage": 40},
]
REQUIRED_CREDENTIALS = ["nbi_clearance"]


@dataclass
class Doc:
    file_type: str
    application_id: Optional[int] = None


def test_full_match_scores_100():
    score = compliance_score(["NBI CLEARANCE", "BIO-DATA"], ["nbi_clearance"], REQUIRED_DOCUMENTS, REQUIRED_CREDENTIALS)
    assert score == 100


def test_document_types_match_exactly():
    assert compliance_score(["nbi clearance", "BIO-DATA"], [], REQUIRED_DOCUMENTS, []) == 40


def test_partial_match_uses_document_weight_only():
    # Documents total 100, so the credential side carries no weight.
    score = compliance_score(["BIO-DATA"], [], REQUIRED_DOCUMENTS, REQUIRED_CREDENTIALS)
    assert score == 40


def test_document_weights_under_100_blend_with_credentials():
    required = [{"document_type": "NBI CLEARANCE", "percentage": 30}, {"document_type": "BIO-DATA", "percentage": 20}]
    # documents 30/50 -> 60% at weight 0.5, credentials 1/2 -> 50% at weight 0.5
    score = compliance_score(["NBI CLEARANCE"], ["nbi_clearance"], required, ["nbi_clearance", "drug_test"])
    assert score == 55


def test_document_weights_over_100_are_capped():
    required = [{"document_type": "NBI CLEARANCE", "percentage": 150}, {"document_type": "BIO-DATA", "percentage": 50}]
    score = compliance_score(["BIO-DATA"], ["nbi_clearance"], required, ["nbi_clearance"])
    assert score == 25


def test_single_side_requirements_use_raw_percentage():
    assert compliance_score([], ["a", "b"], [], ["a", "b", "c", "d"]) == 50
    assert compliance_score(["NBI CLEARANCE"], [], REQUIRED_DOCUMENTS, []) == 60


def test_rounds_half_up():
    assert compliance_score([], ["a"], [], ["a", "b", "c", "d", "e", "f", "g", "h"]) == 13


def test_no_requirements_uses_profile_completeness():
    profile = ApplicantProfile(has_name=True, has_email=True)
    score = compliance_score(["resume"], [], [], [], profile=profile)
    assert score >= 60
    assert compliance_score([], [], [], []) == 0


def test_complete_profile_scores_100_without_requirements():
    profile = ApplicantProfile(has_name=True, has_email=True, has_phone=True, has_address=True)
    assert compliance_score(["resume"], ["security_license"], [], [], profile=profile) == 100


def test_scoring_does_not_mutate_inputs():
    documents = ["BIO-DATA"]
    credentials = ["nbi_clearance"]
    required = [dict(item) for item in REQUIRED_DOCUMENTS]
    compliance_score(documents, credentials, required, REQUIRED_CREDENTIALS)
    assert documents == ["BIO-DATA"]
    assert credentials == ["nbi_clearance"]
    assert required == REQUIRED_DOCUMENTS


def test_parse_required_documents_skips_malformed_entries():
    parsed = parse_required_documents(
        [
            {"document_type": "NBI CLEARANCE", "percentage": "60"},
            {"document_type": "", "percentage": 10},
            "BIO-DATA",
            {"document_type": "DRUG TEST", "percentage": "n/a"},
        ]
    )
    assert parsed == [RequiredDocument("NBI CLEARANCE", 60.0), RequiredDocument("DRUG TEST", 0.0)]


def test_documents_in_scope_keeps_own_and_applicant_documents():
    docs = [Doc("resume"), Doc("NBI CLEARANCE", application_id=1), Doc("BIO-DATA", application_id=2)]
    scoped = documents_in_scope(docs, 1)
    assert [d.file_type for d in scoped] == ["resume", "NBI CLEARANCE"]
