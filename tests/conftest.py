"""Shared fixtures for certguard tests."""
import os
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from certguard.config import ScoringConfig
from certguard.history import SubmissionHistory
from certguard.models import ExtractedFields, Submission
from certguard.rules import RuleContext

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

CLEAN_TEXT = (
    "CERTIFICATE OF COMPLETION\n"
    "This is to certify that the student named John Smith has successfully "
    "completed the course Computer Science at Springfield University "
    "on 15 June 2020 with grade A."
)

CLEAN_FIELDS = {
    "name": "John Smith",
    "institution": "Springfield University",
    "course": "Computer Science",
    "grade": "A",
    "issue_date": "2020-06-15",
    "certificate_id": "CERT-0001",
}


def build_submission(**overrides) -> Submission:
    fields = dict(CLEAN_FIELDS)
    fields.update(overrides.pop("fields", {}))
    data = {
        "submitter_identity": "0xstudent",
        "issuer_identity": "0xissuer",
        "claimed_name": "John Smith",
        "submitted_at": NOW,
        "extracted_text": CLEAN_TEXT,
        "extraction_confidence": 95.0,
        "extracted_fields": ExtractedFields(**fields),
    }
    data.update(overrides)
    return Submission(**data)


@pytest.fixture
def make_submission():
    return build_submission


@pytest.fixture
def config():
    return ScoringConfig()


@pytest.fixture
def history():
    return SubmissionHistory()


@pytest.fixture
def ctx(config):
    return RuleContext(config=config, history=SubmissionHistory(), now=NOW)
