"""
Tests for certification status derivation.

Status is a total function of the stored facts and the as-of instant; the
failure reason must always agree with it.
"""
from datetime import datetime, timedelta, timezone

import pytest

from railcert.clock import FixedClock
from railcert.models.enums import CertificationStatus, normalize_status
from railcert.services.status import (
    CertificationFacts,
    derive_certification_status,
    get_failure_reason,
)

PASS = CertificationStatus.PASS
FAIL = CertificationStatus.FAIL
INCOMPLETE = CertificationStatus.INCOMPLETE

ISSUED = datetime(2023, 1, 1, tzinfo=timezone.utc)
EXPIRES = datetime(2025, 1, 1, tzinfo=timezone.utc)
BEFORE = datetime(2024, 12, 31, tzinfo=timezone.utc)
AFTER = datetime(2025, 1, 2, tzinfo=timezone.utc)
REVOKED = datetime(2024, 6, 1, tzinfo=timezone.utc)


def facts(**overrides):
    values = dict(
        certificate_media_id="media_1",
        issue_date=ISSUED,
        expiration_date=EXPIRES,
        is_non_expiring=False,
        revoked_at=None,
        revoked_reason=None,
    )
    values.update(overrides)
    return CertificationFacts(**values)


class TestDerivationRules:
    """Every combination of facts maps to exactly one status."""

    @pytest.mark.parametrize(
        "overrides, as_of, expected",
        [
            ({}, BEFORE, PASS),
            ({}, EXPIRES, PASS),
            ({}, AFTER, FAIL),
            ({"certificate_media_id": None}, BEFORE, INCOMPLETE),
            ({"certificate_media_id": ""}, BEFORE, INCOMPLETE),
            ({"issue_date": None}, BEFORE, INCOMPLETE),
            ({"expiration_date": None}, BEFORE, INCOMPLETE),
            ({"expiration_date": None, "is_non_expiring": True}, AFTER, PASS),
            ({"is_non_expiring": True}, AFTER, PASS),
            ({"revoked_at": REVOKED}, BEFORE, FAIL),
            ({"revoked_at": REVOKED}, REVOKED, FAIL),
            ({"revoked_at": REVOKED}, REVOKED - timedelta(seconds=1), PASS),
            ({"revoked_at": REVOKED, "certificate_media_id": None}, BEFORE, FAIL),
            ({"revoked_at": REVOKED, "is_non_expiring": True}, AFTER, FAIL),
        ],
    )
    def test_status_grid(self, overrides, as_of, expected):
        assert derive_certification_status(facts(**overrides), as_of=as_of) == expected

    def test_expiration_instant_is_still_valid(self):
        assert derive_certification_status(facts(), as_of=EXPIRES) == PASS
        assert derive_certification_status(facts(), as_of=EXPIRES + timedelta(microseconds=1)) == FAIL

    def test_naive_as_of_treated_as_utc(self):
        assert derive_certification_status(facts(), as_of=datetime(2025, 1, 1)) == PASS

    def test_defaults_to_clock(self):
        assert derive_certification_status(facts(), clock=FixedClock(AFTER)) == FAIL
        assert derive_certification_status(facts(), clock=FixedClock(BEFORE)) == PASS


class TestFailureReasons:
    """Reasons come from the same rule that decided the status."""

    def test_pass_has_no_reason(self):
        assert get_failure_reason(facts(), as_of=BEFORE) is None

    def test_missing_proof(self):
        assert get_failure_reason(facts(certificate_media_id=None), as_of=BEFORE) == "No proof uploaded"

    def test_missing_issue_date(self):
        assert get_failure_reason(facts(issue_date=None), as_of=BEFORE) == "Missing issue date"

    def test_missing_expiration_date(self):
        assert get_failure_reason(facts(expiration_date=None), as_of=BEFORE) == "Missing expiration date"

    def test_expired(self):
        assert get_failure_reason(facts(), as_of=AFTER) == "Certification expired on 2025-01-01"

    def test_revoked_with_reason(self):
        reason = get_failure_reason(facts(revoked_at=REVOKED, revoked_reason="Failed audit"), as_of=BEFORE)
        assert reason == "Certification revoked: Failed audit"

    def test_revoked_without_reason(self):
        assert get_failure_reason(facts(revoked_at=REVOKED), as_of=BEFORE) == "Certification revoked"


class TestStatusNormalization:
    """Legacy spellings collapse onto PASS / FAIL / INCOMPLETE."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("PASS", PASS),
            ("fail", FAIL),
            ("Incomplete", INCOMPLETE),
            ("valid", PASS),
            ("expiring", PASS),
            ("expired", FAIL),
            ("REVOKED", FAIL),
            ("pending", INCOMPLETE),
            (CertificationStatus.FAIL, FAIL),
        ],
    )
    def test_known_values(self, value, expected):
        assert normalize_status(value) == expected

    def test_unknown_value_rejected(self):
        with pytest.raises(ValueError):
            normalize_status("suspended")
