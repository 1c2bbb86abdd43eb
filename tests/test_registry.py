"""Tests for institution registries (in-memory and HTTP)."""

import json
from dataclasses import replace

import httpx
import pytest

from certguard.audit import DecisionEvent, DecisionLog
from certguard.errors import RegistryUnavailable
from certguard.history import SubmissionHistory
from certguard.models import InstitutionProfile, RiskLevel, Severity, VerificationStatus
from certguard.registry import InstitutionRegistry, RemoteInstitutionRegistry
from certguard.scorer import CertificateScorer

from conftest import NOW, build_submission

SPRINGFIELD = InstitutionProfile("0xissuer", "Springfield University", trust_score=0.9,
                                 authorized_courses=frozenset({"Computer Science"}))


class TestInstitutionRegistry:
    def test_register_and_lookup(self):
        registry = InstitutionRegistry()
        stored = registry.register(SPRINGFIELD)
        assert stored.registered_at is not None
        assert registry.lookup("0xissuer").declared_name == "Springfield University"
        assert "0xissuer" in registry
        assert len(registry) == 1

    def test_unknown(self):
        assert InstitutionRegistry().lookup("0xnobody") is None

    def test_trust_score_bounds(self):
        with pytest.raises(ValueError):
            InstitutionRegistry().register(InstitutionProfile("0x1", "Bad", trust_score=1.5))

    def test_revoke_keeps_profile_with_status(self):
        log = DecisionLog()
        registry = InstitutionRegistry([SPRINGFIELD], decision_log=log)
        assert registry.revoke("0xissuer") is True
        profile = registry.lookup("0xissuer")
        assert profile.verification_status == VerificationStatus.REVOKED
        assert profile.declared_name == "Springfield University"
        assert "0xissuer" in registry
        assert registry.list() == []
        assert len(registry.list(include_revoked=True)) == 1
        assert [e.event for e in log.query()] == [
            DecisionEvent.INSTITUTION_REGISTERED.value,
            DecisionEvent.INSTITUTION_REVOKED.value,
        ]

    def test_revoked_issuer_mismatch_is_critical(self):
        registry = InstitutionRegistry([SPRINGFIELD])
        registry.revoke("0xissuer")
        scorer = CertificateScorer(history=SubmissionHistory(), registry=registry)
        result = scorer.score(build_submission(fields={"institution": "Shelbyville College"}), now=NOW)
        assert result.risk_level == RiskLevel.CRITICAL
        assert result.count(Severity.CRITICAL) == 1
        assert result.count(Severity.HIGH) == 1

    def test_revoked_issuer_gets_no_bonus(self):
        registry = InstitutionRegistry([replace(SPRINGFIELD, trust_score=0.95)])
        registry.revoke("0xissuer")
        scorer = CertificateScorer(history=SubmissionHistory(), registry=registry)
        result = scorer.score(build_submission(extraction_confidence=80), now=NOW)
        # 1 - 0.2 with no OCR or institution bonus
        assert result.trust_index == pytest.approx(0.8)

    def test_revoke_unknown(self):
        assert InstitutionRegistry().revoke("0xnobody") is False

    def test_load_json(self, tmp_path):
        path = tmp_path / "registry.json"
        path.write_text(json.dumps({"institutions": [
            {"issuer_identity": "0xa", "declared_name": "A College", "trust_score": 0.5},
            {"issuer_identity": "0xb", "declared_name": "B Institute",
             "verification_status": "REVOKED"},
        ]}))
        registry = InstitutionRegistry.load_json(str(path))
        assert registry.lookup("0xa").trust_score == 0.5
        assert registry.lookup("0xb").verification_status == VerificationStatus.REVOKED
        assert [p.issuer_identity for p in registry.list()] == ["0xa"]

    def test_export_json(self):
        registry = InstitutionRegistry([SPRINGFIELD])
        data = json.loads(registry.export_json())
        assert data[0]["declared_name"] == "Springfield University"
        assert data[0]["authorized_courses"] == ["Computer Science"]
        restored = InstitutionProfile.from_dict(data[0])
        assert restored.authorized_courses == SPRINGFIELD.authorized_courses


def _remote(handler):
    return RemoteInstitutionRegistry("http://registry.test", transport=httpx.MockTransport(handler))


class TestRemoteInstitutionRegistry:
    def test_found(self):
        def handler(request):
            assert request.url.path == "/institutions/0xissuer"
            return httpx.Response(200, json={"declared_name": "Springfield University",
                                             "trust_score": 0.95})

        with _remote(handler) as registry:
            profile = registry.lookup("0xissuer")
        assert profile.issuer_identity == "0xissuer"
        assert profile.trust_score == 0.95

    def test_not_found(self):
        registry = _remote(lambda request: httpx.Response(404))
        assert registry.lookup("0xissuer") is None

    def test_revoked_returned_with_status(self):
        registry = _remote(lambda request: httpx.Response(200, json={
            "declared_name": "X", "verification_status": "REVOKED"}))
        assert registry.lookup("0xissuer").verification_status == VerificationStatus.REVOKED

    def test_server_error(self):
        registry = _remote(lambda request: httpx.Response(503))
        with pytest.raises(RegistryUnavailable, match="503"):
            registry.lookup("0xissuer")

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RegistryUnavailable) as exc:
            _remote(handler).lookup("0xissuer")
        assert exc.value.issuer == "0xissuer"

    def test_malformed_body(self):
        registry = _remote(lambda request: httpx.Response(200, content=b"not json"))
        with pytest.raises(RegistryUnavailable, match="malformed"):
            registry.lookup("0xissuer")

    def test_scorer_fails_open_on_outage(self):
        registry = _remote(lambda request: httpx.Response(500))
        scorer = CertificateScorer(history=SubmissionHistory(), registry=registry)
        result = scorer.score(build_submission(fields={"institution": "Shelbyville College"}), now=NOW)
        assert result.findings == ()

    def test_scorer_uses_remote_profile(self):
        registry = _remote(lambda request: httpx.Response(200, json={
            "declared_name": "Springfield University", "trust_score": 0.9}))
        scorer = CertificateScorer(history=SubmissionHistory(), registry=registry)
        result = scorer.score(build_submission(fields={"institution": "Shelbyville College"}), now=NOW)
        assert [f.rule for f in result.findings] == ["institution_consistency"]
