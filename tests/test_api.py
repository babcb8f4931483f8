"""Tests for the HTTP API."""
from datetime import timedelta


def _onboard(client, categories=None):
    response = client.post("/api/employees", json={
        "first_name": "Lee",
        "last_name": "Park",
        "created_by_user_id": "admin_1",
        "categories": categories or [],
    })
    assert response.status_code == 201
    return response.json()


def _create_cert(client, employee_id, cert_type="Track Safety Training", **extra):
    body = {
        "employee_id": employee_id,
        "certification_type": cert_type,
        "created_by_user_id": "admin_1",
        "certificate_media_id": "media_1",
        "issue_date": "2024-01-01T00:00:00Z",
        "expiration_date": "2025-01-01T00:00:00Z",
    }
    body.update(extra)
    response = client.post("/api/certifications", json=body)
    assert response.status_code == 201
    return response.json()


class TestEmployeeEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_onboard_and_list(self, client):
        employee = _onboard(client)

        response = client.get(f"/api/employees/{employee['id']}/certifications")
        assert response.status_code == 200
        certs = response.json()
        assert len(certs) == 9
        assert {c["status"] for c in certs} == {"INCOMPLETE"}

    def test_unknown_employee_is_404(self, client):
        response = client.get("/api/employees/404")
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "EntityNotFoundError"

    def test_summary(self, client):
        employee = _onboard(client)
        _create_cert(client, employee["id"])

        response = client.get(f"/api/employees/{employee['id']}/certifications/summary")
        assert response.status_code == 200
        summary = response.json()
        assert summary["total_certifications"] == 10
        assert summary["pass_count"] == 1


class TestCertificationEndpoints:
    def test_status_as_of(self, client):
        employee = _onboard(client)
        cert = _create_cert(client, employee["id"])

        response = client.get(
            f"/api/certifications/{cert['id']}/status", params={"as_of": "2025-01-02T00:00:00Z"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "FAIL"
        assert body["failure_reason"] == "Certification expired on 2025-01-01"

    def test_revoke(self, client):
        employee = _onboard(client)
        cert = _create_cert(client, employee["id"])

        response = client.post(f"/api/certifications/{cert['id']}/revoke", json={
            "revoked_by_user_id": "admin_1",
            "reason": "Forged",
        })
        assert response.status_code == 200
        assert response.json()["status"] == "FAIL"

    def test_correction_and_conflict(self, client):
        employee = _onboard(client)
        cert = _create_cert(client, employee["id"])
        body = {
            "corrected_by_user_id": "admin_2",
            "correction_reason": "Wrong date",
            "new_data": {"expiration_date": "2026-01-01T00:00:00Z"},
        }

        response = client.post(f"/api/certifications/{cert['id']}/correct", json=body)
        assert response.status_code == 201
        corrected = response.json()["corrected"]
        assert corrected["correction_of_id"] == cert["id"]
        assert response.json()["original"]["expiration_date"].startswith("2025-01-01")

        # Correcting the superseded version again
        response = client.post(f"/api/certifications/{cert['id']}/correct", json=body)
        assert response.status_code == 409

        chain = client.get(f"/api/certifications/{corrected['id']}/chain").json()
        assert [c["id"] for c in chain] == [cert["id"], corrected["id"]]

    def test_expire_before_expiration_is_400(self, client):
        employee = _onboard(client)
        cert = _create_cert(client, employee["id"])

        response = client.post(f"/api/certifications/{cert['id']}/expire")
        assert response.status_code == 400

    def test_expiring_report(self, client, clock):
        employee = _onboard(client)
        soon = _create_cert(
            client, employee["id"], "LOTO",
            expiration_date=(clock.now() + timedelta(days=3)).isoformat(),
        )

        response = client.get("/api/certifications/expiring", params={"days": 30})
        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == [soon["id"]]


class TestEnforcementEndpoints:
    def test_gate_refusal_is_403(self, client):
        employee = _onboard(client)
        _create_cert(client, employee["id"], "RWIC Qualification")

        response = client.post(f"/api/employees/{employee['id']}/certification-check", json={
            "required_cert_types": ["RWIC Qualification", "eRailSafe"],
            "triggered_by": "dispatcher_1",
            "gate": "work_window_block",
            "target_id": "window_12",
        })

        assert response.status_code == 403
        detail = response.json()["detail"]
        assert detail["missing"] == ["eRailSafe"]
        assert detail["blocked"] == []

        actions = client.get("/api/enforcement-actions", params={"target_id": "window_12"}).json()
        assert len(actions) == 1
        assert actions[0]["action_type"] == "work_window_block"

    def test_gate_pass(self, client):
        employee = _onboard(client)
        _create_cert(client, employee["id"], "RWIC Qualification")

        response = client.post(f"/api/employees/{employee['id']}/certification-check", json={
            "required_cert_types": ["RWIC Qualification"],
            "triggered_by": "dispatcher_1",
        })
        assert response.status_code == 200
        assert response.json()["eligible"] is True

    def test_evaluate_and_eligibility(self, client):
        employee = _onboard(client)

        response = client.post(
            f"/api/employees/{employee['id']}/enforcement/evaluate", json={"triggered_by": "user_1"}
        )
        assert response.status_code == 200
        assert all(r["is_blocked"] for r in response.json())

        eligibility = client.get(f"/api/employees/{employee['id']}/eligibility").json()
        assert eligibility["eligible"] is False
        blocked = client.get(f"/api/employees/{employee['id']}/blocked-certifications").json()
        assert len(blocked) == 9


class TestRegulatorAndAuditEndpoints:
    def test_point_in_time(self, client, clock):
        employee = _onboard(client, categories=[])
        # Onboarding presets have no proof, so the employee as a whole is not compliant
        cert = _create_cert(client, employee["id"])

        response = client.get(
            f"/api/regulator/point-in-time/{employee['id']}",
            params={"date": "2024-12-31T00:00:00Z", "regulator_id": "fra_1"},
        )
        assert response.status_code == 200
        report = response.json()
        assert report["compliant"] is False
        snapshot = next(s for s in report["certifications"] if s["certification_id"] == cert["id"])
        assert snapshot["compliant"] is True
        assert snapshot["status_label"] == "Valid - Expires 2025-01-01"

        node = client.get(f"/api/evidence/{report['access_evidence_node_id']}").json()
        assert node["actor_type"] == "regulator"
        assert node["ledger_entries"][0]["event_type"] == "regulator_point_in_time_query"

    def test_audit_case_flow(self, client):
        employee = _onboard(client)
        history = client.get(f"/api/ledger/history/Employee/{employee['id']}").json()
        assert [e["event_type"] for e in history] == ["employee_onboarded"]

        case = client.post("/api/audits", json={"title": "Onboarding review", "created_by_user_id": "auditor_1"})
        assert case.status_code == 201
        case_id = case.json()["id"]

        link = client.post(f"/api/audits/{case_id}/evidence", json={
            "evidence_node_id": history[0]["evidence_node_id"],
            "attached_by_user_id": "auditor_1",
        })
        assert link.status_code == 201

        evidence = client.get(f"/api/audits/{case_id}/evidence").json()
        assert [n["id"] for n in evidence] == [history[0]["evidence_node_id"]]

        duplicate = client.post(f"/api/audits/{case_id}/evidence", json={
            "evidence_node_id": history[0]["evidence_node_id"],
            "attached_by_user_id": "auditor_1",
        })
        assert duplicate.status_code == 400

    def test_ledger_listing(self, client):
        _onboard(client)
        entries = client.get("/api/ledger", params={"event_type": "employee_onboarded"}).json()
        assert len(entries) == 1


class TestCertificationStatusFilter:
    def test_legacy_expired_returns_failing_certifications(self, client, clock):
        employee = _onboard(client)
        expired = _create_cert(
            client, employee["id"], "LOTO",
            issue_date="2023-01-01T00:00:00Z",
            expiration_date=(clock.now() - timedelta(days=1)).isoformat(),
        )
        valid = _create_cert(client, employee["id"], "Fall Protection")

        url = f"/api/employees/{employee['id']}/certifications"
        response = client.get(url, params={"status": "expired"})
        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == [expired["id"]]
        assert response.json()[0]["status"] == "FAIL"

        response = client.get(url, params={"status": "valid"})
        assert [c["id"] for c in response.json()] == [valid["id"]]

        # Onboarding presets have no proof yet
        response = client.get(url, params={"status": "INCOMPLETE"})
        assert valid["id"] not in [c["id"] for c in response.json()]
        assert len(response.json()) >= 1

    def test_unknown_status_is_400(self, client):
        employee = _onboard(client)

        response = client.get(f"/api/employees/{employee['id']}/certifications", params={"status": "bogus"})
        assert response.status_code == 400
