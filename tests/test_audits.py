"""Tests for audit cases and the evidence they expose."""
import pytest

from railcert.errors import EntityNotFoundError, ValidationError
from railcert.models.evidence import EntityType, EventType, EvidenceNode
from railcert.services.audits import create_audit_case, get_audit_evidence, link_evidence_to_audit


class TestAuditCases:
    def test_create_records_evidence(self, db_session, clock):
        case = create_audit_case(db_session, "FRA inspection 2024", "auditor_1", clock=clock)

        node = db_session.query(EvidenceNode).one()
        assert node.entity_type == EntityType.AUDIT_CASE
        assert node.entity_id == str(case.id)
        assert node.ledger_entries[0].event_type == EventType.AUDIT_CASE_CREATED

    def test_audit_sees_only_linked_evidence(self, db_session, make_certification, clock):
        first = make_certification("LOTO")
        make_certification("Hot Work")
        case = create_audit_case(db_session, "LOTO review", "auditor_1", clock=clock)
        node = (
            db_session.query(EvidenceNode)
            .filter(EvidenceNode.entity_type == EntityType.CERTIFICATION, EvidenceNode.entity_id == str(first.id))
            .one()
        )

        link_evidence_to_audit(db_session, case.id, node.id, "auditor_1", clock=clock)

        assert [n.id for n in get_audit_evidence(db_session, case.id)] == [node.id]

    def test_duplicate_link_refused(self, db_session, make_certification, clock):
        make_certification()
        case = create_audit_case(db_session, "Review", "auditor_1", clock=clock)
        node = db_session.query(EvidenceNode).first()
        link_evidence_to_audit(db_session, case.id, node.id, "auditor_1", clock=clock)

        with pytest.raises(ValidationError):
            link_evidence_to_audit(db_session, case.id, node.id, "auditor_2", clock=clock)

    def test_link_unknown_node(self, db_session, clock):
        case = create_audit_case(db_session, "Review", "auditor_1", clock=clock)
        with pytest.raises(EntityNotFoundError):
            link_evidence_to_audit(db_session, case.id, 9999, "auditor_1", clock=clock)

    def test_unknown_case(self, db_session):
        with pytest.raises(EntityNotFoundError):
            get_audit_evidence(db_session, 404)
