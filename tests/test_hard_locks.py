"""
Tests that evidence nodes and ledger entries cannot be changed or removed.

Each path a caller could take (ORM attribute change, ORM delete, bulk
statement, raw SQL) must be refused and leave the stored row intact.
"""
import pytest
from sqlalchemy import delete, text, update

from railcert.errors import IntegrityViolation
from railcert.models.enums import ActorType
from railcert.models.evidence import EvidenceNode, ImmutableLedgerEntry
from railcert.services.evidence import append_ledger_entry, write_evidence_node


@pytest.fixture
def entry(db_session, clock):
    node = write_evidence_node(db_session, "Certification", 1, ActorType.USER, "user_1", clock=clock)
    return append_ledger_entry(db_session, node.id, "certification_created", {"type": "LOTO"}, clock=clock)


def _reload_entry(db_session, entry_id):
    db_session.rollback()
    db_session.expire_all()
    return db_session.get(ImmutableLedgerEntry, entry_id)


class TestLedgerImmutability:
    """Ledger entries are never edited or deleted."""

    def test_orm_update_rejected(self, db_session, entry):
        entry.event_type = "tampered"

        with pytest.raises(IntegrityViolation):
            db_session.flush()

        assert _reload_entry(db_session, entry.id).event_type == "certification_created"

    def test_payload_update_rejected(self, db_session, entry):
        entry.payload = {"type": "forged"}

        with pytest.raises(IntegrityViolation):
            db_session.commit()

        assert _reload_entry(db_session, entry.id).payload == {"type": "LOTO"}

    def test_orm_delete_rejected(self, db_session, entry):
        db_session.delete(entry)

        with pytest.raises(IntegrityViolation):
            db_session.flush()

        assert _reload_entry(db_session, entry.id) is not None

    def test_bulk_update_rejected(self, db_session, entry):
        with pytest.raises(IntegrityViolation):
            db_session.execute(update(ImmutableLedgerEntry).values(event_type="tampered"))

        assert _reload_entry(db_session, entry.id).event_type == "certification_created"

    def test_bulk_delete_rejected(self, db_session, entry):
        with pytest.raises(IntegrityViolation):
            db_session.query(ImmutableLedgerEntry).delete()

        db_session.rollback()
        assert db_session.query(ImmutableLedgerEntry).count() == 1

    def test_raw_sql_update_rejected(self, db_session, entry):
        with pytest.raises(IntegrityViolation):
            db_session.execute(text("UPDATE ledger_entries SET event_type = 'tampered'"))

        assert _reload_entry(db_session, entry.id).event_type == "certification_created"

    def test_raw_sql_delete_on_connection_rejected(self, db_session, entry):
        engine = db_session.get_bind()
        db_session.commit()

        with engine.connect() as conn:
            with pytest.raises(IntegrityViolation):
                conn.execute(text("DELETE FROM ledger_entries"))
            conn.rollback()

        assert db_session.query(ImmutableLedgerEntry).count() == 1


class TestEvidenceNodeImmutability:
    """Evidence nodes are never edited or deleted, apart from archival."""

    def test_actor_change_rejected(self, db_session, entry):
        node = db_session.get(EvidenceNode, entry.evidence_node_id)
        node.actor_id = "someone_else"

        with pytest.raises(IntegrityViolation):
            db_session.flush()

        db_session.rollback()
        assert db_session.get(EvidenceNode, entry.evidence_node_id).actor_id == "user_1"

    def test_delete_rejected(self, db_session, entry):
        with pytest.raises(IntegrityViolation):
            db_session.execute(delete(EvidenceNode))

        db_session.rollback()
        assert db_session.query(EvidenceNode).count() == 1

    def test_archival_allowed(self, db_session, entry, clock):
        node = db_session.get(EvidenceNode, entry.evidence_node_id)
        node.archived = True
        node.archived_at = clock.now()
        db_session.commit()

        db_session.expire_all()
        node = db_session.get(EvidenceNode, entry.evidence_node_id)
        assert node.archived is True
        assert node.archived_at == clock.now()

    def test_archival_cannot_be_combined_with_other_changes(self, db_session, entry):
        node = db_session.get(EvidenceNode, entry.evidence_node_id)
        node.archived = True
        node.entity_id = "2"

        with pytest.raises(IntegrityViolation):
            db_session.flush()

        db_session.rollback()
        assert db_session.get(EvidenceNode, entry.evidence_node_id).archived is False

    def test_unarchive_rejected(self, db_session, entry, clock):
        node = db_session.get(EvidenceNode, entry.evidence_node_id)
        node.archived = True
        node.archived_at = clock.now()
        db_session.commit()

        node.archived = False
        with pytest.raises(IntegrityViolation):
            db_session.flush()

        db_session.rollback()
        assert db_session.get(EvidenceNode, entry.evidence_node_id).archived is True


DISGUISED_LEDGER_WRITES = [
    "/* cleanup */ DELETE FROM ledger_entries",
    "-- nightly purge\nDELETE FROM ledger_entries",
    "DELETE /* keep */ FROM ledger_entries",
    "WITH doomed AS (SELECT id FROM ledger_entries) DELETE FROM ledger_entries WHERE id IN (SELECT id FROM doomed)",
    "WITH x AS (SELECT 1) UPDATE ledger_entries SET event_type = 'tampered'",
    "UPDATE \"ledger_entries\" SET event_type = 'tampered'",
    "TRUNCATE TABLE ledger_entries",
    "TRUNCATE ledger_entries, evidence_nodes",
    "REPLACE INTO ledger_entries (id, event_type) VALUES (1, 'tampered')",
    "INSERT OR REPLACE INTO ledger_entries (id, event_type) VALUES (1, 'tampered')",
    "INSERT INTO ledger_entries (id, event_type) VALUES (1, 'x') "
    "ON CONFLICT (id) DO UPDATE SET event_type = 'tampered'",
]


class TestRawStatementLocks:
    """Raw SQL is matched after comments are removed, wherever the write sits in the statement."""

    @pytest.mark.parametrize("statement", DISGUISED_LEDGER_WRITES)
    def test_disguised_write_rejected(self, db_session, entry, statement):
        with pytest.raises(IntegrityViolation):
            db_session.execute(text(statement))

        reloaded = _reload_entry(db_session, entry.id)
        assert reloaded is not None
        assert reloaded.event_type == "certification_created"

    def test_raw_unarchive_rejected(self, db_session, entry, clock):
        node = db_session.get(EvidenceNode, entry.evidence_node_id)
        node.archived = True
        node.archived_at = clock.now()
        db_session.commit()

        with pytest.raises(IntegrityViolation):
            db_session.execute(text("UPDATE evidence_nodes SET archived = 0, archived_at = NULL"))

        db_session.rollback()
        db_session.expire_all()
        assert db_session.get(EvidenceNode, entry.evidence_node_id).archived is True

    def test_raw_archive_without_timestamp_rejected(self, db_session, entry):
        with pytest.raises(IntegrityViolation):
            db_session.execute(text("UPDATE evidence_nodes SET archived = 1, archived_at = NULL"))

        db_session.rollback()
        assert db_session.get(EvidenceNode, entry.evidence_node_id).archived is False

    def test_raw_archive_with_false_bound_flag_rejected(self, db_session, entry):
        with pytest.raises(IntegrityViolation):
            db_session.execute(
                text("UPDATE evidence_nodes SET archived = :flag, archived_at = :ts"),
                {"flag": False, "ts": "2024-01-01 00:00:00.000000"},
            )

    def test_raw_archive_with_extra_column_rejected(self, db_session, entry):
        with pytest.raises(IntegrityViolation):
            db_session.execute(
                text("UPDATE evidence_nodes SET archived = 1, archived_at = :ts, actor_id = 'x'"),
                {"ts": "2024-01-01 00:00:00.000000"},
            )

    def test_raw_archive_allowed(self, db_session, entry):
        db_session.execute(
            text("UPDATE evidence_nodes SET archived = 1, archived_at = :ts WHERE id = :id"),
            {"ts": "2024-01-01 00:00:00.000000", "id": entry.evidence_node_id},
        )
        db_session.commit()

        db_session.expire_all()
        node = db_session.get(EvidenceNode, entry.evidence_node_id)
        assert node.archived is True
        assert node.archived_at is not None
