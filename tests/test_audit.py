"""
Test suite for audit module

Tests hash-chained audit trail, tamper detection, integrity verification,
and rollback behaviour of the chain head.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from nova_banking.storage import InMemoryStorage
from nova_banking.audit import AuditTrail, AuditEvent, AuditEventType


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def _event(self, **overrides):
        now = datetime.now(timezone.utc)
        fields = dict(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            sequence=1,
            event_type=AuditEventType.ACCOUNT_OPENED,
            entity_type="account",
            entity_id="ACC001",
            previous_hash="",
            current_hash="",
            user_id="USER001",
            metadata={"account_type": "savings"}
        )
        fields.update(overrides)
        return AuditEvent(**fields)

    def test_metadata_serialization(self):
        """Decimal and enum metadata values are stored in JSON form"""
        event = self._event(metadata={
            "amount": Decimal("1234.56"),
            "event": AuditEventType.FUNDS_DEPOSITED,
            "nested": {"values": [Decimal("1.1"), Decimal("2.2")]}
        })

        assert event.metadata["amount"] == "1234.56"
        assert event.metadata["event"] == "funds_deposited"
        assert event.metadata["nested"]["values"] == ["1.1", "2.2"]

    def test_hash_calculation(self):
        event = self._event()
        event.current_hash = event.calculate_hash()

        assert len(event.current_hash) == 64
        assert event.verify_hash()

    def test_hash_changes_with_content(self):
        first = self._event()
        second = self._event(entity_id="ACC002")
        assert first.calculate_hash() != second.calculate_hash()

    def test_round_trip_keeps_hash_valid(self):
        event = self._event()
        event.current_hash = event.calculate_hash()

        restored = AuditEvent.from_dict(event.to_dict())
        assert restored.event_type == AuditEventType.ACCOUNT_OPENED
        assert restored.verify_hash()


class TestAuditTrail:
    """Test AuditTrail chaining and queries"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def test_first_event_starts_chain(self):
        event = self.audit_trail.log_event(
            AuditEventType.USER_REGISTERED, "profile", "USER001",
            metadata={"email": "jane@example.com"}, user_id="USER001"
        )

        assert event.sequence == 1
        assert event.previous_hash == ""
        assert self.audit_trail.get_latest_hash() == event.current_hash

    def test_events_are_chained(self):
        first = self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "ACC001")
        second = self.audit_trail.log_event(AuditEventType.TRANSFER_COMPLETED, "transaction", "TXN001")

        assert second.sequence == 2
        assert second.previous_hash == first.current_hash
        assert self.audit_trail.count_events() == 2

    def test_queries(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "ACC001")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_STATUS_CHANGED, "account", "ACC001")
        event = self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "ACC002")

        assert len(self.audit_trail.get_events_for_entity("account", "ACC001")) == 2
        assert len(self.audit_trail.get_events_for_entity("account", "ACC001", limit=1)) == 1
        assert len(self.audit_trail.get_events_by_type(AuditEventType.ACCOUNT_OPENED)) == 2
        assert [e.sequence for e in self.audit_trail.get_all_events()] == [1, 2, 3]
        assert self.audit_trail.get_event_by_id(event.id).entity_id == "ACC002"
        assert self.audit_trail.get_event_by_id("missing") is None

    def test_verify_integrity_of_clean_chain(self):
        for i in range(5):
            self.audit_trail.log_event(AuditEventType.FUNDS_DEPOSITED, "account", f"ACC{i}")

        result = self.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_empty_chain_is_valid(self):
        result = self.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 0

    def test_tampered_metadata_detected(self):
        event = self.audit_trail.log_event(
            AuditEventType.PAYMENT_COMPLETED, "transaction", "TXN001",
            metadata={"amount": "50.00"}
        )
        self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "ACC001")

        self.storage.update("audit_events", event.id, {"metadata": {"amount": "5000.00"}})

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert result["hash_errors"][0]["event_id"] == event.id

    def test_deleted_event_breaks_chain(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "ACC001")
        middle = self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "ACC002")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "ACC003")

        self.storage.delete("audit_events", middle.id)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert len(result["chain_breaks"]) == 1

    def test_rolled_back_event_leaves_chain_intact(self):
        first = self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "ACC001")

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.audit_trail.log_event(AuditEventType.TRANSFER_COMPLETED, "transaction", "TXN001")
                raise RuntimeError("operation failed")

        assert self.audit_trail.count_events() == 1
        assert self.audit_trail.get_latest_hash() == first.current_hash

        second = self.audit_trail.log_event(AuditEventType.TRANSFER_COMPLETED, "transaction", "TXN002")
        assert second.sequence == 2
        assert self.audit_trail.verify_integrity()["valid"]
