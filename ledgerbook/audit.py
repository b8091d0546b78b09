"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every bookkeeping state change is logged here, inside the same storage
transaction as the change itself.
"""

import hashlib
import json
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Tenant events
    TENANT_CREATED = "tenant_created"
    TENANT_UPDATED = "tenant_updated"

    # Ledger events
    LEDGER_CREATED = "ledger_created"
    LEDGER_UPDATED = "ledger_updated"
    LEDGER_DELETED = "ledger_deleted"

    # Voucher events
    VOUCHER_TYPE_CREATED = "voucher_type_created"
    NUMBERING_SERIES_CREATED = "numbering_series_created"
    VOUCHER_CREATED = "voucher_created"
    VOUCHER_UPDATED = "voucher_updated"
    VOUCHER_POSTED = "voucher_posted"
    VOUCHER_REVERSED = "voucher_reversed"
    VOUCHER_DELETED = "voucher_deleted"

    # Bank account events
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_DELETED = "transaction_deleted"

    # GST events
    GST_REGISTRATION_CREATED = "gst_registration_created"
    GST_TAX_RATE_CREATED = "gst_tax_rate_created"
    GST_LEDGER_MAPPING_CREATED = "gst_ledger_mapping_created"

    # Import/export events
    TALLY_IMPORT_COMPLETED = "tally_import_completed"

    # System events
    AUDIT_INTEGRITY_CHECK = "audit_integrity_check"


def _serialize(value):
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    sequence: int
    event_type: AuditEventType
    entity_type: str  # ledger, voucher, transaction, account, ...
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    tenant_id: Optional[str] = None

    def __post_init__(self):
        if self.metadata:
            self.metadata = _serialize(self.metadata)

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'tenant_id': self.tenant_id,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        if isinstance(data['event_type'], str):
            data['event_type'] = AuditEventType(data['event_type'])
        return super().from_dict(data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name


    def _load_events(self, filters: Optional[Dict[str, Any]] = None) -> List[AuditEvent]:
        events_data = self.storage.find(self.table_name, filters or {})
        events = [AuditEvent.from_dict(data) for data in events_data]
        events.sort(key=lambda e: e.sequence)
        return events

    def _chain_head(self):
        """Return (last sequence, last hash) of the stored chain"""
        events = self.storage.load_all(self.table_name)
        if not events:
            return 0, ""
        last = max(events, key=lambda e: e.get('sequence', 0))
        return last.get('sequence', 0), last.get('current_hash', "")

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        tenant_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            tenant_id: Tenant owning the entity

        Returns:
            Created AuditEvent
        """
        # Chain head read and append happen in one storage transaction
        with self.storage.atomic():
            now = datetime.now(timezone.utc)
            sequence, last_hash = self._chain_head()

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence=sequence + 1,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=last_hash,
                current_hash="",
                metadata=metadata or {},
                tenant_id=tenant_id
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str,
                              limit: Optional[int] = None) -> List[AuditEvent]:
        events = self._load_events({'entity_type': entity_type, 'entity_id': entity_id})
        if limit:
            events = events[-limit:]
        return events

    def get_events_for_tenant(self, tenant_id: str, limit: Optional[int] = None) -> List[AuditEvent]:
        events = self._load_events({'tenant_id': tenant_id})
        if limit:
            events = events[-limit:]
        return events

    def get_all_events(self, limit: Optional[int] = None) -> List[AuditEvent]:
        events = self._load_events()
        if limit:
            events = events[-limit:]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self._load_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for event in events:
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'sequence': event.sequence,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'sequence': event.sequence,
                    'expected_previous': previous_hash,
                    'actual_previous': event.previous_hash
                })
            previous_hash = event.current_hash

        return result
