# Overview: Append-only audit trail for business events.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import AuditEvent
"""
Audit Log Invariants (authoritative)

- Append-only log of cross-cutting business events.
- No domain/business logic in the audit log itself.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back operation leaves no audit trace either.
"""


def append_audit_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: str,
    performed_by: str | None = None,
    store_id: str | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    ev = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        performed_by=performed_by,
        store_id=store_id,
        note=note,
        payload=json.dumps(payload, sort_keys=True, default=str) if payload else None,
    )
    if occurred_at is not None:
        ev.occurred_at = occurred_at
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev
