from __future__ import annotations

import uuid


def new_id() -> str:
    """Primary keys are UUID4 strings so ids can be handed out before insert."""
    return str(uuid.uuid4())
