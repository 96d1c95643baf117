from __future__ import annotations

import uuid

__all__ = ["generate_idempotency_key"]


def generate_idempotency_key() -> str:
    """Random UUID4 token attached to a create-order request."""
    return str(uuid.uuid4())
