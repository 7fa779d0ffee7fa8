from __future__ import annotations

import time
import uuid


def generate_document_number(prefix: str) -> str:
    """Return ``<prefix>-<8 timestamp digits><4 hex>``, e.g. ``QT-84213377A1F0``.

    Collisions are still possible; callers rely on the unique column and retry.
    """

    millis = str(int(time.time() * 1000))[-8:]
    return f"{prefix}-{millis}{uuid.uuid4().hex[:4].upper()}"
