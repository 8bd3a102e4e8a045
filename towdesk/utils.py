from __future__ import annotations

import re
import uuid
from typing import Any, Optional

APPLICATION_ID_PATTERN = re.compile(r"^TOW[A-F0-9]{8}$")


def generate_application_id() -> str:
    return f"TOW{uuid.uuid4().hex[:8].upper()}"


def normalize_application_id(value: Any) -> Optional[str]:
    """Return the canonical upper-case ID, or None when it is not well formed."""
    if not isinstance(value, str):
        return None
    candidate = value.strip().upper()
    if not APPLICATION_ID_PATTERN.match(candidate):
        return None
    return candidate


def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
