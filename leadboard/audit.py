from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from leadboard.context import get_correlation_id

activity_entries: list[dict[str, Any]] = []


def record(
    user_id: str,
    action_type: str,
    entity_type: str,
    entity_id: str | None,
    details: dict[str, Any] | None = None,
    correlation_id: str | None = None,
) -> None:
    activity_entries.append(
        {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "action_type": action_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": details or {},
            "correlation_id": correlation_id or get_correlation_id(),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
    )
