from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from utils.clock import from_iso

# Lower value = processed sooner
DEFAULT_PRIORITY = 5
MIN_PRIORITY = 1
MAX_PRIORITY = 9
REQUALIFIED_PRIORITY = 4
EMERGENCY_PRIORITY = 1

FRESH_POST_HOURS = 48
SHORT_TEXT_CHARS = 200


def clamp(priority: int) -> int:
    return max(MIN_PRIORITY, min(MAX_PRIORITY, priority))


def compute_priority(payload: Dict[str, Any], now: Optional[datetime] = None) -> int:
    """Score a record from its payload: fresh posts and complete author profiles go first."""
    now = now or datetime.now(timezone.utc)
    score = DEFAULT_PRIORITY
    posted = from_iso(payload.get("posted_at_iso"))
    if posted is not None and (now - posted).total_seconds() <= FRESH_POST_HOURS * 3600:
        score -= 2
    if payload.get("author_name") and payload.get("author_profile_url") and payload.get("author_headline"):
        score -= 1
    if len(str(payload.get("text") or "")) < SHORT_TEXT_CHARS:
        score += 1
    return clamp(score)


def with_penalty(priority: int, penalty: int) -> int:
    return clamp(priority + penalty)
