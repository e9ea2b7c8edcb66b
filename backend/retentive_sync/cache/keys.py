"""Cache key builders and the patterns that invalidate them per table."""

from __future__ import annotations

import re
from typing import Dict, List


def topics_key(user_id: str) -> str:
    return f"topics:{user_id}"


def subjects_key(user_id: str) -> str:
    return f"subjects:{user_id}"


def topic_items_key(topic_id: str) -> str:
    return f"items:topic:{topic_id}"


def user_items_key(user_id: str) -> str:
    return f"items:user:{user_id}"


def reviews_key(user_id: str) -> str:
    return f"reviews:{user_id}"


TABLE_INVALIDATION_PATTERNS: Dict[str, List[str]] = {
    "users": [r"^user:"],
    "subjects": [r"^subjects:"],
    "topics": [r"^topics:", r"^topic:"],
    "learning_items": [r"^items:", r"^item:"],
    "review_sessions": [r"^reviews:"],
    "user_gamification_stats": [r"^gamification:"],
    "daily_stats": [r"^daily_stats:"],
}


def patterns_for_table(table: str) -> List[str]:
    return TABLE_INVALIDATION_PATTERNS.get(table, [rf"^{re.escape(table)}:"])


__all__ = [
    "TABLE_INVALIDATION_PATTERNS",
    "patterns_for_table",
    "reviews_key",
    "subjects_key",
    "topic_items_key",
    "topics_key",
    "user_items_key",
]
