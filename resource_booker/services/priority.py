import logging
from typing import Optional

logger = logging.getLogger(__name__)

CATEGORY_BASE_PRIORITY = {
    "university_activity": 4,
    "class": 3,
    "staff_meeting": 2,
    "student_meeting": 1,
    "other": 0,
}

ROLE_BONUS = {
    "admin": 2,
    "staff": 1,
    "lecturer": 1,
}

# Roles that legitimately carry no bonus; anything else is logged as an anomaly
_ROLES_WITHOUT_BONUS = {"student", "guest"}


def calculate_priority(role: Optional[str], category: Optional[str]) -> int:
    """Priority score for a requester role and booking category.

    Higher wins. Unknown categories and roles contribute nothing; they are
    logged because they point at misconfigured input, not raised.
    """
    category_key = (category or "").strip().lower()
    role_key = (role or "").strip().lower()

    base = CATEGORY_BASE_PRIORITY.get(category_key)
    if base is None:
        logger.warning(f"Unknown booking category {category!r}, using base priority 0")
        base = 0

    bonus = ROLE_BONUS.get(role_key)
    if bonus is None:
        if role_key not in _ROLES_WITHOUT_BONUS:
            logger.warning(f"Unknown requester role {role!r}, using role bonus 0")
        bonus = 0

    return base + bonus
