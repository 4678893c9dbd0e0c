"""Caller identity passed into every protected operation."""

from dataclasses import dataclass
from typing import Optional

SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class AccessContext:
    """Who is acting, and from where. Recorded verbatim in audit entries."""
    actor_id: str = SYSTEM_ACTOR
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
