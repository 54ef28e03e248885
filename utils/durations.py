"""
Sanction duration tokens.

All duration strings accepted by moderation go through `parse_duration`,
which returns a tagged value instead of ad-hoc timedeltas.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from utils.errors import InvalidArgument

PERMANENT = "permanent"

DURATION_TABLE = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}


@dataclass(frozen=True)
class SanctionDuration:
    token: str
    delta: Optional[timedelta] = None

    @property
    def is_permanent(self) -> bool:
        return self.delta is None

    def expires_at(self, start: datetime) -> Optional[datetime]:
        if self.delta is None:
            return None
        return start + self.delta


def parse_duration(token: Optional[str]) -> SanctionDuration:
    """
    Map a duration token to a SanctionDuration.

    A missing token means permanent. Unknown tokens fail InvalidArgument.
    """
    if token is None:
        return SanctionDuration(PERMANENT)

    normalized = str(token).strip().lower()
    if normalized == PERMANENT:
        return SanctionDuration(PERMANENT)

    delta = DURATION_TABLE.get(normalized)
    if delta is None:
        raise InvalidArgument(
            f"Unknown duration '{token}'",
            allowed=[PERMANENT] + list(DURATION_TABLE),
        )
    return SanctionDuration(normalized, delta)
