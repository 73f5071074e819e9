from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as seen by the chat and record layers."""

    id: UUID
    email: str
    # When the bearer token behind this identity stops being valid.
    expires_at: datetime | None = field(default=None, compare=False)
