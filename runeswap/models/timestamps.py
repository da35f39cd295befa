"""Timezone-aware datetime fields.

Venue payloads and callers sometimes send naive timestamps; they are read
as UTC so every comparison against the service clock is between aware values.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from pydantic import AfterValidator


def assume_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


UtcDatetime = Annotated[datetime, AfterValidator(assume_utc)]
