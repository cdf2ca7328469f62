from datetime import datetime, timezone
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Mongo hands back naive datetimes unless the client is tz aware; change events carry ISO strings.
Timestamp = Annotated[datetime, AfterValidator(_as_utc)]


class Record(BaseModel):
    """Base for records read from Mongo documents or change events (``_id`` or ``id``)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(alias="_id")


class Participant(Record):

    full_name: Optional[str] = None
    role: str = "candidate"

    @classmethod
    def from_user(cls, user: dict) -> "Participant":
        return cls(_id=str(user["_id"]), full_name=user.get("full_name"), role=user.get("type") or "candidate")

    @property
    def display_name(self) -> str:
        return self.full_name or ""
