from datetime import datetime, timezone
from typing import List, Optional

from beanie import Document, Indexed, PydanticObjectId
from pydantic import BaseModel, Field
from pymongo import DESCENDING, IndexModel

from shortcode import build_short_url

MAX_CLICK_HISTORY = 100


def utcnow() -> datetime:
    # Mongo hands back naive datetimes, so everything stored is naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class ClickRecord(BaseModel):
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    country: str = "Unknown"
    city: str = "Unknown"
    timestamp: datetime = Field(default_factory=utcnow)


class Url(Document):
    original_url: str
    short_code: Indexed(str, unique=True)
    custom_code: bool = False
    user_id: Optional[PydanticObjectId] = None
    clicks: int = 0
    max_clicks: Optional[int] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    title: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    click_history: List[ClickRecord] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "urls"  # MongoDB collection
        indexes = [
            "user_id",
            "expires_at",
            "is_active",
            IndexModel([("created_at", DESCENDING)]),
        ]

    @property
    def short_url(self) -> str:
        return build_short_url(self.short_code)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at

    def has_reached_max_clicks(self) -> bool:
        if self.max_clicks is None:
            return False
        return self.clicks >= self.max_clicks

    def is_accessible(self, now: Optional[datetime] = None) -> bool:
        return (
            self.is_active
            and not self.is_expired(now)
            and not self.has_reached_max_clicks()
        )

    def inaccessible_reason(self, now: Optional[datetime] = None) -> Optional[str]:
        """
        Returns the message shown for a link that can no longer redirect,
        or None when it is accessible. Expiry wins over the click limit,
        which wins over manual deactivation.
        """
        if self.is_expired(now):
            return "This short URL has expired"
        if self.has_reached_max_clicks():
            return "This short URL has reached its maximum click limit"
        if not self.is_active:
            return "This short URL has been deactivated"
        return None

    async def add_click(self, click: ClickRecord) -> None:
        """
        Counts the click and appends it to the history in one
        find-and-modify; $slice keeps only the newest MAX_CLICK_HISTORY.
        """
        await self.update(
            {
                "$inc": {"clicks": 1},
                "$push": {
                    "click_history": {
                        "$each": [click.model_dump()],
                        "$slice": -MAX_CLICK_HISTORY,
                    }
                },
                "$set": {"updated_at": utcnow()},
            }
        )


class User(Document):
    username: Indexed(str, unique=True)
    email: Indexed(str, unique=True)
    password: str  # bcrypt hash
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_login: Optional[datetime] = None

    class Settings:
        name = "users"
