import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from models import ClickRecord, Url, User, to_naive_utc
from shortcode import is_valid_url

SHORT_CODE_PATTERN = r"^[a-zA-Z0-9_-]+$"
USERNAME_PATTERN = r"^[a-zA-Z0-9_]+$"
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def clean_tags(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return value
    tags = [tag.strip() for tag in value]
    if any(len(tag) > 50 for tag in tags):
        raise ValueError("Tag cannot exceed 50 characters")
    return tags


def normalize_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_RE.match(value):
        raise ValueError("Please enter a valid email address")
    return value


class CamelModel(BaseModel):
    """Request bodies use camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ShortenRequest(CamelModel):
    original_url: str = Field(max_length=2048)
    custom_code: Optional[str] = Field(
        None, min_length=3, max_length=20, pattern=SHORT_CODE_PATTERN
    )
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    expires_at: Optional[datetime] = None
    max_clicks: Optional[int] = Field(None, ge=1)
    tags: Optional[List[str]] = None

    @field_validator("original_url")
    @classmethod
    def check_url(cls, value: str) -> str:
        value = value.strip()
        if not is_valid_url(value):
            raise ValueError("Please provide a valid URL")
        return value

    @field_validator("expires_at")
    @classmethod
    def normalize_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)

    @field_validator("tags")
    @classmethod
    def check_tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return clean_tags(value)


class UpdateUrlRequest(CamelModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    expires_at: Optional[datetime] = None
    max_clicks: Optional[int] = Field(None, ge=1)
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None

    @field_validator("expires_at")
    @classmethod
    def normalize_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)

    @field_validator("tags")
    @classmethod
    def check_tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return clean_tags(value)

    def changes(self) -> Dict[str, Any]:
        """
        Only the fields the caller actually sent. An explicit null clears
        expiresAt, maxClicks, title and description; for tags and isActive
        null is ignored.
        """
        nullable = {"expires_at", "max_clicks", "title", "description"}
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if getattr(self, name) is not None or name in nullable
        }


class BulkDeleteRequest(CamelModel):
    url_ids: List[str] = Field(min_length=1)

    @field_validator("url_ids")
    @classmethod
    def check_ids(cls, value: List[str]) -> List[str]:
        if not all(ObjectId.is_valid(url_id) for url_id in value):
            raise ValueError("URL IDs must be valid identifiers")
        return value


class RegisterRequest(CamelModel):
    username: str = Field(min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: str = Field(max_length=254)
    password: str = Field(min_length=6, max_length=72)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return normalize_email(value)


class LoginRequest(CamelModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()


class ProfileUpdateRequest(CamelModel):
    username: Optional[str] = Field(
        None, min_length=3, max_length=30, pattern=USERNAME_PATTERN
    )
    email: Optional[str] = Field(None, max_length=254)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        return value if value is None else normalize_email(value)


# --- Serializers ---------------------------------------------------------


def serialize_click(click: ClickRecord) -> Dict[str, Any]:
    return {
        "ip": click.ip,
        "userAgent": click.user_agent,
        "referer": click.referer,
        "country": click.country,
        "city": click.city,
        "timestamp": click.timestamp,
    }


def serialize_url(url: Url, include_history: bool = False) -> Dict[str, Any]:
    data = {
        "_id": str(url.id),
        "originalUrl": url.original_url,
        "shortCode": url.short_code,
        "shortUrl": url.short_url,
        "customCode": url.custom_code,
        "userId": str(url.user_id) if url.user_id else None,
        "title": url.title,
        "description": url.description,
        "expiresAt": url.expires_at,
        "maxClicks": url.max_clicks,
        "tags": url.tags,
        "clicks": url.clicks,
        "isActive": url.is_active,
        "isAccessible": url.is_accessible(),
        "createdAt": url.created_at,
        "updatedAt": url.updated_at,
    }
    if include_history:
        data["clickHistory"] = [serialize_click(c) for c in url.click_history]
    return data


def serialize_url_info(url: Url) -> Dict[str, Any]:
    return {
        "originalUrl": url.original_url,
        "shortCode": url.short_code,
        "shortUrl": url.short_url,
        "title": url.title,
        "description": url.description,
        "clicks": url.clicks,
        "isActive": url.is_active,
        "isAccessible": url.is_accessible(),
        "expiresAt": url.expires_at,
        "maxClicks": url.max_clicks,
        "createdAt": url.created_at,
    }


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "_id": str(user.id),
        "username": user.username,
        "email": user.email,
        "isActive": user.is_active,
        "createdAt": user.created_at,
        "lastLogin": user.last_login,
    }
