from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class ContentCategory(str, Enum):
    MOVIE = "movie"
    WEB_SERIES = "web-series"
    PODCAST = "podcast"
    TV_CHANNEL = "tv-channel"
    OTHER = "other"

    @property
    def is_episodic(self) -> bool:
        return self is ContentCategory.WEB_SERIES


class Episode(BaseModel):
    title: str
    url: str


class NewContentItem(BaseModel):
    """Validated form input for adding a video to the catalog."""

    title: str
    category: ContentCategory = ContentCategory.MOVIE
    url: Optional[str] = None
    episodes: list[Episode] = Field(default_factory=list)
    thumbnail_url: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _title_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required.")
        return value

    @field_validator("url", "thumbnail_url")
    @classmethod
    def _blank_is_absent(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @model_validator(mode="after")
    def _link_or_episodes(self) -> "NewContentItem":
        # Episodic items are played from their episode list, everything else from its url.
        if self.category.is_episodic:
            if not self.episodes:
                raise ValueError("A web-series needs at least one episode.")
            if self.url:
                raise ValueError("A web-series takes episode links, not a single URL.")
        else:
            if not self.url:
                raise ValueError("URL is required.")
            if self.episodes:
                raise ValueError(f"Episodes are only allowed for {ContentCategory.WEB_SERIES.value}.")
        return self


class ContentItem(BaseModel):
    id: str
    title: Optional[str] = ""
    category: ContentCategory = ContentCategory.MOVIE
    url: Optional[str] = None
    episodes: list[Episode] = Field(default_factory=list)
    votes: int = 0
    created_at: datetime
    thumbnail_url: Optional[str] = None
    # YouTube metadata, filled in by the metadata provider
    channel_title: Optional[str] = None
    channel_thumbnail_url: Optional[str] = None
    view_count: Optional[str] = None
    published_at: Optional[str] = None
    duration: Optional[int] = None


class UserSession(BaseModel):
    id: str
    user_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class User(BaseModel):
    id: str
    name: str
    fcm_token: Optional[str] = None


class PushTokenUpdate(BaseModel):
    token: str


class SuggestMovieInput(BaseModel):
    prompt: str = Field(min_length=10)
