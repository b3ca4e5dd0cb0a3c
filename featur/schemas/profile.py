from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from featur.utils.timeutil import utcnow

CURRENT_PROFILE_SCHEMA_VERSION = 2


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ContentStyle(str, Enum):
    COMEDY = "Comedy"
    EDITING = "Editing"
    BEAUTY = "Beauty"
    FASHION = "Fashion"
    FITNESS = "Fitness"
    MUKBANG = "Mukbang"
    COOKING = "Cooking"
    DANCE = "Dance"
    MUSIC = "Music"
    GAMING = "Video Games"
    PET = "Pet"
    TECH = "Tech"
    ART = "Art"
    SPORTS = "Sports"


class CollabType(str, Enum):
    TWITCH_STREAM = "Twitch Streamers"
    MUSIC_COLLAB = "Music Collabs"
    PODCAST_GUEST = "Podcast Guests"
    TIKTOK_LIVE = "Tiktok Lives"
    BRAND_DEAL = "Brand Deals"
    CONTENT_SERIES = "Content Series"


class Availability(str, Enum):
    WEEKDAYS = "weekdays"
    WEEKENDS = "weekends"
    FLEXIBLE = "flexible"


class ResponseTime(str, Enum):
    FAST = "Usually responds within hours"
    MODERATE = "Usually responds within a day"
    SLOW = "Usually responds within a week"


class Coordinates(CamelModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class Location(CamelModel):
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class SocialAccount(CamelModel):
    username: str
    follower_count: Optional[int] = None
    is_verified: bool = False


class SocialLinks(CamelModel):
    tiktok: Optional[SocialAccount] = None
    instagram: Optional[SocialAccount] = None
    youtube: Optional[SocialAccount] = None
    twitch: Optional[SocialAccount] = None
    spotify: Optional[str] = None
    snapchat: Optional[str] = None


class CollaborationPreferences(CamelModel):
    looking_for: list[CollabType] = []
    availability: list[Availability] = []
    response_time: ResponseTime = ResponseTime.MODERATE


class Profile(CamelModel):
    uid: str = Field(min_length=1)
    display_name: str = ""
    age: Optional[int] = Field(default=None, ge=13, le=120)
    bio: Optional[str] = None
    location: Optional[Location] = None
    interests: list[str] = []
    content_styles: list[ContentStyle] = []
    social_links: Optional[SocialLinks] = None
    media_urls: list[str] = Field(default_factory=list, alias="mediaURLs")
    profile_image_url: Optional[str] = Field(default=None, alias="profileImageURL")
    is_verified: bool = False
    follower_count: int = 0
    collaboration_preferences: Optional[CollaborationPreferences] = None
    email: str = ""
    is_email_verified: bool = False
    phone_number: str = ""
    is_phone_verified: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("content_styles", mode="before")
    @classmethod
    def _drop_unknown_styles(cls, v):
        # Newer clients may send styles this server does not know yet.
        if isinstance(v, list):
            known = {s.value for s in ContentStyle}
            return [s for s in v if isinstance(s, ContentStyle) or s in known]
        return v

    @property
    def coordinates(self) -> Optional[Coordinates]:
        return self.location.coordinates if self.location else None

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ProfileUpdate(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    display_name: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=13, le=120)
    bio: Optional[str] = None
    location: Optional[Location] = None
    interests: Optional[list[str]] = None
    content_styles: Optional[list[ContentStyle]] = None
    social_links: Optional[SocialLinks] = None
    media_urls: Optional[list[str]] = Field(default=None, alias="mediaURLs")
    profile_image_url: Optional[str] = Field(default=None, alias="profileImageURL")
    collaboration_preferences: Optional[CollaborationPreferences] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None


class PhotoUploadResponse(CamelModel):
    uid: str
    url: str
    media_urls: list[str] = Field(alias="mediaURLs")
