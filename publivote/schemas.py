from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from publivote.config import settings


# --- Identity (supplied by the upstream auth layer) ---

class Identity(BaseModel):
    user_id: int
    role_id: int = 1

    @property
    def is_admin(self) -> bool:
        return self.role_id == settings.ADMIN_ROLE_ID

    def can_manage(self, owner_id: int) -> bool:
        return self.is_admin or self.user_id == owner_id


# --- Lookups ---

class TagCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class TagResponse(BaseModel):
    id: int
    name: str
    model_config = ConfigDict(from_attributes=True)


class CityResponse(BaseModel):
    id: int
    name: str
    model_config = ConfigDict(from_attributes=True)


class PublicationTypeResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    model_config = ConfigDict(from_attributes=True)


# --- User ---

class UserCreate(BaseModel):
    username: str = Field(max_length=100)
    email: str = Field(max_length=255)
    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)
    code_phone: str | None = Field(None, max_length=10)
    phone: str | None = Field(None, max_length=30)
    interests: str | None = None


class UserPublic(BaseModel):
    id: int
    username: str
    first_name: str | None = None
    last_name: str | None = None
    created_at: datetime | None = None


class UserPrivate(UserPublic):
    email: str
    code_phone: str | None = None
    phone: str | None = None
    interests: str | None = None
    role_id: int


# --- Publication ---

class PublicationCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    description: str
    content: str
    city_id: int
    publication_type_id: int
    reference_link: str | None = Field(None, max_length=500)
    tag_ids: list[int] = []


class PublicationFilter(BaseModel):
    tag_id: int | None = None
    publication_type_id: int | None = None
    title: str | None = None
    content: str | None = None
    description: str | None = None


class ImageResponse(BaseModel):
    publication_id: int
    order: int
    image_key: str
    content_type: str
    url: str | None = None


class VoteResult(BaseModel):
    action: Literal["added", "removed"]
    publication_id: int
    user_id: int
    votes_count: int


# --- Pagination ---

class PaginatedResponse(BaseModel):
    items: list
    total: int
    page: int
    page_size: int
    pages: int


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_publications: int
    total_votes: int
    total_users: int
    total_tags: int
    avg_votes_per_publication: float
    orphaned_objects: int
    cache_info: dict = {}
