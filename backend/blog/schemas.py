"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. Output schemas expose `from_*`
constructors so services can hand detached, serialisable objects back
to the controllers.
"""

import math
import re
from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

from . import models

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
T = TypeVar("T")


def _not_blank(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


def _clean_names(values: Optional[List[str]]) -> Optional[List[str]]:
    """Strip entries, drop blanks and duplicates while keeping order."""
    if values is None:
        return None
    seen = []
    for v in values:
        v = v.strip()
        if v and v not in seen:
            seen.append(v)
    return seen


class SignUpIn(BaseModel):
    """Payload for account registration."""
    email: str = Field(max_length=50)
    password: str = Field(min_length=8, max_length=20)
    name: str = Field(min_length=1, max_length=30)
    nickname: str = Field(min_length=2, max_length=20)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_RE.match(v):
            raise ValueError("invalid email format")
        return v

    @field_validator("name", "nickname")
    @classmethod
    def _text(cls, v: str) -> str:
        return _not_blank(v)


class AdminSignUpIn(SignUpIn):
    role: models.UserRole = models.UserRole.USER


class LoginIn(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return v.strip().lower()


class ProfileUpdateIn(BaseModel):
    """Partial profile update; omitted fields keep their current value."""
    nickname: Optional[str] = Field(default=None, min_length=2, max_length=20)
    position: Optional[str] = Field(default=None, max_length=50)
    about: Optional[str] = Field(default=None, max_length=500)
    profile_image_id: Optional[int] = None
    remove_profile_image: bool = False

    @field_validator("nickname")
    @classmethod
    def _nickname(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _not_blank(v)


class PasswordChangeIn(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=20)
    confirm_password: str


class PostCreateIn(BaseModel):
    """Payload for writing a post.

    `stacks` are stack names; unknown names are ignored. `content` is
    markdown and may reference uploaded files with `::file[id=N]`.
    """
    title: str = Field(max_length=50)
    excerpt: str = Field(max_length=200)
    post_type: models.PostType
    content: str = Field(max_length=50000)
    tags: List[str] = Field(default_factory=list)
    stacks: List[str] = Field(default_factory=list)
    thumbnail_file_id: Optional[int] = None

    @field_validator("title", "excerpt", "content")
    @classmethod
    def _text(cls, v: str) -> str:
        return _not_blank(v)

    @field_validator("tags", "stacks")
    @classmethod
    def _names(cls, v: List[str]) -> List[str]:
        return _clean_names(v)


class PostUpdateIn(BaseModel):
    """Payload for editing a post; `tags`/`stacks` set to null keep the current ones."""
    title: str = Field(max_length=50)
    excerpt: str = Field(max_length=200)
    post_type: models.PostType
    content: str = Field(max_length=50000)
    tags: Optional[List[str]] = None
    stacks: Optional[List[str]] = None
    thumbnail_file_id: Optional[int] = None
    remove_thumbnail: bool = False

    @field_validator("title", "excerpt", "content")
    @classmethod
    def _text(cls, v: str) -> str:
        return _not_blank(v)

    @field_validator("tags", "stacks")
    @classmethod
    def _names(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _clean_names(v)


class StackIn(BaseModel):
    name: str = Field(max_length=50)
    stack_group: models.StackGroup = models.StackGroup.ETC

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return _not_blank(v)


class UserOut(BaseModel):
    id: int
    email: str
    name: str
    nickname: str
    role: models.UserRole
    position: Optional[str] = None
    about: Optional[str] = None
    profile_image_path: Optional[str] = None

    @classmethod
    def from_user(cls, user: models.User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            nickname=user.nickname,
            role=user.role,
            position=user.position,
            about=user.about,
            profile_image_path=user.profile_image_path,
        )


class AuthOut(BaseModel):
    """Authentication response; tokens are also set as HttpOnly cookies."""
    user: UserOut
    access_token: str
    token_type: str = "bearer"


class BlogOwnerOut(BaseModel):
    """Public card of a blog author."""
    nickname: str
    profile_image_path: Optional[str] = None
    position: Optional[str] = None
    about: Optional[str] = None

    @classmethod
    def from_user(cls, user: models.User) -> "BlogOwnerOut":
        return cls(
            nickname=user.nickname,
            profile_image_path=user.profile_image_path,
            position=user.position,
            about=user.about,
        )


class StackOut(BaseModel):
    id: int
    name: str
    stack_group: models.StackGroup

    @classmethod
    def from_stack(cls, stack: models.Stack) -> "StackOut":
        return cls(id=stack.id, name=stack.name, stack_group=stack.stack_group)


class StackCountOut(StackOut):
    post_count: int


class PopularStackOut(StackCountOut):
    rank: int


class TagCountOut(BaseModel):
    tag: str
    post_count: int


class PostSummaryOut(BaseModel):
    id: int
    title: str
    slug: str
    excerpt: str
    post_type: models.PostType
    status: models.PostStatus
    thumbnail_path: Optional[str] = None
    author_nickname: str
    tags: List[str]
    stacks: List[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def _fields(cls, post: models.Post) -> dict:
        return dict(
            id=post.id,
            title=post.title,
            slug=post.slug,
            excerpt=post.excerpt,
            post_type=post.post_type,
            status=post.status,
            thumbnail_path=post.thumbnail_path,
            author_nickname=post.author.nickname if post.author else "",
            tags=[t.tag for t in post.tags],
            stacks=[s.name for s in post.stacks],
            created_at=post.created_at,
            updated_at=post.updated_at,
        )

    @classmethod
    def from_post(cls, post: models.Post) -> "PostSummaryOut":
        return cls(**cls._fields(post))


class PostEditOut(PostSummaryOut):
    """The author's editable view of a post, including deleted ones."""
    content: str
    deleted_at: Optional[datetime] = None

    @classmethod
    def from_post(cls, post: models.Post) -> "PostEditOut":
        return cls(**cls._fields(post), content=post.content, deleted_at=post.deleted_at)


class PostDetailOut(PostSummaryOut):
    content: str
    author: BlogOwnerOut
    related_posts: List[PostSummaryOut] = Field(default_factory=list)

    @classmethod
    def from_post(cls, post: models.Post, related: List[models.Post]) -> "PostDetailOut":
        return cls(
            **cls._fields(post),
            content=post.content,
            author=BlogOwnerOut.from_user(post.author),
            related_posts=[PostSummaryOut.from_post(p) for p in related],
        )


class AutocompleteOut(BaseModel):
    id: int
    title: str
    slug: str
    author_nickname: str

    @classmethod
    def from_post(cls, post: models.Post) -> "AutocompleteOut":
        return cls(id=post.id, title=post.title, slug=post.slug, author_nickname=post.author.nickname)


class FileOut(BaseModel):
    id: int
    url: str
    path: str
    original_name: str
    content_type: str
    size: int
    file_type: models.FileType


class PageOut(BaseModel, Generic[T]):
    """One page of a listing. Pages are 0-based."""
    content: List[T]
    total_pages: int
    total_elements: int
    current_page: int
    size: int
    has_next: bool
    has_previous: bool

    @classmethod
    def of(cls, content: List[T], total: int, page: int, size: int) -> "PageOut[T]":
        total_pages = math.ceil(total / size) if size else 0
        return cls(
            content=content,
            total_pages=total_pages,
            total_elements=total,
            current_page=page,
            size=size,
            has_next=page + 1 < total_pages,
            has_previous=page > 0,
        )
