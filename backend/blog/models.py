"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
String columns carry explicit lengths so the same metadata creates
valid DDL on SQLite, MariaDB and PostgreSQL.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import Column, Text
from sqlmodel import SQLModel, Field, Relationship


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp used for every datetime column."""
    return datetime.now(timezone.utc)


class _KeyedEnum(str, Enum):
    """String enum whose lookup by value ignores case and surrounding spaces."""

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if member.value == key:
                    return member
        return None


class UserRole(_KeyedEnum):
    USER = "user"
    ADMIN = "admin"


class PostType(_KeyedEnum):
    CORE = "core"
    ARCHITECTURE = "architecture"
    TROUBLESHOOTING = "troubleshooting"
    ESSAY = "essay"


class PostStatus(_KeyedEnum):
    PUBLISHED = "published"
    DELETED = "deleted"


class StackGroup(_KeyedEnum):
    LANGUAGE = "language"
    FRAMEWORK = "framework"
    LIBRARY = "library"
    DATABASE = "database"
    DEVOPS = "devops"
    TOOL = "tool"
    ETC = "etc"


class FileType(_KeyedEnum):
    """Storage category of an uploaded file; the value is its directory."""
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"

    @property
    def base_path(self) -> str:
        return f"public/{self.value}s"


class PostFileRole(_KeyedEnum):
    THUMBNAIL = "thumbnail"
    CONTENT = "content"


class User(SQLModel, table=True):
    """A registered blog author.

    Fields:
    - `email`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    - `nickname`: unique public handle used in post URLs
    """
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True, nullable=False, max_length=50)
    password_hash: str = Field(max_length=255)
    name: str = Field(max_length=30)
    nickname: str = Field(index=True, unique=True, nullable=False, max_length=30)
    position: Optional[str] = Field(default=None, max_length=50)
    about: Optional[str] = Field(default=None, max_length=500)
    role: UserRole = Field(default=UserRole.USER)
    profile_image_path: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})
    posts: List["Post"] = Relationship(back_populates="author")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class PostStackLink(SQLModel, table=True):
    """Many-to-many link between posts and stacks."""
    __tablename__ = "post_stacks"

    post_id: Optional[int] = Field(default=None, foreign_key="posts.id", primary_key=True)
    stack_id: Optional[int] = Field(default=None, foreign_key="stacks.id", primary_key=True)


class Post(SQLModel, table=True):
    """A markdown blog post.

    Posts are soft-deleted: `status` becomes `deleted` and `deleted_at`
    records when, so the author can restore them until the purge job
    removes them for good.
    """
    __tablename__ = "posts"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    post_type: PostType = Field(index=True)
    title: str = Field(unique=True, max_length=100)
    slug: str = Field(index=True, unique=True, max_length=150)
    excerpt: str = Field(max_length=500)
    content: str = Field(sa_column=Column(Text, nullable=False))
    status: PostStatus = Field(default=PostStatus.PUBLISHED, index=True)
    thumbnail_path: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})
    deleted_at: Optional[datetime] = Field(default=None, index=True)
    author: Optional[User] = Relationship(back_populates="posts")
    tags: List["PostTag"] = Relationship(
        back_populates="post",
        sa_relationship_kwargs={"order_by": "PostTag.order_idx", "cascade": "all, delete-orphan"},
    )
    stacks: List["Stack"] = Relationship(
        back_populates="posts",
        link_model=PostStackLink,
        sa_relationship_kwargs={"order_by": "Stack.name"},
    )

    @property
    def is_published(self) -> bool:
        return self.status == PostStatus.PUBLISHED

    def is_written_by(self, user_id: int) -> bool:
        return self.user_id == user_id

    def soft_delete(self):
        self.status = PostStatus.DELETED
        self.deleted_at = utcnow()

    def restore(self):
        self.status = PostStatus.PUBLISHED
        self.deleted_at = None


class PostTag(SQLModel, table=True):
    """A free-form tag attached to a post; `order_idx` keeps author order."""
    __tablename__ = "post_tags"

    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: int = Field(foreign_key="posts.id", index=True)
    tag: str = Field(index=True, max_length=50)
    order_idx: int = 0
    post: Optional[Post] = Relationship(back_populates="tags")


class Stack(SQLModel, table=True):
    """A technology (language, framework, ...) posts can be filed under."""
    __tablename__ = "stacks"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True, max_length=50)
    stack_group: StackGroup = Field(default=StackGroup.ETC)
    created_at: datetime = Field(default_factory=utcnow)
    posts: List[Post] = Relationship(back_populates="stacks", link_model=PostStackLink)


class FileMetadata(SQLModel, table=True):
    """An uploaded file.

    Files are stored independently of any post or user; the mapping
    tables below are the only link. A file no mapping references is an
    orphan and is purged by the cleanup job once it is old enough.
    """
    __tablename__ = "files"

    id: Optional[int] = Field(default=None, primary_key=True)
    original_name: str = Field(max_length=255)
    path: str = Field(max_length=500)
    content_type: str = Field(max_length=255)
    size: int
    file_type: FileType
    created_at: datetime = Field(default_factory=utcnow, index=True)


class PostFile(SQLModel, table=True):
    """Maps a stored file to a post as its thumbnail or as inline content."""
    __tablename__ = "post_files"

    id: Optional[int] = Field(default=None, primary_key=True)
    post_id: int = Field(foreign_key="posts.id", index=True)
    file_id: int = Field(foreign_key="files.id", index=True)
    role: PostFileRole = Field(default=PostFileRole.CONTENT)
    display_order: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


class UserFile(SQLModel, table=True):
    """Maps a stored file to a user as their profile image."""
    __tablename__ = "user_files"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    file_id: int = Field(foreign_key="files.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
