"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
posts, stacks, tags, files). Repositories return SQLModel objects and
stage writes with `flush()`; the calling service owns the transaction
and commits once per operation so multi-table changes stay atomic.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import exists, func, or_
from sqlmodel import Session, select

from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def add(self, user: models.User) -> models.User:
        self.session.add(user)
        self.session.flush()
        return user

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def get_by_nickname(self, nickname: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.nickname == nickname)
        return self.session.exec(stmt).first()

    def exists_by_email(self, email: str) -> bool:
        stmt = select(models.User.id).where(models.User.email == email)
        return self.session.exec(stmt).first() is not None

    def exists_by_nickname(self, nickname: str) -> bool:
        stmt = select(models.User.id).where(models.User.nickname == nickname)
        return self.session.exec(stmt).first() is not None


@dataclass
class PostSearchCondition:
    """Optional filters for post listings; `None` disables a filter.

    `search_content` extends keyword matching from title/excerpt to the
    markdown body (used for the author's own listing).
    """
    user_id: Optional[int] = None
    nickname: Optional[str] = None
    status: Optional[models.PostStatus] = None
    exclude_status: Optional[models.PostStatus] = None
    post_type: Optional[models.PostType] = None
    stack_name: Optional[str] = None
    keyword: Optional[str] = None
    search_content: bool = False

    @classmethod
    def published(cls, **kwargs) -> "PostSearchCondition":
        return cls(status=models.PostStatus.PUBLISHED, **kwargs)

    @classmethod
    def mine(cls, user_id: int, **kwargs) -> "PostSearchCondition":
        return cls(user_id=user_id, exclude_status=models.PostStatus.DELETED, search_content=True, **kwargs)


class PostRepository:
    """Queries and writes for `Post` aggregates (tags and stack links included)."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, post: models.Post) -> models.Post:
        self.session.add(post)
        self.session.flush()
        return post

    def delete(self, post: models.Post) -> None:
        self.session.delete(post)
        self.session.flush()

    def get_by_slug(self, slug: str) -> Optional[models.Post]:
        stmt = select(models.Post).where(models.Post.slug == slug)
        return self.session.exec(stmt).first()

    def get_by_slug_and_user(self, slug: str, user_id: int) -> Optional[models.Post]:
        """Return the author's own post regardless of status."""
        stmt = select(models.Post).where(models.Post.slug == slug, models.Post.user_id == user_id)
        return self.session.exec(stmt).first()

    def get_published(self, nickname: str, slug: str) -> Optional[models.Post]:
        stmt = (
            select(models.Post)
            .join(models.User, models.User.id == models.Post.user_id)
            .where(
                models.User.nickname == nickname,
                models.Post.slug == slug,
                models.Post.status == models.PostStatus.PUBLISHED,
            )
        )
        return self.session.exec(stmt).first()

    def get_by_title(self, title: str) -> Optional[models.Post]:
        stmt = select(models.Post).where(models.Post.title == title)
        return self.session.exec(stmt).first()

    def exists_by_title(self, title: str) -> bool:
        stmt = select(models.Post.id).where(models.Post.title == title)
        return self.session.exec(stmt).first() is not None

    def _filtered(self, stmt, cond: PostSearchCondition):
        Post = models.Post
        if cond.user_id is not None:
            stmt = stmt.where(Post.user_id == cond.user_id)
        if cond.nickname:
            stmt = stmt.where(Post.user_id.in_(select(models.User.id).where(models.User.nickname == cond.nickname)))
        if cond.status is not None:
            stmt = stmt.where(Post.status == cond.status)
        if cond.exclude_status is not None:
            stmt = stmt.where(Post.status != cond.exclude_status)
        if cond.post_type is not None:
            stmt = stmt.where(Post.post_type == cond.post_type)
        if cond.stack_name and cond.stack_name.strip():
            tagged = (
                select(models.PostStackLink.post_id)
                .join(models.Stack, models.Stack.id == models.PostStackLink.stack_id)
                .where(models.Stack.name == cond.stack_name.strip())
            )
            stmt = stmt.where(Post.id.in_(tagged))
        if cond.keyword and cond.keyword.strip():
            kw = cond.keyword.strip()
            clauses = [Post.title.icontains(kw, autoescape=True), Post.excerpt.icontains(kw, autoescape=True)]
            if cond.search_content:
                clauses.append(Post.content.icontains(kw, autoescape=True))
            stmt = stmt.where(or_(*clauses))
        return stmt

    def _page(self, stmt, order_by: Sequence, page: int, size: int) -> Tuple[List[models.Post], int]:
        total = self.session.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.session.exec(stmt.order_by(*order_by).offset(page * size).limit(size)).all()
        return list(rows), int(total)

    def search(self, cond: PostSearchCondition, page: int, size: int) -> Tuple[List[models.Post], int]:
        """Return one page of posts matching `cond`, newest first, plus the total count."""
        stmt = self._filtered(select(models.Post), cond)
        return self._page(stmt, (models.Post.created_at.desc(), models.Post.id.desc()), page, size)

    def list_deleted_by_user(self, user_id: int, page: int, size: int) -> Tuple[List[models.Post], int]:
        stmt = select(models.Post).where(
            models.Post.user_id == user_id,
            models.Post.status == models.PostStatus.DELETED,
        )
        return self._page(stmt, (models.Post.deleted_at.desc(), models.Post.id.desc()), page, size)

    def find_related_by_stacks(
        self,
        post: models.Post,
        stack_names: Iterable[str],
        same_type: bool,
        limit: int,
    ) -> List[models.Post]:
        """Published posts sharing stacks with `post`, most shared stacks first.

        `same_type` selects posts of the same post type; otherwise posts
        of any other type.
        """
        names = list(stack_names)
        if limit <= 0 or not names:
            return []
        Post = models.Post
        shared = func.count(models.Stack.id).label("shared")
        type_clause = Post.post_type == post.post_type if same_type else Post.post_type != post.post_type
        stmt = (
            select(Post.id, shared)
            .join(models.PostStackLink, models.PostStackLink.post_id == Post.id)
            .join(models.Stack, models.Stack.id == models.PostStackLink.stack_id)
            .where(
                Post.id != post.id,
                Post.status == models.PostStatus.PUBLISHED,
                models.Stack.name.in_(names),
                type_clause,
            )
            .group_by(Post.id, Post.created_at)
            .order_by(shared.desc(), Post.created_at.desc(), Post.id.desc())
            .limit(limit)
        )
        ids = [row[0] for row in self.session.exec(stmt).all()]
        return self._load_in_order(ids)

    def find_latest_published(self, exclude_ids: Iterable[int], limit: int) -> List[models.Post]:
        if limit <= 0:
            return []
        stmt = select(models.Post).where(models.Post.status == models.PostStatus.PUBLISHED)
        excluded = list(exclude_ids)
        if excluded:
            stmt = stmt.where(models.Post.id.not_in(excluded))
        stmt = stmt.order_by(models.Post.created_at.desc(), models.Post.id.desc()).limit(limit)
        return list(self.session.exec(stmt).all())

    def find_published_matching(self, column, keyword: str, exclude_ids: Iterable[int], limit: int) -> List[models.Post]:
        """Published posts whose `column` contains `keyword`, newest first."""
        if limit <= 0:
            return []
        stmt = select(models.Post).where(
            models.Post.status == models.PostStatus.PUBLISHED,
            column.icontains(keyword, autoescape=True),
        )
        excluded = list(exclude_ids)
        if excluded:
            stmt = stmt.where(models.Post.id.not_in(excluded))
        stmt = stmt.order_by(models.Post.created_at.desc(), models.Post.id.desc()).limit(limit)
        return list(self.session.exec(stmt).all())

    def find_deleted_before(self, cutoff: datetime) -> List[models.Post]:
        """Soft-deleted posts whose `deleted_at` is older than `cutoff`."""
        stmt = select(models.Post).where(
            models.Post.status == models.PostStatus.DELETED,
            models.Post.deleted_at.is_not(None),
            models.Post.deleted_at < cutoff,
        )
        return list(self.session.exec(stmt).all())

    def _load_in_order(self, ids: List[int]) -> List[models.Post]:
        if not ids:
            return []
        found = {p.id: p for p in self.session.exec(select(models.Post).where(models.Post.id.in_(ids))).all()}
        return [found[i] for i in ids if i in found]


class StackRepository:
    """CRUD and usage statistics for `Stack` records."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, stack: models.Stack) -> models.Stack:
        self.session.add(stack)
        self.session.flush()
        return stack

    def delete(self, stack: models.Stack) -> None:
        self.session.delete(stack)
        self.session.flush()

    def get(self, stack_id: int) -> Optional[models.Stack]:
        return self.session.get(models.Stack, stack_id)

    def exists_by_name(self, name: str) -> bool:
        stmt = select(models.Stack.id).where(models.Stack.name == name)
        return self.session.exec(stmt).first() is not None

    def list_all(self) -> List[models.Stack]:
        return list(self.session.exec(select(models.Stack).order_by(models.Stack.name)).all())

    def list_by_group(self, group: models.StackGroup) -> List[models.Stack]:
        stmt = select(models.Stack).where(models.Stack.stack_group == group).order_by(models.Stack.name)
        return list(self.session.exec(stmt).all())

    def list_by_names(self, names: Iterable[str]) -> List[models.Stack]:
        wanted = {n for n in names if n}
        if not wanted:
            return []
        stmt = select(models.Stack).where(models.Stack.name.in_(wanted)).order_by(models.Stack.name)
        return list(self.session.exec(stmt).all())

    def published_post_counts(self, limit: Optional[int] = None) -> List[Tuple[models.Stack, int]]:
        """Stacks used by published posts with their post counts, busiest first."""
        post_count = func.count(models.Post.id).label("post_count")
        stmt = (
            select(models.Stack, post_count)
            .join(models.PostStackLink, models.PostStackLink.stack_id == models.Stack.id)
            .join(models.Post, models.Post.id == models.PostStackLink.post_id)
            .where(models.Post.status == models.PostStatus.PUBLISHED)
            .group_by(models.Stack.id)
            .order_by(post_count.desc(), models.Stack.name)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [(stack, int(count)) for stack, count in self.session.exec(stmt).all()]


class TagRepository:
    """Read-only statistics over free-form `PostTag` rows."""
    def __init__(self, session: Session):
        self.session = session

    def published_tag_counts(self, limit: Optional[int] = None) -> List[Tuple[str, int]]:
        post_count = func.count(func.distinct(models.PostTag.post_id)).label("post_count")
        stmt = (
            select(models.PostTag.tag, post_count)
            .join(models.Post, models.Post.id == models.PostTag.post_id)
            .where(models.Post.status == models.PostStatus.PUBLISHED)
            .group_by(models.PostTag.tag)
            .order_by(post_count.desc(), models.PostTag.tag)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [(tag, int(count)) for tag, count in self.session.exec(stmt).all()]


class FileRepository:
    """Metadata rows for stored files."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, file: models.FileMetadata) -> models.FileMetadata:
        self.session.add(file)
        self.session.flush()
        return file

    def delete(self, file: models.FileMetadata) -> None:
        self.session.delete(file)
        self.session.flush()

    def get(self, file_id: int) -> Optional[models.FileMetadata]:
        return self.session.get(models.FileMetadata, file_id)

    def count_by_ids(self, file_ids: Iterable[int]) -> int:
        ids = set(file_ids)
        if not ids:
            return 0
        stmt = select(func.count()).select_from(models.FileMetadata).where(models.FileMetadata.id.in_(ids))
        return int(self.session.exec(stmt).one())

    def find_orphans(self, created_before: datetime) -> List[models.FileMetadata]:
        """Files older than `created_before` that no post or user references."""
        F = models.FileMetadata
        stmt = select(F).where(
            F.created_at < created_before,
            ~exists().where(models.PostFile.file_id == F.id),
            ~exists().where(models.UserFile.file_id == F.id),
        )
        return list(self.session.exec(stmt).all())


class PostFileRepository:
    """Post <-> file mappings (thumbnail and inline content)."""
    def __init__(self, session: Session):
        self.session = session

    def add_mappings(self, post_id: int, file_ids: Iterable[int], role: models.PostFileRole) -> List[models.PostFile]:
        rows = [models.PostFile(post_id=post_id, file_id=fid, role=role) for fid in sorted(set(file_ids))]
        self.session.add_all(rows)
        self.session.flush()
        return rows

    def file_ids_for(self, post_id: int, role: models.PostFileRole) -> set:
        stmt = select(models.PostFile.file_id).where(models.PostFile.post_id == post_id, models.PostFile.role == role)
        return set(self.session.exec(stmt).all())

    def delete_mappings(self, post_id: int, role: Optional[models.PostFileRole] = None, file_ids: Optional[Iterable[int]] = None) -> int:
        """Delete mappings of `post_id`, optionally narrowed by role and file ids."""
        stmt = select(models.PostFile).where(models.PostFile.post_id == post_id)
        if role is not None:
            stmt = stmt.where(models.PostFile.role == role)
        if file_ids is not None:
            stmt = stmt.where(models.PostFile.file_id.in_(set(file_ids)))
        rows = self.session.exec(stmt).all()
        for row in rows:
            self.session.delete(row)
        self.session.flush()
        return len(rows)


class UserFileRepository:
    """Profile image mappings."""
    def __init__(self, session: Session):
        self.session = session

    def replace(self, user_id: int, file_id: Optional[int]) -> None:
        """Drop the user's current mapping and, when given, map `file_id` instead."""
        for row in self.session.exec(select(models.UserFile).where(models.UserFile.user_id == user_id)).all():
            self.session.delete(row)
        if file_id is not None:
            self.session.add(models.UserFile(user_id=user_id, file_id=file_id))
        self.session.flush()
