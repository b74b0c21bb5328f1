"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and auxiliary utilities. Services perform validation, execute domain
logic and persist aggregates via repositories; each public method that
writes commits exactly once. Failures are reported by raising
`errors.BlogError` subclasses, which `main.py` maps to HTTP responses.
"""

import io
import logging
import time
from datetime import timedelta
from typing import Dict, List, Optional

from passlib.context import CryptContext
from PIL import Image, UnidentifiedImageError
from sqlmodel import Session

from . import models, repositories, schemas
from .config import settings
from .errors import (
    BadRequestError,
    ConflictError,
    FieldValidationError,
    ForbiddenError,
    NotFoundError,
    PayloadTooLargeError,
    UnauthorizedError,
    UnsupportedMediaError,
)
from .utils.file_types import normalize_content_type, resolve_file_type
from .utils.markdown import extract_file_ids, validate_markdown
from .utils.slugs import generate_slug, slug_with_suffix
from .utils.storage import LocalFileStorage

logger = logging.getLogger("blog.services")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
storage = LocalFileStorage(settings.UPLOAD_DIR, settings.FILE_BASE_URL)

RELATED_POST_LIMIT = 3
SAME_TYPE_RELATED_LIMIT = 2
AUTOCOMPLETE_LIMIT = 10
SLUG_SUFFIX_ATTEMPTS = 100


class AuthService:
    """Account registration and credential checks."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def signup(self, data: schemas.SignUpIn, role: models.UserRole = models.UserRole.USER) -> models.User:
        """Create a new user with a hashed password.

        Raises ConflictError when the email or nickname is taken.
        """
        if self.user_repo.exists_by_email(data.email):
            raise ConflictError("email already registered", {"email": "email already registered"})
        if self.user_repo.exists_by_nickname(data.nickname):
            raise ConflictError("nickname already taken", {"nickname": "nickname already taken"})
        user = models.User(
            email=data.email,
            password_hash=PWD_CTX.hash(data.password),
            name=data.name,
            nickname=data.nickname,
            role=role,
        )
        user = self.user_repo.create(user)
        logger.info("user registered id=%s role=%s", user.id, user.role.value)
        return user

    def authenticate(self, email: str, password: str) -> models.User:
        """Return the user for valid credentials.

        Unknown emails and wrong passwords fail with the same message so
        callers cannot probe which accounts exist.
        """
        user = self.user_repo.get_by_email(email)
        if not user or not PWD_CTX.verify(password, user.password_hash):
            logger.info("login failed email=%s", email)
            raise UnauthorizedError("invalid email or password")
        return user

    def user_for_refresh(self, user_id: int) -> models.User:
        user = self.user_repo.get(user_id)
        if not user:
            raise UnauthorizedError("user not found")
        return user


class FileService:
    """Upload, lookup and cleanup of stored files."""
    def __init__(self, session: Session, store: Optional[LocalFileStorage] = None):
        self.session = session
        self.storage = store or storage
        self.file_repo = repositories.FileRepository(session)

    def upload(self, filename: str, content_type: Optional[str], payload: bytes) -> schemas.FileOut:
        """Validate and store an upload, returning its metadata.

        The caller reads at most `MAX_UPLOAD_BYTES + 1` bytes so an
        oversized upload is detected without buffering all of it.
        """
        file_type = resolve_file_type(content_type)
        if not payload:
            raise BadRequestError("empty file")
        if len(payload) > settings.MAX_UPLOAD_BYTES:
            raise PayloadTooLargeError(f"file exceeds {settings.MAX_UPLOAD_BYTES} bytes")
        normalized = normalize_content_type(content_type)
        if file_type == models.FileType.IMAGE and normalized != "image/svg+xml":
            self._verify_image(payload)

        key = self.storage.build_key(file_type, normalized)
        self.storage.save(key, payload)
        row = models.FileMetadata(
            original_name=(filename or "upload")[:255],
            path=key,
            content_type=normalized,
            size=len(payload),
            file_type=file_type,
        )
        try:
            self.file_repo.add(row)
            self.session.commit()
        except Exception:
            self.session.rollback()
            self.storage.delete(key)
            raise
        self.session.refresh(row)
        logger.info("file uploaded id=%s type=%s size=%d", row.id, file_type.value, row.size)
        return self.to_out(row)

    @staticmethod
    def _verify_image(payload: bytes):
        try:
            Image.open(io.BytesIO(payload)).verify()
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
            raise UnsupportedMediaError("file content is not a valid image")

    def to_out(self, row: models.FileMetadata) -> schemas.FileOut:
        return schemas.FileOut(
            id=row.id,
            url=self.storage.url_for(row.path),
            path=row.path,
            original_name=row.original_name,
            content_type=row.content_type,
            size=row.size,
            file_type=row.file_type,
        )

    def get_existing(self, file_id: int) -> models.FileMetadata:
        row = self.file_repo.get(file_id)
        if not row:
            raise NotFoundError(f"file not found: {file_id}")
        return row

    def url_for(self, row: models.FileMetadata) -> str:
        return self.storage.url_for(row.path)

    def validate_files_exist(self, file_ids) -> None:
        """Raise NotFoundError unless every id in `file_ids` is stored."""
        ids = set(file_ids)
        if ids and self.file_repo.count_by_ids(ids) != len(ids):
            raise NotFoundError("referenced file not found")

    def delete_orphan_files(self, now=None) -> int:
        """Remove files no post or user references once they are old enough.

        Failures on a single file are logged and skipped so one bad
        entry cannot block the rest of the cleanup.
        """
        cutoff = (now or models.utcnow()) - timedelta(hours=settings.ORPHAN_FILE_HOURS)
        deleted = 0
        for row in self.file_repo.find_orphans(cutoff):
            try:
                self.storage.delete(row.path)
                self.file_repo.delete(row)
                self.session.commit()
                deleted += 1
            except Exception:
                self.session.rollback()
                logger.exception("orphan file cleanup failed id=%s path=%s", row.id, row.path)
        logger.info("orphan file cleanup finished deleted=%d cutoff=%s", deleted, cutoff.isoformat())
        return deleted


class UserService:
    """Profile reads and updates for the signed-in user and public cards."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.user_files = repositories.UserFileRepository(session)
        self.files = FileService(session)

    def blog_owner(self, nickname: str) -> schemas.BlogOwnerOut:
        user = self.user_repo.get_by_nickname(nickname)
        if not user:
            raise NotFoundError("user not found")
        return schemas.BlogOwnerOut.from_user(user)

    def update_profile(self, user: models.User, data: schemas.ProfileUpdateIn) -> schemas.UserOut:
        if data.nickname is not None and data.nickname != user.nickname:
            other = self.user_repo.get_by_nickname(data.nickname)
            if other and other.id != user.id:
                raise ConflictError("nickname already taken", {"nickname": "nickname already taken"})
            user.nickname = data.nickname
        if data.position is not None:
            user.position = data.position.strip() or None
        if data.about is not None:
            user.about = data.about.strip() or None

        if data.remove_profile_image:
            self.user_files.replace(user.id, None)
            user.profile_image_path = None
        elif data.profile_image_id is not None:
            image = self.files.get_existing(data.profile_image_id)
            if image.file_type != models.FileType.IMAGE:
                raise FieldValidationError.single("profile_image_id", "profile image must be an image file")
            self.user_files.replace(user.id, image.id)
            user.profile_image_path = self.files.url_for(image)

        self.user_repo.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info("profile updated user_id=%s", user.id)
        return schemas.UserOut.from_user(user)

    def change_password(self, user: models.User, data: schemas.PasswordChangeIn) -> None:
        if not PWD_CTX.verify(data.current_password, user.password_hash):
            raise FieldValidationError.single("current_password", "current password does not match")
        if data.new_password != data.confirm_password:
            raise FieldValidationError.single("confirm_password", "passwords do not match")
        if data.new_password == data.current_password:
            raise FieldValidationError.single("new_password", "new password must differ from the current one")
        user.password_hash = PWD_CTX.hash(data.new_password)
        self.user_repo.add(user)
        self.session.commit()
        logger.info("password changed user_id=%s", user.id)


class MyPostService:
    """Author-side post management: write, edit, soft delete and restore."""
    def __init__(self, session: Session):
        self.session = session
        self.post_repo = repositories.PostRepository(session)
        self.stack_repo = repositories.StackRepository(session)
        self.post_files = repositories.PostFileRepository(session)
        self.files = FileService(session)

    def _own_post(self, user: models.User, slug: str) -> models.Post:
        post = self.post_repo.get_by_slug_and_user(slug, user.id)
        if not post:
            raise NotFoundError("post not found")
        return post

    def _unique_slug(self, title: str, current: Optional[models.Post] = None) -> str:
        """Slug for `title`, suffixed `-2`..`-100` or with a timestamp when taken."""
        try:
            base = generate_slug(title)
        except ValueError:
            raise FieldValidationError.single("title", "title must contain letters or digits")

        def taken(candidate: str) -> bool:
            other = self.post_repo.get_by_slug(candidate)
            return other is not None and (current is None or other.id != current.id)

        if not taken(base):
            return base
        for n in range(2, SLUG_SUFFIX_ATTEMPTS + 1):
            candidate = slug_with_suffix(base, n)
            if not taken(candidate):
                return candidate
        return slug_with_suffix(base, int(time.time() * 1000))

    def _resolve_stacks(self, names: List[str]) -> List[models.Stack]:
        stacks = self.stack_repo.list_by_names(names)
        unknown = set(names) - {s.name for s in stacks}
        if unknown:
            logger.warning("ignoring unknown stacks %s", sorted(unknown))
        return stacks

    @staticmethod
    def _tags(names: List[str]) -> List[models.PostTag]:
        return [models.PostTag(tag=name[:50], order_idx=i) for i, name in enumerate(names)]

    def _set_thumbnail(self, post: models.Post, file_id: int):
        image = self.files.get_existing(file_id)
        self.post_files.delete_mappings(post.id, models.PostFileRole.THUMBNAIL)
        self.post_files.add_mappings(post.id, [image.id], models.PostFileRole.THUMBNAIL)
        post.thumbnail_path = self.files.url_for(image)

    def _sync_content_files(self, post: models.Post, content: str):
        wanted = extract_file_ids(content)
        self.files.validate_files_exist(wanted)
        current = self.post_files.file_ids_for(post.id, models.PostFileRole.CONTENT)
        stale = current - wanted
        if stale:
            self.post_files.delete_mappings(post.id, models.PostFileRole.CONTENT, stale)
        if wanted - current:
            self.post_files.add_mappings(post.id, wanted - current, models.PostFileRole.CONTENT)

    def create(self, user: models.User, data: schemas.PostCreateIn) -> schemas.PostEditOut:
        validate_markdown(data.content)
        if self.post_repo.exists_by_title(data.title):
            raise FieldValidationError.single("title", "a post with this title already exists")
        post = models.Post(
            user_id=user.id,
            post_type=data.post_type,
            title=data.title,
            slug=self._unique_slug(data.title),
            excerpt=data.excerpt,
            content=data.content,
            status=models.PostStatus.PUBLISHED,
        )
        post.tags = self._tags(data.tags)
        post.stacks = self._resolve_stacks(data.stacks)
        self.post_repo.add(post)
        if data.thumbnail_file_id is not None:
            self._set_thumbnail(post, data.thumbnail_file_id)
        self._sync_content_files(post, data.content)
        self.session.commit()
        self.session.refresh(post)
        logger.info("post created id=%s slug=%s user_id=%s", post.id, post.slug, user.id)
        return schemas.PostEditOut.from_post(post)

    def get_for_edit(self, user: models.User, slug: str) -> schemas.PostEditOut:
        return schemas.PostEditOut.from_post(self._own_post(user, slug))

    def update(self, user: models.User, slug: str, data: schemas.PostUpdateIn) -> schemas.PostEditOut:
        post = self._own_post(user, slug)
        validate_markdown(data.content)
        if data.title != post.title:
            other = self.post_repo.get_by_title(data.title)
            if other and other.id != post.id:
                raise ConflictError("a post with this title already exists", {"title": "a post with this title already exists"})
            post.slug = self._unique_slug(data.title, current=post)
            post.title = data.title
        post.excerpt = data.excerpt
        post.content = data.content
        post.post_type = data.post_type
        if data.tags is not None:
            post.tags = self._tags(data.tags)
        if data.stacks is not None:
            post.stacks = self._resolve_stacks(data.stacks)

        if data.remove_thumbnail:
            self.post_files.delete_mappings(post.id, models.PostFileRole.THUMBNAIL)
            post.thumbnail_path = None
        elif data.thumbnail_file_id is not None:
            self._set_thumbnail(post, data.thumbnail_file_id)
        self._sync_content_files(post, data.content)

        self.post_repo.add(post)
        self.session.commit()
        self.session.refresh(post)
        logger.info("post updated id=%s slug=%s", post.id, post.slug)
        return schemas.PostEditOut.from_post(post)

    def delete(self, user: models.User, slug: str) -> None:
        post = self._own_post(user, slug)
        if not post.is_published:
            raise BadRequestError("post is already deleted")
        post.soft_delete()
        self.post_repo.add(post)
        self.session.commit()
        logger.info("post soft-deleted id=%s", post.id)

    def restore(self, user: models.User, slug: str) -> schemas.PostEditOut:
        post = self._own_post(user, slug)
        if post.status != models.PostStatus.DELETED:
            raise BadRequestError("only deleted posts can be restored")
        post.restore()
        self.post_repo.add(post)
        self.session.commit()
        self.session.refresh(post)
        logger.info("post restored id=%s", post.id)
        return schemas.PostEditOut.from_post(post)

    def list_mine(
        self,
        user: models.User,
        post_type: Optional[models.PostType],
        stack: Optional[str],
        keyword: Optional[str],
        page: int,
        size: int,
    ) -> schemas.PageOut[schemas.PostSummaryOut]:
        cond = repositories.PostSearchCondition.mine(user.id, post_type=post_type, stack_name=stack, keyword=keyword)
        rows, total = self.post_repo.search(cond, page, size)
        return schemas.PageOut.of([schemas.PostSummaryOut.from_post(p) for p in rows], total, page, size)

    def list_deleted(self, user: models.User, page: int, size: int) -> schemas.PageOut[schemas.PostEditOut]:
        rows, total = self.post_repo.list_deleted_by_user(user.id, page, size)
        return schemas.PageOut.of([schemas.PostEditOut.from_post(p) for p in rows], total, page, size)

    def purge_deleted(self, now=None) -> int:
        """Hard-delete posts soft-deleted longer than the retention window.

        Tags, stack links and file mappings go with the post; the files
        themselves become orphans for the file cleanup job.
        """
        cutoff = (now or models.utcnow()) - timedelta(days=settings.DELETED_POST_RETENTION_DAYS)
        expired = self.post_repo.find_deleted_before(cutoff)
        for post in expired:
            self.post_files.delete_mappings(post.id)
            post.stacks = []
            self.post_repo.delete(post)
        self.session.commit()
        logger.info("deleted post purge finished purged=%d cutoff=%s", len(expired), cutoff.isoformat())
        return len(expired)


class PublicPostService:
    """Read-only post queries for anonymous visitors."""
    def __init__(self, session: Session):
        self.session = session
        self.post_repo = repositories.PostRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def search(
        self,
        nickname: Optional[str],
        post_type: Optional[models.PostType],
        stack: Optional[str],
        keyword: Optional[str],
        page: int,
        size: int,
    ) -> schemas.PageOut[schemas.PostSummaryOut]:
        cond = repositories.PostSearchCondition.published(
            nickname=nickname, post_type=post_type, stack_name=stack, keyword=keyword
        )
        rows, total = self.post_repo.search(cond, page, size)
        return schemas.PageOut.of([schemas.PostSummaryOut.from_post(p) for p in rows], total, page, size)

    def list_by_author(self, nickname: str, page: int, size: int) -> schemas.PageOut[schemas.PostSummaryOut]:
        if not self.user_repo.exists_by_nickname(nickname):
            raise NotFoundError("user not found")
        return self.search(nickname, None, None, None, page, size)

    def autocomplete(self, keyword: Optional[str]) -> List[schemas.AutocompleteOut]:
        """Title matches first, then excerpt matches, newest first within each."""
        if not keyword or not keyword.strip():
            return []
        kw = keyword.strip()
        found = self.post_repo.find_published_matching(models.Post.title, kw, [], AUTOCOMPLETE_LIMIT)
        found += self.post_repo.find_published_matching(
            models.Post.excerpt, kw, [p.id for p in found], AUTOCOMPLETE_LIMIT - len(found)
        )
        return [schemas.AutocompleteOut.from_post(p) for p in found]

    def get_detail(self, nickname: str, slug: str) -> schemas.PostDetailOut:
        post = self.post_repo.get_published(nickname, slug)
        if not post:
            raise NotFoundError("post not found")
        return schemas.PostDetailOut.from_post(post, self.related_posts(post))

    def related_posts(self, post: models.Post) -> List[models.Post]:
        """Pick up to three posts to show under `post`.

        Same-type posts sharing stacks come first (at most two), then
        other-type posts sharing stacks, then the latest posts. Posts
        without stacks just get the latest posts.
        """
        names = [s.name for s in post.stacks]
        if not names:
            return self.post_repo.find_latest_published([post.id], RELATED_POST_LIMIT)
        related = self.post_repo.find_related_by_stacks(post, names, True, SAME_TYPE_RELATED_LIMIT)
        related += self.post_repo.find_related_by_stacks(post, names, False, RELATED_POST_LIMIT - len(related))
        if len(related) < RELATED_POST_LIMIT:
            seen = [post.id] + [p.id for p in related]
            related += self.post_repo.find_latest_published(seen, RELATED_POST_LIMIT - len(related))
        return related


class StackService:
    """Stack catalogue management and usage statistics."""
    def __init__(self, session: Session):
        self.session = session
        self.stack_repo = repositories.StackRepository(session)

    @staticmethod
    def parse_group(value: str) -> models.StackGroup:
        try:
            return models.StackGroup(value)
        except ValueError:
            raise BadRequestError(f"unknown stack group: {value}")

    def list_all(self) -> List[schemas.StackOut]:
        return [schemas.StackOut.from_stack(s) for s in self.stack_repo.list_all()]

    def list_by_group(self, group: str) -> List[schemas.StackOut]:
        return [schemas.StackOut.from_stack(s) for s in self.stack_repo.list_by_group(self.parse_group(group))]

    def with_counts(self) -> List[schemas.StackCountOut]:
        return [
            schemas.StackCountOut(id=s.id, name=s.name, stack_group=s.stack_group, post_count=n)
            for s, n in self.stack_repo.published_post_counts()
        ]

    def grouped(self) -> Dict[str, List[schemas.StackCountOut]]:
        """Stacks with counts keyed by group, groups in declaration order."""
        by_group: Dict[str, List[schemas.StackCountOut]] = {}
        counts = self.with_counts()
        for group in models.StackGroup:
            members = [c for c in counts if c.stack_group == group]
            if members:
                by_group[group.value] = members
        return by_group

    def popular(self, limit: int) -> List[schemas.PopularStackOut]:
        return [
            schemas.PopularStackOut(rank=i, id=s.id, name=s.name, stack_group=s.stack_group, post_count=n)
            for i, (s, n) in enumerate(self.stack_repo.published_post_counts(limit), start=1)
        ]

    def _get(self, stack_id: int) -> models.Stack:
        stack = self.stack_repo.get(stack_id)
        if not stack:
            raise NotFoundError("stack not found")
        return stack

    def create(self, data: schemas.StackIn) -> schemas.StackOut:
        if self.stack_repo.exists_by_name(data.name):
            raise ConflictError("stack already exists", {"name": "stack already exists"})
        stack = self.stack_repo.add(models.Stack(name=data.name, stack_group=data.stack_group))
        self.session.commit()
        self.session.refresh(stack)
        logger.info("stack created id=%s name=%s", stack.id, stack.name)
        return schemas.StackOut.from_stack(stack)

    def update(self, stack_id: int, data: schemas.StackIn) -> schemas.StackOut:
        stack = self._get(stack_id)
        if data.name != stack.name and self.stack_repo.exists_by_name(data.name):
            raise ConflictError("stack already exists", {"name": "stack already exists"})
        stack.name = data.name
        stack.stack_group = data.stack_group
        self.stack_repo.add(stack)
        self.session.commit()
        self.session.refresh(stack)
        logger.info("stack updated id=%s name=%s", stack.id, stack.name)
        return schemas.StackOut.from_stack(stack)

    def delete(self, stack_id: int) -> None:
        stack = self._get(stack_id)
        stack.posts = []
        self.stack_repo.delete(stack)
        self.session.commit()
        logger.info("stack deleted id=%s", stack_id)


class TagService:
    def __init__(self, session: Session):
        self.session = session
        self.tag_repo = repositories.TagRepository(session)

    def counts(self, limit: Optional[int] = None) -> List[schemas.TagCountOut]:
        return [schemas.TagCountOut(tag=t, post_count=n) for t, n in self.tag_repo.published_tag_counts(limit)]


def ensure_signup_allowed():
    if not settings.ALLOW_SIGNUP:
        raise ForbiddenError("sign-up is disabled")
