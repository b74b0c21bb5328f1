"""Turn post titles into URL-safe slugs.

Hangul syllables are kept as-is so Korean titles stay readable in the
URL; everything else outside ASCII letters, digits and hyphens is
dropped.
"""

import logging
import re

logger = logging.getLogger("blog.slugs")

MAX_SLUG_LENGTH = 150

_WHITESPACE = re.compile(r"\s+")
_INVALID_CHARS = re.compile(r"[^a-z0-9가-힣\s-]")
_MULTIPLE_HYPHENS = re.compile(r"-{2,}")
_VALID_SLUG = re.compile(r"^[a-z0-9가-힣-]+$")


def generate_slug(title: str) -> str:
    """Return the slug for `title`.

    "Spring Boot 시작하기" -> "spring-boot-시작하기"
    "React 입문 가이드!!!" -> "react-입문-가이드"

    Raises ValueError when the title is blank or nothing survives the
    character filter.
    """
    if title is None or not title.strip():
        raise ValueError("title is empty")
    slug = title.strip().lower()
    slug = _WHITESPACE.sub("-", slug)
    slug = _INVALID_CHARS.sub("", slug)
    slug = _MULTIPLE_HYPHENS.sub("-", slug)
    slug = slug.strip("-")
    if len(slug) > MAX_SLUG_LENGTH:
        slug = slug[:MAX_SLUG_LENGTH].rstrip("-")
    if not slug:
        raise ValueError(f"cannot build a slug from title: {title!r}")
    logger.debug("slug generated %r -> %r", title, slug)
    return slug


def slug_with_suffix(base_slug: str, count: int) -> str:
    """Append `-count` to `base_slug`, shortening the base to stay in bounds."""
    suffix = f"-{count}"
    max_base = MAX_SLUG_LENGTH - len(suffix)
    if len(base_slug) > max_base:
        base_slug = base_slug[:max_base].rstrip("-")
    return base_slug + suffix


def is_valid_slug(slug: str) -> bool:
    if not slug or len(slug) > MAX_SLUG_LENGTH:
        return False
    return bool(_VALID_SLUG.match(slug))
