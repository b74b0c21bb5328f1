"""Markdown body checks and file-reference parsing.

Post bodies are stored as markdown. The editor embeds uploaded files
with a custom directive::

    ::file[id=123 path=... fileName=... size=... contentType=...]::

and raw HTML is refused so a failed client-side conversion cannot leak
markup into stored posts.
"""

import logging
import re
from typing import Set

from ..errors import FieldValidationError

logger = logging.getLogger("blog.markdown")

_HTML_TAG = re.compile(
    r"<(img|div|span|p|a|br|hr|table|tr|td|th|thead|tbody|section|article|header|footer|iframe|script|style)\b[^>]*>",
    re.IGNORECASE,
)
_FILE_ID = re.compile(r"::file\[id=(\d+)")


def contains_html_tags(content: str) -> bool:
    if not content or not content.strip():
        return False
    return _HTML_TAG.search(content) is not None


def validate_markdown(content: str) -> None:
    """Raise a `content` field error when the body carries HTML tags."""
    if contains_html_tags(content):
        logger.warning("markdown rejected: html tag found (length=%d)", len(content))
        raise FieldValidationError.single("content", "only markdown is allowed; HTML tags were found")


def extract_file_ids(content: str) -> Set[int]:
    """Return the distinct file ids referenced by `::file[id=N ...]::` markers."""
    if not content or not content.strip():
        return set()
    return {int(m) for m in _FILE_ID.findall(content)}
