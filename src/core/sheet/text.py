"""문자열 유틸"""

import re
import unicodedata

_QUOTES = re.compile(r"['\"]")
_WHITESPACE = re.compile(r"\s+")


def slugify(text: str, replacement: str = "-", strict: bool = False) -> str:
    """이름 → 식별자. "Blood Hunter" → "blood-hunter".
    strict: 영숫자와 구분자 외 문자 제거.
    """
    slug = unicodedata.normalize("NFD", text or "")
    slug = "".join(ch for ch in slug if not unicodedata.combining(ch))
    slug = _QUOTES.sub("", slug)
    slug = _WHITESPACE.sub(replacement, slug.strip()).lower()
    if strict:
        slug = re.sub(rf"[^a-z0-9{re.escape(replacement)}]", "", slug)
    return slug
