"""Filename and title derivation from free-text prompts"""

import re
import secrets
import string
import unicodedata

FILENAME_WORDS = 8
TITLE_WORDS = 10
MAX_SLUG_LENGTH = 60

GENERATE_FILENAME_FALLBACK = "ai-image"
GENERATE_TITLE_FALLBACK = "AI Image"
EDIT_TITLE_FALLBACK = "AI Edit"

_TAG_RE = re.compile(r"<[^>]*>")
_SLUG_RE = re.compile(r"[^a-z0-9]+")
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def first_words(text: str, limit: int) -> str:
    clean = _TAG_RE.sub(" ", text or "")
    return " ".join(clean.split()[:limit])


def slugify(text: str) -> str:
    ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return _SLUG_RE.sub("-", ascii_text.lower()).strip("-")


def random_suffix() -> str:
    length = 4 + secrets.randbelow(5)
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def filename_from_prompt(prompt: str, fallback: str = GENERATE_FILENAME_FALLBACK) -> str:
    """Slug of the first words of the prompt plus a short random suffix,
    e.g. ``a-red-bicycle-x7k2q``.
    """
    slug = slugify(first_words(prompt, FILENAME_WORDS)) or slugify(fallback)
    slug = slug[:MAX_SLUG_LENGTH].strip("-") or slugify(fallback) or GENERATE_FILENAME_FALLBACK
    return f"{slug}-{random_suffix()}"


def title_from_prompt(prompt: str, fallback: str = GENERATE_TITLE_FALLBACK) -> str:
    title = first_words(prompt, TITLE_WORDS)
    title = "".join(ch for ch in title if ch.isprintable()).strip()
    return title or fallback
