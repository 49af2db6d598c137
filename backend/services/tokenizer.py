"""
Tokenizer and stopword filter for App Store metadata fields.

Splits free text into lowercase word tokens and removes noise words, brand
terms and single characters. Pure functions: the same input always yields
the same token sequence, and the only locale-dependent behaviour is the
choice of stopword list from the explicit ``locale`` argument.
"""

import re
from collections.abc import Iterable
from typing import Optional

from core.combo_model import SOURCE_CHAR_LIMITS
from core.domain.combos import SourceKind, TextSource

# Words with internal apostrophes stay whole ("don't", "kid's")
_WORD_PATTERN = re.compile(r"[^\W_]+(?:['’][^\W_]+)*")
_TRAILING_WORD = re.compile(r"[^\W_]+$")

ENGLISH_STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "be", "been",
    "have", "has", "had", "do", "does", "did", "will", "would", "should",
    "could", "may", "might", "can", "must", "shall", "your", "you", "my",
    "our", "it", "its", "this", "that",
})

GERMAN_STOPWORDS = frozenset({
    "der", "die", "das", "und", "oder", "ein", "eine", "mit", "für", "von",
    "zu", "im", "in", "am", "auf", "ist", "dein", "deine", "ihr",
})

FRENCH_STOPWORDS = frozenset({
    "le", "la", "les", "un", "une", "des", "et", "ou", "de", "du", "pour",
    "avec", "en", "au", "aux", "sur", "ton", "ta", "tes", "votre",
})

SPANISH_STOPWORDS = frozenset({
    "el", "la", "los", "las", "un", "una", "y", "o", "de", "del", "para",
    "con", "en", "al", "por", "tu", "su",
})

# Storefront country -> stopword list; unlisted storefronts use English
LOCALE_STOPWORDS = {
    "de": GERMAN_STOPWORDS,
    "at": GERMAN_STOPWORDS,
    "fr": FRENCH_STOPWORDS,
    "es": SPANISH_STOPWORDS,
    "mx": SPANISH_STOPWORDS,
}


def stopwords_for(locale: str) -> frozenset[str]:
    """Stopword set for a storefront locale such as ``us`` or ``de``."""
    return LOCALE_STOPWORDS.get(locale.lower(), ENGLISH_STOPWORDS)


def _split_words(text: str) -> list[str]:
    return _WORD_PATTERN.findall(text.lower())


def brand_tokens(brand_terms: Iterable[str]) -> frozenset[str]:
    """Normalize brand names ("Calm Sleep Co.") into the tokens to exclude."""
    tokens: set[str] = set()
    for term in brand_terms:
        tokens.update(_split_words(term))
    return frozenset(tokens)


def _truncate(text: str, max_len: int) -> str:
    """Cut *text* to *max_len* characters without leaving half a word."""
    if len(text) <= max_len:
        return text
    head = text[:max_len]
    # A word continues past the cut: drop the partial word
    if head[-1].isalnum() and text[max_len].isalnum():
        head = _TRAILING_WORD.sub("", head)
    return head


def tokenize(
    text: str,
    max_len: int,
    *,
    stopwords: Optional[Iterable[str]] = None,
    brand_terms: Iterable[str] = (),
    locale: str = "us",
) -> tuple[str, ...]:
    """
    Split *text* into filtered, lowercase word tokens.

    Args:
        text: Raw metadata text
        max_len: Character limit of the field; text beyond it is not indexed
        stopwords: Explicit stopword set (defaults to the locale's list)
        brand_terms: Brand names whose tokens are removed
        locale: Storefront locale used to pick the default stopword list

    Returns:
        Token tuple, empty when *text* is empty or blank
    """
    if not text or not text.strip():
        return ()

    stop = frozenset(stopwords) if stopwords is not None else stopwords_for(locale)
    brands = brand_tokens(brand_terms)

    return tuple(
        word
        for word in _split_words(_truncate(text, max_len))
        if len(word) > 1 and word not in stop and word not in brands
    )


def build_source(
    kind: SourceKind,
    text: str,
    *,
    brand_terms: Iterable[str] = (),
    locale: str = "us",
) -> TextSource:
    """Tokenize one metadata field into an immutable TextSource."""
    text = text or ""
    tokens = tokenize(
        text,
        SOURCE_CHAR_LIMITS[kind.value],
        brand_terms=brand_terms,
        locale=locale,
    )
    return TextSource(kind=kind, text=text, tokens=tokens)
