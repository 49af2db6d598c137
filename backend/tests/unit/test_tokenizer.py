"""
Tests for the metadata tokenizer and stopword filter.
"""

import pytest

from core.domain.combos import SourceKind
from services.tokenizer import (
    ENGLISH_STOPWORDS,
    GERMAN_STOPWORDS,
    brand_tokens,
    build_source,
    stopwords_for,
    tokenize,
)


class TestTokenize:
    """Tests for tokenize()."""

    def test_lowercases_and_splits(self):
        assert tokenize("Meditation Sleep Timer", 30) == ("meditation", "sleep", "timer")

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_empty_text_returns_empty(self, text):
        assert tokenize(text, 30) == ()

    def test_splits_on_punctuation(self):
        assert tokenize("sleep,meditation;timer/white-noise", 100) == (
            "sleep",
            "meditation",
            "timer",
            "white",
            "noise",
        )

    def test_removes_stopwords(self):
        assert tokenize("Sleep Sounds for Kids & the Family", 100) == (
            "sleep",
            "sounds",
            "kids",
            "family",
        )

    def test_drops_single_characters(self):
        assert tokenize("A B Calm 3 Minute", 30) == ("calm", "minute")

    def test_keeps_inner_apostrophes(self):
        assert tokenize("Kid's Sleep Stories", 30) == ("kid's", "sleep", "stories")

    def test_removes_brand_terms(self):
        tokens = tokenize("Calm: Sleep & Meditation", 30, brand_terms=["Calm"])
        assert tokens == ("sleep", "meditation")

    def test_multi_word_brand_removes_each_word(self):
        tokens = tokenize("Headspace Guide Sleep", 30, brand_terms=["Headspace Guide"])
        assert tokens == ("sleep",)

    def test_explicit_stopwords_override_locale(self):
        tokens = tokenize("the best sleep app", 30, stopwords={"app"})
        assert tokens == ("the", "best", "sleep")

    def test_truncates_at_max_len_without_partial_word(self):
        # "Meditation Sleep Timer Re|laxation": the cut lands inside a word
        tokens = tokenize("Meditation Sleep Timer Relaxation", 25)
        assert tokens == ("meditation", "sleep", "timer")

    def test_truncation_on_word_boundary_keeps_last_word(self):
        tokens = tokenize("Meditation Sleep Timer Relaxation", 22)
        assert tokens == ("meditation", "sleep", "timer")

    def test_german_locale_uses_german_stopwords(self):
        assert tokenize("Schlaf und Meditation", 30, locale="de") == ("schlaf", "meditation")

    def test_unlisted_locale_uses_english(self):
        assert tokenize("Sleep and Relax", 30, locale="jp") == ("sleep", "relax")

    def test_deterministic(self):
        text = "Focus Timer: Pomodoro, Study & Work Tracker"
        assert tokenize(text, 30) == tokenize(text, 30)


class TestStopwords:
    """Tests for stopword selection."""

    def test_stopwords_for_is_case_insensitive(self):
        assert stopwords_for("DE") is GERMAN_STOPWORDS

    def test_default_is_english(self):
        assert stopwords_for("us") is ENGLISH_STOPWORDS

    def test_brand_tokens_normalizes(self):
        assert brand_tokens(["Calm Sleep Co.", "NOOM"]) == frozenset({"calm", "sleep", "co", "noom"})


class TestBuildSource:
    """Tests for build_source()."""

    def test_applies_field_character_limit(self):
        source = build_source(SourceKind.TITLE, "Meditation Sleep Timer Relaxation Music")
        assert source.kind == SourceKind.TITLE
        assert source.tokens == ("meditation", "sleep", "timer")

    def test_keyword_field_allows_100_characters(self):
        text = ",".join(["sleep", "meditation", "timer", "relax", "calm", "breathe"])
        source = build_source(SourceKind.KEYWORD_FIELD, text)
        assert len(source.tokens) == 6

    def test_none_text_is_empty_source(self):
        source = build_source(SourceKind.SUBTITLE, None)
        assert source.tokens == ()
        assert source.text == ""

    def test_unique_tokens_keep_first_occurrence_order(self):
        source = build_source(SourceKind.KEYWORD_FIELD, "sleep,timer,sleep,calm,timer")
        assert source.unique_tokens == ("sleep", "timer", "calm")
