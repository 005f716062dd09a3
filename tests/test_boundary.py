import pytest

from subtitles.models import SubtitleEntry
from translation.boundary import (
    DEFAULT_PATTERNS,
    BoundaryAnalyzer,
    BoundaryIssue,
    BoundaryPatterns,
)


def _entry(text, start=0.0, end=1.0):
    return SubtitleEntry(start=start, end=end, text=text)


@pytest.fixture
def english():
    return BoundaryAnalyzer(BoundaryPatterns.for_language("en"), continuity_threshold=70)


def test_clean_join_is_not_flagged(english):
    result = english.analyze_join(0, _entry("That is all."), _entry("Next topic starts here."))

    assert result.issues == []
    assert result.continuity_score == 100
    assert result.needs_stitching is False


def test_broken_sentence_collects_every_issue(english):
    result = english.analyze_join(
        0, _entry("We went to the store and"), _entry("then we bought milk.")
    )

    assert result.issues == [
        BoundaryIssue.SENTENCE_INCOMPLETE,
        BoundaryIssue.CONNECTOR_BREAK,
        BoundaryIssue.CONTINUATION_START,
    ]
    assert result.continuity_score == 5
    assert result.needs_stitching is True


def test_dangling_clause(english):
    result = english.analyze_join(0, _entry("The book, which"), _entry("I read yesterday."))

    assert result.issues == [BoundaryIssue.SENTENCE_INCOMPLETE, BoundaryIssue.CLAUSE_UNFINISHED]
    assert result.continuity_score == 35


def test_words_match_on_word_boundaries(english):
    assert english.detect_issues("And that is why I said so.", "Okay.") == []
    assert english.detect_issues("It was the band.", "Thenceforth we walked.") == []
    assert english.detect_issues("Done.", "However, it rained.") == [BoundaryIssue.CONTINUATION_START]


def test_terminal_punctuation_before_closing_quote(english):
    assert english.detect_issues('He said "stop."', "Fine.") == []


def test_chinese_patterns():
    analyzer = BoundaryAnalyzer(BoundaryPatterns.for_language("zh-TW"))
    issues = analyzer.detect_issues("我們去了商店，", "然後買了牛奶。")

    assert issues == [
        BoundaryIssue.SENTENCE_INCOMPLETE,
        BoundaryIssue.CLAUSE_UNFINISHED,
        BoundaryIssue.CONTINUATION_START,
    ]
    assert analyzer.detect_issues("他很累所以", "睡了。") == [
        BoundaryIssue.SENTENCE_INCOMPLETE,
        BoundaryIssue.CONNECTOR_BREAK,
    ]
    assert analyzer.detect_issues("今天天氣很好。", "我們出門吧。") == []


def test_unknown_language_uses_every_builtin_set():
    assert BoundaryPatterns.for_language("fr") == DEFAULT_PATTERNS
    merged = BoundaryPatterns.for_languages("en", "zh-TW")
    assert "and" in merged.connectors
    assert "所以" in merged.connectors
    assert "。" in merged.terminal_punctuation


def test_analyze_reports_one_result_per_join(english):
    segments = [
        [_entry("One.", 0.0, 1.0), _entry("Two and", 1.5, 10.0)],
        [_entry("three.", 10.5, 12.0)],
        [],
        [_entry("Four.", 20.0, 21.0)],
    ]
    results = english.analyze(segments)

    assert [(b.segment_index, b.next_segment_index) for b in results] == [(0, 1)]
    assert results[0].time_gap_seconds == pytest.approx(0.5)
    assert results[0].to_dict()["issues"] == ["sentence-incomplete", "connector-break"]
