"""
Segment boundary analysis.

Looks at the join between adjacent segments and decides whether the
translation there needs a stitch pass. Linguistic cues are supplied by
BoundaryPatterns so each language can bring its own word lists.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from loguru import logger

from config import settings
from subtitles.models import SubtitleEntry


class BoundaryIssue(str, Enum):
    SENTENCE_INCOMPLETE = "sentence-incomplete"
    CONNECTOR_BREAK = "connector-break"
    CLAUSE_UNFINISHED = "clause-unfinished"
    CONTINUATION_START = "continuation-start"


ISSUE_PENALTIES: Dict[BoundaryIssue, int] = {
    BoundaryIssue.SENTENCE_INCOMPLETE: 30,
    BoundaryIssue.CONNECTOR_BREAK: 40,
    BoundaryIssue.CLAUSE_UNFINISHED: 35,
    BoundaryIssue.CONTINUATION_START: 25,
}


@dataclass(frozen=True)
class BoundaryPatterns:
    """
    Word lists and punctuation used to spot broken joins in one language.

    Words in spaced scripts are matched on word boundaries; words made of
    CJK characters are matched as plain suffixes/prefixes.
    """
    terminal_punctuation: str = ".!?"
    connectors: Tuple[str, ...] = ()
    clause_endings: Tuple[str, ...] = (",",)
    continuation_starts: Tuple[str, ...] = ()

    def merge(self, other: "BoundaryPatterns") -> "BoundaryPatterns":
        def union(a: Iterable[str], b: Iterable[str]) -> Tuple[str, ...]:
            return tuple(dict.fromkeys([*a, *b]))

        return BoundaryPatterns(
            terminal_punctuation="".join(dict.fromkeys(self.terminal_punctuation + other.terminal_punctuation)),
            connectors=union(self.connectors, other.connectors),
            clause_endings=union(self.clause_endings, other.clause_endings),
            continuation_starts=union(self.continuation_starts, other.continuation_starts),
        )

    @classmethod
    def for_language(cls, lang: str) -> "BoundaryPatterns":
        """Built-in set for a language code ("en", "zh-TW", ...); unknown codes get every built-in set"""
        base = (lang or "").split("-")[0].lower()
        if base in LANGUAGE_PATTERNS:
            return LANGUAGE_PATTERNS[base]
        return DEFAULT_PATTERNS

    @classmethod
    def for_languages(cls, *langs: str) -> "BoundaryPatterns":
        patterns = BoundaryPatterns(terminal_punctuation="", clause_endings=())
        for lang in langs:
            patterns = patterns.merge(cls.for_language(lang))
        return patterns


ENGLISH_PATTERNS = BoundaryPatterns(
    terminal_punctuation=".!?",
    connectors=("and", "but", "or", "so", "because"),
    clause_endings=(",", "which", "that", "who"),
    continuation_starts=("also", "then", "however", "moreover", "furthermore"),
)

CHINESE_PATTERNS = BoundaryPatterns(
    terminal_punctuation="。！？!?.",
    connectors=("和", "但是", "或者", "所以", "因為", "因为"),
    clause_endings=(",", "，", "、"),
    continuation_starts=("也", "然後", "然后", "不過", "不过", "此外", "另外"),
)

LANGUAGE_PATTERNS: Dict[str, BoundaryPatterns] = {
    "en": ENGLISH_PATTERNS,
    "zh": CHINESE_PATTERNS,
}

DEFAULT_PATTERNS = ENGLISH_PATTERNS.merge(CHINESE_PATTERNS)

_CJK = re.compile(r"[\u3000-\u9fff\uf900-\ufaff\uff00-\uffef]")


def _is_spaced_word(word: str) -> bool:
    return bool(re.match(r"^\w+$", word)) and not _CJK.search(word)


def _ends_with(text: str, word: str) -> bool:
    if _is_spaced_word(word):
        return re.search(rf"\b{re.escape(word)}$", text, re.IGNORECASE) is not None
    return text.endswith(word)


def _starts_with(text: str, word: str) -> bool:
    if _is_spaced_word(word):
        return re.match(rf"{re.escape(word)}\b", text, re.IGNORECASE) is not None
    return text.startswith(word)


@dataclass
class BoundaryAnalysis:
    """Result for one join between segment i and segment i+1"""
    segment_index: int
    next_segment_index: int
    last_entry: SubtitleEntry
    next_entry: SubtitleEntry
    time_gap_seconds: float
    continuity_score: int
    issues: List[BoundaryIssue] = field(default_factory=list)
    needs_stitching: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segment_index": self.segment_index,
            "next_segment_index": self.next_segment_index,
            "time_gap_seconds": self.time_gap_seconds,
            "continuity_score": self.continuity_score,
            "issues": [issue.value for issue in self.issues],
            "needs_stitching": self.needs_stitching,
        }


class BoundaryAnalyzer:
    """
    Scores every join between adjacent segments.

    Usage:
        analyzer = BoundaryAnalyzer(BoundaryPatterns.for_languages("en", "zh-TW"))
        flagged = [b for b in analyzer.analyze(segment_entries) if b.needs_stitching]
    """

    def __init__(
        self,
        patterns: Optional[BoundaryPatterns] = None,
        continuity_threshold: Optional[int] = None,
    ):
        self.patterns = patterns or DEFAULT_PATTERNS
        self.continuity_threshold = (
            continuity_threshold if continuity_threshold is not None else settings.STITCH_CONTINUITY_THRESHOLD
        )

    def analyze(self, segments: Sequence[Sequence[SubtitleEntry]]) -> List[BoundaryAnalysis]:
        """
        Args:
            segments: entries of each segment, in segment order

        Returns:
            One BoundaryAnalysis per adjacent pair of non-empty segments
        """
        results = []
        for i in range(len(segments) - 1):
            current, following = segments[i], segments[i + 1]
            if not current or not following:
                continue
            results.append(self.analyze_join(i, current[-1], following[0]))

        flagged = sum(1 for b in results if b.needs_stitching)
        logger.info(f"Analyzed {len(results)} boundaries, {flagged} need stitching")
        return results

    def analyze_join(self, segment_index: int, last: SubtitleEntry, nxt: SubtitleEntry) -> BoundaryAnalysis:
        issues = self.detect_issues(last.text, nxt.text)
        score = max(0, 100 - sum(ISSUE_PENALTIES[issue] for issue in issues))
        analysis = BoundaryAnalysis(
            segment_index=segment_index,
            next_segment_index=segment_index + 1,
            last_entry=last,
            next_entry=nxt,
            time_gap_seconds=round(nxt.start - last.end, 6),
            continuity_score=score,
            issues=issues,
            needs_stitching=score < self.continuity_threshold or bool(issues),
        )
        logger.debug(
            f"Boundary {segment_index}->{segment_index + 1}: score={score}, "
            f"issues={[i.value for i in issues]}, gap={analysis.time_gap_seconds:.2f}s"
        )
        return analysis

    def detect_issues(self, last_text: str, next_text: str) -> List[BoundaryIssue]:
        p = self.patterns
        last_text = last_text.strip()
        next_text = next_text.strip()
        issues = []

        terminal = re.escape(p.terminal_punctuation)
        if not terminal or not re.search(rf"[{terminal}][\"'”’)\]」』]*$", last_text):
            issues.append(BoundaryIssue.SENTENCE_INCOMPLETE)

        if any(_ends_with(last_text, word) for word in p.connectors):
            issues.append(BoundaryIssue.CONNECTOR_BREAK)

        if any(_ends_with(last_text, word) for word in p.clause_endings):
            issues.append(BoundaryIssue.CLAUSE_UNFINISHED)

        if any(_starts_with(next_text, word) for word in p.continuation_starts):
            issues.append(BoundaryIssue.CONTINUATION_START)

        return issues
