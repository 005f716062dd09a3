"""
Translation Package

Provides:
- Token budget table and token-budget segmentation
- Model backends (OpenAI-compatible, DeepSeek, Claude) with strict response validation
- Segment translation with an explicit retry policy
- Boundary analysis and stitching across segment joins
- Title keyword extraction and a translation result cache
- The orchestrator that drives a task end to end
"""
from .errors import BackendError, BackendResponseError
from .models import GenerationParams, TranslationContext
from .token_limits import SegmentationPreference, TokenLimits, lookup, token_threshold
from .segmenter import Segment, SegmentationStats, Segmenter, TokenEstimator
from .backends import ModelBackend, create_backend, parse_keyword_payload, parse_subtitle_payload
from .retry import RetryExhaustedError, RetryPolicy
from .segment_translator import SegmentTranslator
from .boundary import BoundaryAnalysis, BoundaryAnalyzer, BoundaryIssue, BoundaryPatterns
from .stitcher import Stitcher
from .keywords import KeywordExtractor, merge_keywords
from .cache import CachedTranslation, CacheStore, MemoryCacheStore, TranslationCache
from .orchestrator import TranslationOrchestrator

__all__ = [
    "BackendError",
    "BackendResponseError",
    "GenerationParams",
    "TranslationContext",
    "SegmentationPreference",
    "TokenLimits",
    "lookup",
    "token_threshold",
    "Segment",
    "SegmentationStats",
    "Segmenter",
    "TokenEstimator",
    "ModelBackend",
    "create_backend",
    "parse_keyword_payload",
    "parse_subtitle_payload",
    "RetryExhaustedError",
    "RetryPolicy",
    "SegmentTranslator",
    "BoundaryAnalysis",
    "BoundaryAnalyzer",
    "BoundaryIssue",
    "BoundaryPatterns",
    "Stitcher",
    "KeywordExtractor",
    "merge_keywords",
    "CachedTranslation",
    "CacheStore",
    "MemoryCacheStore",
    "TranslationCache",
    "TranslationOrchestrator",
]
