"""
Model token budget table.

Each model has a context limit (`max_tokens`) and a safe threshold at
roughly 70% of it. Segmentation sizes its requests against these numbers.
"""
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict


@dataclass(frozen=True)
class TokenLimits:
    max_tokens: int
    safe_threshold: int


class SegmentationPreference(str, Enum):
    """How aggressively to split a transcript"""
    QUALITY = "quality"  # Fewer, larger segments (safe threshold)
    SPEED = "speed"      # More, smaller segments translated in parallel (50% of max)


def _limits(max_tokens: int) -> TokenLimits:
    return TokenLimits(max_tokens=max_tokens, safe_threshold=max_tokens * 7 // 10)


DEFAULT_LIMITS = _limits(128000)

MODEL_TOKEN_LIMITS: Dict[str, TokenLimits] = {
    # OpenAI
    "gpt-5-pro": _limits(256000),
    "gpt-5-standard": _limits(256000),
    "gpt-5-mini": _limits(256000),
    "gpt-5-nano": _limits(256000),
    "gpt-4.1": _limits(1000000),
    "gpt-4.1-mini": _limits(1000000),
    "gpt-4.1-nano": _limits(1000000),
    "gpt-4o": _limits(128000),
    "gpt-4.5": _limits(128000),
    "gpt-4.5-preview": _limits(128000),
    "o3": _limits(200000),
    "o4": _limits(200000),
    # Anthropic
    "claude-4-opus": _limits(200000),
    "claude-4-sonnet": _limits(200000),
    "claude-3.7-sonnet": _limits(200000),
    "claude-3.5-sonnet": _limits(200000),
    "claude-3-opus": _limits(200000),
    "claude-2.1": _limits(200000),
    "claude-2": _limits(100000),
    "claude-instant-1.2": _limits(100000),
    # Google
    "gemini-2.5-pro": _limits(1000000),
    "gemini-1.5-pro": _limits(1000000),
    "gemini-2.5-flash": _limits(128000),
    "gemini-2.5-flash-lite": _limits(128000),
    "gemini-2.0-flash": _limits(128000),
    "gemini-2.0-flash-lite": _limits(128000),
    "gemini-1.0-nano-1": _limits(32768),
    # Meta
    "llama-4-maverick": _limits(1000000),
    "llama-4-scout": _limits(10000000),
    "llama-3.1-405b": _limits(128000),
    "llama-3.1-70b": _limits(128000),
    "llama-3.1-8b": _limits(128000),
    "llama-3": _limits(128000),
    "llama-2": _limits(4096),
    "llama": _limits(2048),
    # DeepSeek
    "deepseek-chat": _limits(64000),
    "deepseek-reasoner": _limits(64000),
    # Open-weight
    "gpt-oss-120b": _limits(131072),
    "gpt-oss-20b": _limits(131072),
}


def _normalize(model_id: str) -> str:
    return re.sub(r"[^a-z0-9]", "-", model_id.lower())


def lookup(model_id: str) -> TokenLimits:
    """
    Find the budget for a model id.

    Exact match first, then a fuzzy match where either normalized name
    contains the other (so "openai/gpt-4o" finds "gpt-4o"), then the
    default entry. Never raises.
    """
    if not model_id:
        return DEFAULT_LIMITS

    if model_id in MODEL_TOKEN_LIMITS:
        return MODEL_TOKEN_LIMITS[model_id]

    normalized = _normalize(model_id)
    # Longest key first so "gpt-4.1-mini" wins over "gpt-4"
    for key in sorted(MODEL_TOKEN_LIMITS, key=len, reverse=True):
        normalized_key = _normalize(key)
        if normalized_key in normalized or normalized in normalized_key:
            return MODEL_TOKEN_LIMITS[key]

    return DEFAULT_LIMITS


def token_threshold(model_id: str, preference: SegmentationPreference = SegmentationPreference.QUALITY) -> int:
    """Per-request token threshold for a model under a segmentation preference."""
    limits = lookup(model_id)
    if SegmentationPreference(preference) == SegmentationPreference.SPEED:
        return math.floor(limits.max_tokens * 0.5)
    return limits.safe_threshold
