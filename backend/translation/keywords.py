"""
Keyword extraction.

Asks the model backend for the key terms of a video title (names,
products, technical vocabulary). The terms go into the translation
context so every segment renders them the same way.
"""
import asyncio
from typing import Iterable, List, Optional
from loguru import logger

from config import settings
from .backends import ModelBackend
from .models import GenerationParams, TranslationContext


def merge_keywords(*groups: Iterable[str], limit: Optional[int] = None) -> List[str]:
    """Merge keyword lists in order, dropping blanks and case-insensitive duplicates"""
    merged: List[str] = []
    seen = set()
    for group in groups:
        for keyword in group:
            keyword = (keyword or "").strip()
            if not keyword or keyword.lower() in seen:
                continue
            seen.add(keyword.lower())
            merged.append(keyword)
    return merged[:limit] if limit else merged


class KeywordExtractor:
    """
    Usage:
        extractor = KeywordExtractor(backend)
        keywords = await extractor.extract(context)
    """

    def __init__(
        self,
        backend: ModelBackend,
        max_keywords: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self.backend = backend
        self.max_keywords = max_keywords or settings.MAX_KEYWORDS
        self.temperature = settings.KEYWORD_TEMPERATURE if temperature is None else temperature

    async def extract(self, context: TranslationContext) -> List[str]:
        """
        Keywords for the context's title, after any keywords it already has.

        A failed extraction is logged and leaves the existing keywords as the
        result; translation goes ahead without model-generated terms.
        """
        if not context.video_title.strip():
            return list(context.keywords)

        try:
            generated = await self.backend.extract_keywords(
                context.video_title,
                context,
                GenerationParams(temperature=self.temperature),
                self.max_keywords,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Keyword extraction failed for {context.video_title!r}: {e}")
            return list(context.keywords)

        keywords = merge_keywords(context.keywords, generated, limit=self.max_keywords)
        logger.info(f"Extracted {len(keywords)} keywords from title: {', '.join(keywords[:5])}")
        return keywords
