"""
Moderation - Content Classifier Adapters.

============================================================
PURPOSE
============================================================
The content classifier is an external collaborator that
decides whether text is offensive. This module defines its
interface and three adapters:

- WordListClassifier: local word-boundary term matching
- HttpContentClassifier: remote classification service (aiohttp)
- CachingClassifier: LRU/TTL cache in front of any classifier

============================================================
CONTRACT
============================================================
classify(text, correlation_id) -> ClassifierVerdict

correlation_id is unique per call. Failures raise
ClassifierError; the engine turns them into a fail-open result.

============================================================
"""

import asyncio
import hashlib
import logging
import re
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

import aiohttp

from cache.lru_cache import LRUCache
from core.exceptions import ClassifierError
from moderation.types import ClassifierVerdict


logger = logging.getLogger(__name__)


# ============================================================
# INTERFACE
# ============================================================

class ContentClassifier(ABC):
    """Interface for content classifiers."""

    name: str = "classifier"

    @abstractmethod
    async def classify(
        self,
        text: str,
        correlation_id: str,
        strict: bool = False,
    ) -> ClassifierVerdict:
        """
        Classify text.

        Args:
            text: Text to classify
            correlation_id: Unique id for this call
            strict: Use the stricter rule set where supported

        Raises:
            ClassifierError: If classification could not be performed
        """
        pass

    async def close(self) -> None:
        """Release resources held by the classifier."""
        return None


# ============================================================
# WORD LIST
# ============================================================

class WordListClassifier(ContentClassifier):
    """
    Matches whole words from a term list, case-insensitively.

    strict_terms are only applied when strict=True.
    """

    name = "word_list"

    def __init__(self, terms: Iterable[str], strict_terms: Optional[Iterable[str]] = None):
        self._terms = self._compile(terms)
        self._strict_terms = self._compile(strict_terms or [])

    @staticmethod
    def _compile(terms: Iterable[str]) -> List[tuple]:
        compiled = []
        for term in terms:
            term = term.strip().lower()
            if term:
                compiled.append(
                    (term, re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE))
                )
        return compiled

    async def classify(
        self,
        text: str,
        correlation_id: str,
        strict: bool = False,
    ) -> ClassifierVerdict:
        patterns = self._terms + (self._strict_terms if strict else [])
        found = [term for term, pattern in patterns if pattern.search(text or "")]
        return ClassifierVerdict(is_offensive=bool(found), offending_terms=found)


# ============================================================
# HTTP SERVICE
# ============================================================

class HttpContentClassifier(ContentClassifier):
    """
    Remote classifier over HTTP.

    POSTs {"text", "correlation_id", "strict"} and expects
    {"is_offensive": bool, "offending_terms": [str]}.
    """

    name = "http"

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 5.0,
    ):
        self._endpoint = endpoint
        self._api_key = api_key
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            headers = {}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._session = aiohttp.ClientSession(headers=headers, timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def classify(
        self,
        text: str,
        correlation_id: str,
        strict: bool = False,
    ) -> ClassifierVerdict:
        payload = {
            "text": text,
            "correlation_id": correlation_id,
            "strict": strict,
        }

        try:
            session = await self._get_session()
            async with session.post(self._endpoint, json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    raise ClassifierError(
                        f"Classifier HTTP {response.status}: {body[:200]}",
                        context={"correlation_id": correlation_id},
                    )
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ClassifierError(
                f"Classifier request failed: {e!r}",
                context={"correlation_id": correlation_id},
                cause=e,
            ) from e
        except ValueError as e:
            raise ClassifierError(
                f"Classifier returned undecodable body: {e}",
                context={"correlation_id": correlation_id},
                cause=e,
            ) from e

        if not isinstance(data, dict) or "is_offensive" not in data:
            raise ClassifierError(
                "Classifier returned malformed response",
                context={"correlation_id": correlation_id},
            )

        return ClassifierVerdict(
            is_offensive=bool(data["is_offensive"]),
            offending_terms=[str(t) for t in data.get("offending_terms") or []],
        )


# ============================================================
# CACHING
# ============================================================

class CachingClassifier(ContentClassifier):
    """
    Caches verdicts of another classifier by text hash.

    Only successful verdicts are cached; errors propagate.
    """

    name = "caching"

    def __init__(self, inner: ContentClassifier, cache: LRUCache):
        self._inner = inner
        self._cache = cache

    @property
    def cache(self) -> LRUCache:
        return self._cache

    @staticmethod
    def cache_key(text: str, strict: bool) -> str:
        digest = hashlib.sha256((text or "").encode("utf-8")).hexdigest()
        return f"{'strict' if strict else 'std'}:{digest}"

    async def classify(
        self,
        text: str,
        correlation_id: str,
        strict: bool = False,
    ) -> ClassifierVerdict:
        key = self.cache_key(text, strict)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Classifier cache hit [{correlation_id}]")
            return ClassifierVerdict(
                is_offensive=cached.is_offensive,
                offending_terms=list(cached.offending_terms),
            )

        verdict = await self._inner.classify(text, correlation_id, strict=strict)
        self._cache.set(key, verdict)
        return verdict

    async def close(self) -> None:
        await self._inner.close()
