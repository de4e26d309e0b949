"""
Fallback chain resolution for failed provider calls.
Walks alternate live sources, then cached results, then placeholder data.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
import structlog

from healthdata.resilience.errors import ClassifiedError, DataUnavailable
from healthdata.resilience.retry_policy import RetryConfig

logger = structlog.get_logger()

CACHE_SOURCE = "cache"
PLACEHOLDER_SOURCE = "placeholder"
UNKNOWN_SUBJECT = "unknown"

DEFAULT_FALLBACK_CHAIN: Tuple[str, ...] = (CACHE_SOURCE, PLACEHOLDER_SOURCE)

# disease.sh leads where it covers the subject since it needs no API key.
DEFAULT_FALLBACK_PRIORITY: Dict[str, Tuple[str, ...]] = {
    "hiv": ("disease.sh", "cdc", "who", CACHE_SOURCE, PLACEHOLDER_SOURCE),
    "aids": ("disease.sh", "cdc", "who", CACHE_SOURCE, PLACEHOLDER_SOURCE),
    "covid": ("disease.sh", CACHE_SOURCE, PLACEHOLDER_SOURCE),
    "influenza": ("disease.sh", "cdc", CACHE_SOURCE, PLACEHOLDER_SOURCE),
    "tuberculosis": ("disease.sh", "cdc", CACHE_SOURCE, PLACEHOLDER_SOURCE),
    "herpes": ("nhanes", "cdc", CACHE_SOURCE, PLACEHOLDER_SOURCE),
    "hsv1": ("nhanes", CACHE_SOURCE, PLACEHOLDER_SOURCE),
    "hsv2": ("nhanes", CACHE_SOURCE, PLACEHOLDER_SOURCE),
    "hpv": ("hpv-impact", "cdc", CACHE_SOURCE, PLACEHOLDER_SOURCE),
    "syphilis": ("disease.sh", "cdc", CACHE_SOURCE, PLACEHOLDER_SOURCE),
    "gonorrhea": ("disease.sh", "cdc", CACHE_SOURCE, PLACEHOLDER_SOURCE),
    "chlamydia": ("disease.sh", "cdc", CACHE_SOURCE, PLACEHOLDER_SOURCE),
}


@dataclass
class CacheEntry:
    """A cached collaborator result and when it was stored (epoch seconds)."""
    data: Any
    timestamp: float


@dataclass
class Collaborator:
    """A data source the fallback chain can query directly."""
    query: Callable[[Dict[str, Any]], Awaitable[Any]]
    cache: Optional[Mapping[str, Any]] = None


def cache_key(params: Optional[Mapping[str, Any]]) -> str:
    """Key under which collaborators cache the result for these request params."""
    return json.dumps(dict(params or {}), sort_keys=True, default=str)


def normalize_subject(subject_key: Optional[str]) -> str:
    if not subject_key:
        return UNKNOWN_SUBJECT
    return subject_key.strip().lower()


def _as_cache_entry(value: Any) -> Optional[CacheEntry]:
    if value is None:
        return None
    if isinstance(value, CacheEntry):
        return value
    if isinstance(value, Mapping) and "data" in value and "timestamp" in value:
        return CacheEntry(data=value["data"], timestamp=value["timestamp"])
    return None


def annotate(result: Any, **metadata: Any) -> Dict[str, Any]:
    """Merge metadata into a result's ``metadata`` block, wrapping non-dict results."""
    if isinstance(result, Mapping):
        annotated = dict(result)
        annotated["metadata"] = {**(result.get("metadata") or {}), **metadata}
        return annotated
    return {"data": result, "metadata": dict(metadata)}


class FallbackChainResolver:
    """
    Resolves a failed call through the subject's fallback chain.

    Each source gets exactly one attempt, tried one after another. A source
    that raises or returns nothing is logged and skipped.
    """

    def __init__(
        self,
        priority: Optional[Mapping[str, Sequence[str]]] = None,
        default_chain: Sequence[str] = DEFAULT_FALLBACK_CHAIN,
        clock: Callable[[], float] = time.time,
    ):
        source = DEFAULT_FALLBACK_PRIORITY if priority is None else priority
        self.priority: Dict[str, Tuple[str, ...]] = {
            normalize_subject(subject): tuple(chain) for subject, chain in source.items()
        }
        self.default_chain = tuple(default_chain)
        self._clock = clock

    def chain_for(self, subject_key: Optional[str]) -> Tuple[str, ...]:
        return self.priority.get(normalize_subject(subject_key), self.default_chain)

    async def resolve(
        self,
        provider: str,
        failed_error: ClassifiedError,
        subject_key: Optional[str],
        collaborators: Optional[Mapping[str, Collaborator]] = None,
        params: Optional[Mapping[str, Any]] = None,
        config: Optional[RetryConfig] = None,
    ) -> Dict[str, Any]:
        """
        Try each fallback source in priority order, skipping the failed provider.

        Returns:
            The first source's result, annotated with fallback metadata

        Raises:
            DataUnavailable: If every source in the chain came up empty
        """
        subject = normalize_subject(subject_key)
        collaborators = collaborators or {}
        params = dict(params or {})
        config = config or RetryConfig()
        tried: List[str] = []

        for source in self.chain_for(subject):
            if source == provider:
                continue
            tried.append(source)

            try:
                result = await self._try_source(source, subject, collaborators, params, config)
            except Exception as e:
                logger.warning(
                    "fallback_source_failed",
                    provider=provider,
                    source=source,
                    subject=subject,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            if result is None:
                logger.debug("fallback_source_empty", provider=provider, source=source, subject=subject)
                continue

            logger.info(
                "fallback_source_success",
                provider=provider,
                source=source,
                subject=subject,
            )
            return annotate(
                result,
                fallback=True,
                original_service=provider,
                fallback_source=source,
                original_error=failed_error.message,
            )

        logger.error(
            "fallback_chain_exhausted",
            provider=provider,
            subject=subject,
            sources_tried=tried,
            error_type=failed_error.kind.name,
        )
        raise DataUnavailable(
            provider=provider,
            original_kind=failed_error.kind,
            original_message=failed_error.message,
            subject_key=subject,
            sources_tried=tried,
        )

    async def _try_source(
        self,
        source: str,
        subject: str,
        collaborators: Mapping[str, Collaborator],
        params: Dict[str, Any],
        config: RetryConfig,
    ) -> Optional[Any]:
        if source == CACHE_SOURCE:
            return self._from_cache(collaborators, params, config)
        if source == PLACEHOLDER_SOURCE:
            return self._placeholder(subject, params, config)

        collaborator = collaborators.get(source)
        if collaborator is None:
            logger.debug("fallback_source_unavailable", source=source)
            return None
        return await collaborator.query(dict(params))

    def _from_cache(
        self,
        collaborators: Mapping[str, Collaborator],
        params: Dict[str, Any],
        config: RetryConfig,
    ) -> Optional[Dict[str, Any]]:
        """Most recent cached result for these params across every collaborator."""
        if not config.fallback_to_cached:
            return None

        key = cache_key(params)
        newest: Optional[CacheEntry] = None
        newest_source: Optional[str] = None
        for name, collaborator in collaborators.items():
            if not collaborator.cache:
                continue
            entry = _as_cache_entry(collaborator.cache.get(key))
            if entry is not None and (newest is None or entry.timestamp > newest.timestamp):
                newest, newest_source = entry, name

        if newest is None:
            return None
        return annotate(
            newest.data,
            source=CACHE_SOURCE,
            cached_from=newest_source,
            cache_age=max(0.0, self._clock() - newest.timestamp),
        )

    def _placeholder(
        self,
        subject: str,
        params: Dict[str, Any],
        config: RetryConfig,
    ) -> Optional[Dict[str, Any]]:
        if not config.fallback_to_placeholder:
            return None

        return {
            "success": True,
            "data": [{
                "disease": subject,
                "region": params.get("region", UNKNOWN_SUBJECT),
                "year": params.get("year", UNKNOWN_SUBJECT),
                "cases": 0,
                "rate": 0,
                "note": "Placeholder data - actual data unavailable",
            }],
            "metadata": {
                "source": PLACEHOLDER_SOURCE,
                "data_quality": PLACEHOLDER_SOURCE,
                "warning": "This is placeholder data. Actual surveillance data is temporarily unavailable.",
            },
        }
