"""
Query expansion: one raw query in, an ordered set of query variants out.

expand(raw_query, locale, surface) -> QueryVariantSet

The normalized query (the anchor) is always element 0. Generated rewrites
follow it, de-duplicated in order and capped at max_variants in total. Any
generator problem (timeout, error, invalid or empty output) leaves just the
anchor; expand() never raises.
"""

import json
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, ValidationError

from common.cache import ResultCache
from common.config import ExpansionConfig
from common.errors import FailureKind, InsufficientResults
from common.generative import GenerationRequest, GenerativeTextService, parse_structured_output
from common.timing import call_with_deadline

logger = logging.getLogger(__name__)

# Bump whenever normalization or prompt logic changes: it is part of the cache key.
EXPANSION_LOGIC_VERSION = "qexp-v1"

SYSTEM_INSTRUCTIONS = (
    "You rewrite product search queries. Given a query, locale and surface, "
    "return up to {n} alternative phrasings that keep the same shopping intent. "
    "Do not add brands, attributes or constraints that are not in the query. "
    "Respond with JSON only, matching the schema {{\"rewrites\": [string, ...]}}."
)


class ExpansionOutput(BaseModel):
    """Schema the rewrite generator must return."""

    model_config = ConfigDict(extra="forbid", strict=True)

    rewrites: List[str]


def normalize_query(raw_query: str, max_length: int = 256) -> str:
    """
    Trim, collapse internal whitespace runs and truncate to max_length chars.

    Example:
        >>> normalize_query("  running   shoes\\n")
        'running shoes'
    """
    collapsed = " ".join((raw_query or "").split())
    return collapsed[:max_length].rstrip()


def cache_key(
    normalized_query: str, locale: str, surface: str, max_query_length: int = 256
) -> str:
    """Each free-text part is percent-encoded so ":" inside a part cannot collide."""
    parts = [surface, locale, normalized_query]
    encoded = ":".join(quote(part, safe="") for part in parts)
    return f"qexp:{EXPANSION_LOGIC_VERSION}:len{max_query_length}:{encoded}"


@dataclass(frozen=True)
class QueryVariantSet:
    """
    Ordered query variants; element 0 is always the anchor.

    Attributes:
        variants: Normalized query strings, anchor first, unique
        from_cache: Whether the variants were served from cache
        failure: Why expansion fell back to the anchor, if it did
        detail: Context for the failure
    """

    variants: Tuple[str, ...]
    from_cache: bool = False
    failure: Optional[FailureKind] = None
    detail: str = ""

    @classmethod
    def build(
        cls,
        anchor: str,
        rewrites: Sequence[str] = (),
        max_variants: int = 3,
        **kwargs,
    ) -> "QueryVariantSet":
        """Anchor first, then unique non-empty rewrites, capped at max_variants."""
        variants = [anchor]
        for rewrite in rewrites:
            if len(variants) >= max_variants:
                break
            if rewrite and rewrite not in variants:
                variants.append(rewrite)
        return cls(variants=tuple(variants), **kwargs)

    @property
    def anchor(self) -> str:
        return self.variants[0]

    @property
    def rewrites(self) -> Tuple[str, ...]:
        return self.variants[1:]

    def __iter__(self) -> Iterator[str]:
        return iter(self.variants)

    def __len__(self) -> int:
        return len(self.variants)

    def __getitem__(self, index: int) -> str:
        return self.variants[index]


class QueryExpander:
    """
    Expand queries with a generative rewriter, cached and fail-open.

    Example:
        expander = QueryExpander(generator, InMemoryTTLCache(), ExpansionConfig())
        variants = expander.expand("  wireless  earbuds ", locale="en-US", surface="search")
        variants[0]  # 'wireless earbuds'
    """

    def __init__(
        self,
        generator: Optional[GenerativeTextService],
        cache: Optional[ResultCache] = None,
        config: Optional[ExpansionConfig] = None,
        executor: Optional[Executor] = None,
    ):
        self.generator = generator
        self.cache = cache
        self.config = config or ExpansionConfig()
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="expand"
        )

    def normalize(self, raw_query: str) -> str:
        return normalize_query(raw_query, self.config.max_query_length)

    def expand(self, raw_query: str, locale: str = "", surface: str = "") -> QueryVariantSet:
        """
        Expand one query.

        Args:
            raw_query: Query as typed by the user
            locale: Request locale (part of the cache key and prompt)
            surface: Product surface (part of the cache key and prompt)

        Returns:
            QueryVariantSet with the normalized anchor first
        """
        anchor = self.normalize(raw_query)
        max_variants = self.config.max_variants

        if not anchor or not self.config.enabled or self.generator is None or max_variants <= 1:
            return QueryVariantSet.build(anchor, max_variants=max_variants)

        key = cache_key(anchor, locale, surface, self.config.max_query_length)
        if self.cache is not None:
            cached = self.cache.get(key)
            if isinstance(cached, list) and cached and cached[0] == anchor:
                return QueryVariantSet.build(
                    anchor, cached[1:], max_variants=max_variants, from_cache=True
                )

        outcome = call_with_deadline(
            self._generate_rewrites,
            self.config.timeout_ms / 1000.0,
            self.executor,
            anchor,
            locale,
            surface,
        )
        if not outcome.ok:
            logger.warning(
                f"Query expansion fell back to anchor: reason={outcome.failure.value} "
                f"detail={outcome.detail}"
            )
            return QueryVariantSet.build(
                anchor,
                max_variants=max_variants,
                failure=outcome.failure,
                detail=outcome.detail,
            )

        variants = QueryVariantSet.build(anchor, outcome.value, max_variants=max_variants)
        if not variants.rewrites:
            logger.info(f"Query expansion produced no usable rewrites for {anchor!r}")
            return QueryVariantSet(
                variants=variants.variants,
                failure=FailureKind.INSUFFICIENT_RESULTS,
                detail="no usable rewrites",
            )
        if self.cache is not None:
            self.cache.set(key, list(variants.variants), self.config.cache_ttl_seconds)
        return variants

    def _generate_rewrites(self, anchor: str, locale: str, surface: str) -> List[str]:
        request = GenerationRequest(
            system_instructions=SYSTEM_INSTRUCTIONS.format(n=self.config.max_variants - 1),
            user_payload=json.dumps({"query": anchor, "locale": locale, "surface": surface}),
            output_schema=ExpansionOutput,
            max_output_tokens=self.config.max_output_tokens,
            temperature=0.0,
            timeout_s=self.config.timeout_ms / 1000.0,
        )
        raw = self.generator.generate(request)
        try:
            output = parse_structured_output(raw, ExpansionOutput)
        except ValidationError as e:
            raise InsufficientResults(f"invalid rewrite output: {e}") from e
        return [self.normalize(rewrite) for rewrite in output.rewrites]

    def close(self) -> None:
        if self._owns_executor:
            self.executor.shutdown(wait=False)
