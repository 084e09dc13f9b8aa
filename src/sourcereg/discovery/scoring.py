"""Topic-to-asset scoring.

A free-text topic is tokenized and each term is weighted by where it
appears in a candidate: title, subject tags, category, description, or a
fuzzy substring of any candidate token. Generic words ("introduction",
"fundamentals", ...) earn reduced weight, and a match made only of
generic words is scaled down so "java fundamentals" does not select
"Fundamentals of Nursing".
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, NamedTuple, TypeVar

import structlog
from rapidfuzz import fuzz

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from sourcereg.models.discovery import DocSource
    from sourcereg.models.registry import AssetCandidate

log = structlog.get_logger()

T = TypeVar("T")

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")

GENERIC_WORDS: frozenset[str] = frozenset({
    "introduction", "fundamentals", "basics", "principles", "concepts",
    "guide", "learn", "learning", "course", "study", "tutorial",
    "the", "and", "for", "with", "from", "into",
})

# Queries containing these need a subject-tag hit to be trusted.
TECHNICAL_TERMS: frozenset[str] = frozenset({
    "programming", "coding", "software", "java", "python", "javascript", "react",
    "database", "algorithm", "data", "structure", "web", "api", "machine",
    "learning", "artificial", "intelligence", "computer", "science",
})

# A query term that names one technology must not match a source whose
# keywords name a similarly spelled different one.
CONFLICTING_TERMS: dict[str, tuple[str, ...]] = {
    "java": ("javascript", "js"),
    "javascript": ("java",),
    "js": ("java",),
    "c": ("cpp", "csharp", "c++", "c#"),
    "cpp": ("c", "csharp"),
    "csharp": ("c", "cpp"),
}


def tokenize(text: str | None, min_length: int = 3) -> list[str]:
    """Lowercase, replace non-alphanumerics with spaces, split, drop short tokens."""
    if not text:
        return []
    cleaned = _NON_ALNUM_RE.sub(" ", text.lower())
    return [token for token in cleaned.split() if len(token) >= min_length]


@dataclass(frozen=True)
class ScoringWeights:
    title: int
    subject: int
    category: int
    description: int
    fuzzy: int = 0
    generic_title: int = 2
    generic_subject: int = 2
    generic_other: int = 1
    multi_term_bonus: int = 3
    require_subject_for_technical: bool = False
    min_token_length: int = 3


TEXTBOOK_WEIGHTS = ScoringWeights(
    title=10, subject=8, category=3, description=3, fuzzy=1, require_subject_for_technical=True
)
COURSE_WEIGHTS = ScoringWeights(
    title=15, subject=10, category=8, description=5, multi_term_bonus=2
)
DOCS_WEIGHTS = ScoringWeights(
    title=10, subject=15, category=0, description=5, min_token_length=2
)


@dataclass(frozen=True)
class MatchTarget:
    """The text fields of a candidate that scoring looks at."""

    title: str
    subjects: Sequence[str] = ()
    categories: Sequence[str] = ()
    description: str = ""
    keywords: frozenset[str] = field(default_factory=frozenset)


def _as_list(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item]
    return []


def target_from_candidate(candidate: AssetCandidate) -> MatchTarget:
    """Textbook and course candidates carry their tags in ``metadata``."""
    meta = candidate.metadata
    return MatchTarget(
        title=candidate.title,
        subjects=_as_list(meta.get("subjects")) + _as_list(meta.get("topics")),
        categories=_as_list(meta.get("categories")) + _as_list(meta.get("department")),
        description=candidate.description or "",
    )


def target_from_doc(doc: DocSource) -> MatchTarget:
    return MatchTarget(
        title=doc.name,
        subjects=doc.keywords,
        description=doc.description,
        keywords=frozenset(kw.lower() for kw in doc.keywords),
    )


class MatchScore(NamedTuple):
    score: int
    matched_terms: list[str]


def score_topic_match(
    terms: Sequence[str],
    candidate: MatchTarget,
    weights: ScoringWeights,
    conflicts: Mapping[str, Sequence[str]] | None = None,
) -> MatchScore:
    """Score ``candidate`` against already-tokenized topic ``terms``."""
    n = weights.min_token_length
    if conflicts:
        for term in terms:
            if candidate.keywords.intersection(conflicts.get(term, ())):
                log.debug("topic_match_conflict", title=candidate.title, term=term)
                return MatchScore(0, [])

    title_tokens = set(tokenize(candidate.title, n))
    subject_tokens = {t for s in candidate.subjects for t in tokenize(s, n)} | candidate.keywords
    category_tokens = {t for c in candidate.categories for t in tokenize(c, n)}
    description_tokens = set(tokenize(candidate.description, n))
    all_tokens = title_tokens | subject_tokens | category_tokens | description_tokens

    score = 0
    matched: list[str] = []
    subject_hits = 0
    for term in terms:
        generic = term in GENERIC_WORDS
        # Highest-weighted location wins for each term.
        hits: list[tuple[int, str]] = []
        if term in title_tokens:
            hits.append((weights.generic_title if generic else weights.title, "title"))
        if term in subject_tokens:
            hits.append((weights.generic_subject if generic else weights.subject, "subject"))
        if weights.category and term in category_tokens:
            hits.append((weights.generic_other if generic else weights.category, "category"))
        if weights.description and term in description_tokens:
            hits.append((weights.generic_other if generic else weights.description, "description"))

        if hits:
            weight, location = max(hits, key=lambda hit: hit[0])
            score += weight
            matched.append(term)
            if location == "subject":
                subject_hits += 1
            continue

        if weights.fuzzy and not generic:
            if any(fuzz.partial_ratio(term, token) == 100 for token in all_tokens):
                score += weights.fuzzy
                matched.append(term)

    meaningful = sum(1 for term in matched if term not in GENERIC_WORDS)
    if meaningful > 1:
        score += meaningful * weights.multi_term_bonus

    if matched and meaningful == 0:
        score = math.floor(score * 0.3)
        log.debug("topic_match_generic_only", title=candidate.title, score=score)

    if (
        weights.require_subject_for_technical
        and subject_hits == 0
        and any(term in TECHNICAL_TERMS for term in terms)
    ):
        score = math.floor(score * 0.4)
        log.debug("topic_match_no_subject", title=candidate.title, score=score)

    return MatchScore(score, matched)


def rank_matches(
    topic: str,
    items: Iterable[T],
    target_of: Callable[[T], MatchTarget],
    weights: ScoringWeights,
    conflicts: Mapping[str, Sequence[str]] | None = None,
) -> list[tuple[T, MatchScore]]:
    """Score every item against ``topic``; return those above zero, best first."""
    terms = tokenize(topic, weights.min_token_length)
    ranked = [
        (item, result)
        for item in items
        if (result := score_topic_match(terms, target_of(item), weights, conflicts)).score > 0
    ]
    ranked.sort(key=lambda pair: pair[1].score, reverse=True)
    return ranked
