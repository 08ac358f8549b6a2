"""
Hybrid search utilities for combining vector and keyword results.

Scores from different metrics live on different scales, so each side is
normalized to [0, 1] before the weighted sum.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from milvus_store.document import FIELD_ID

logger = logging.getLogger(__name__)

SIMILARITY_METRICS = {"COSINE", "IP"}
DISTANCE_METRICS = {"L2"}


@dataclass
class ScoredHit:
    """One hit with its normalized score and the raw value from Milvus."""

    id: str
    score: float
    distance: float
    entity: Dict[str, Any] = field(default_factory=dict)

    def row(self) -> Dict[str, Any]:
        """Entity fields plus the primary key."""
        row = dict(self.entity)
        row.setdefault(FIELD_ID, self.id)
        return row


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def normalize_vector_score(raw: float, metric_type: str) -> float:
    """
    Map a raw dense-search value to [0, 1], higher meaning more similar.

    COSINE and IP are similarities and are clamped; L2 is a distance and is
    mapped through 1 / (1 + d).
    """
    metric = (metric_type or "").upper()
    if metric in DISTANCE_METRICS:
        return 1.0 / (1.0 + max(0.0, raw))
    if metric not in SIMILARITY_METRICS:
        logger.debug("Unknown metric %s, clamping raw score", metric_type)
    return _clamp(raw)


def _hit_id(hit: Any) -> Optional[str]:
    hit_id = hit.get("id")
    if hit_id is None:
        hit_id = (hit.get("entity") or {}).get(FIELD_ID)
    return None if hit_id is None else str(hit_id)


def to_vector_hits(hits: Iterable[Any], metric_type: str) -> List[ScoredHit]:
    """Convert raw dense-search hits to ScoredHits."""
    results = []
    for hit in hits:
        hit_id = _hit_id(hit)
        if hit_id is None:
            logger.warning("Skipping search hit without id")
            continue
        raw = float(hit.get("distance", 0.0))
        results.append(
            ScoredHit(
                id=hit_id,
                score=normalize_vector_score(raw, metric_type),
                distance=raw,
                entity=dict(hit.get("entity") or {}),
            )
        )
    return results


def to_keyword_hits(hits: Iterable[Any]) -> List[ScoredHit]:
    """
    Convert raw BM25 hits to ScoredHits.

    Scores are clamped to [0, 1] independently of the other hits, so a
    weak best match stays weak and thresholds mean the same for every query.
    """
    results = []
    for hit in hits:
        hit_id = _hit_id(hit)
        if hit_id is None:
            logger.warning("Skipping search hit without id")
            continue
        raw = float(hit.get("distance", 0.0))
        results.append(
            ScoredHit(
                id=hit_id,
                score=_clamp(raw),
                distance=raw,
                entity=dict(hit.get("entity") or {}),
            )
        )
    return results


def merge_weighted_results(
    vector_hits: List[ScoredHit],
    keyword_hits: List[ScoredHit],
    vector_weight: float,
    keyword_weight: float,
) -> List[ScoredHit]:
    """
    Merge normalized vector and keyword hits with a weighted sum.

    A document missing from one side scores 0 on that side. Results are
    sorted by combined score; ties keep first-appearance order, vector
    hits before keyword hits.

    Returns:
        Merged hits whose score and distance are the combined score
    """
    vector_scores: Dict[str, float] = {}
    keyword_scores: Dict[str, float] = {}
    entities: Dict[str, Dict[str, Any]] = {}

    for hit in vector_hits:
        if hit.id not in vector_scores:
            vector_scores[hit.id] = hit.score
            entities.setdefault(hit.id, hit.entity)
    for hit in keyword_hits:
        if hit.id not in keyword_scores:
            keyword_scores[hit.id] = hit.score
            entities.setdefault(hit.id, hit.entity)

    merged = []
    for hit_id, entity in entities.items():
        combined = (
            vector_weight * vector_scores.get(hit_id, 0.0)
            + keyword_weight * keyword_scores.get(hit_id, 0.0)
        )
        merged.append(ScoredHit(id=hit_id, score=combined, distance=combined, entity=entity))

    # sorted() is stable, so equal scores keep insertion order
    merged = sorted(merged, key=lambda hit: hit.score, reverse=True)

    logger.debug(
        "Hybrid merge: vector=%d keyword=%d merged=%d weights=(%s, %s)",
        len(vector_hits),
        len(keyword_hits),
        len(merged),
        vector_weight,
        keyword_weight,
    )
    return merged


def apply_similarity_threshold(
    hits: List[ScoredHit], threshold: float, top_k: Optional[int] = None
) -> List[ScoredHit]:
    """Drop hits scoring below threshold, then keep at most top_k."""
    kept = [hit for hit in hits if hit.score >= threshold]
    if len(kept) < len(hits):
        logger.debug("Similarity threshold %s dropped %d hits", threshold, len(hits) - len(kept))
    if top_k is not None:
        kept = kept[:top_k]
    return kept
