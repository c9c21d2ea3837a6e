"""
Guess the table type of a file from its header names.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from app.domain.imports.dataset import normalize_header
from app.domain.imports.registry import MapperRegistry

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.3


@dataclass(frozen=True)
class DetectedTable:
    table_type: str
    confidence: float
    matched_columns: Tuple[str, ...]


def _comparable(name: str) -> str:
    return normalize_header(name).replace(" ", "").replace("_", "").lower()


def score_headers(headers: Iterable[str], registry: MapperRegistry) -> List[DetectedTable]:
    """
    Score every registered table type against the headers.

    Confidence is the weighted share of the mapper's columns present in the
    headers; required columns weigh double.
    """
    present = {_comparable(header) for header in headers if header is not None}
    scores: List[DetectedTable] = []
    for descriptor in registry.descriptors():
        total_weight = 0
        matched_weight = 0
        matched: List[str] = []
        for column in descriptor.columns:
            weight = 2 if column.required else 1
            total_weight += weight
            if _comparable(column.name) in present:
                matched_weight += weight
                matched.append(column.name)
        confidence = matched_weight / total_weight if total_weight else 0.0
        scores.append(DetectedTable(descriptor.table_type, round(confidence, 4), tuple(matched)))
    scores.sort(key=lambda item: item.confidence, reverse=True)
    return scores


def detect_table_type(
    headers: Iterable[str],
    registry: MapperRegistry,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
) -> Optional[DetectedTable]:
    """
    Return the best matching table type, or None below ``min_confidence``.
    """
    scores = score_headers(headers, registry)
    if not scores or scores[0].confidence < min_confidence:
        logger.info("No table type detected (best score %.2f)", scores[0].confidence if scores else 0.0)
        return None
    best = scores[0]
    logger.info(f"Detected table type {best.table_type} with confidence {best.confidence:.2f}")
    return best
