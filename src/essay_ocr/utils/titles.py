"""
Declared-vs-detected title validation.
"""

import logging
import re
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

from ..config import TitleConfig

logger = logging.getLogger(__name__)


@dataclass
class TitleValidationResult:
    """Outcome of comparing the student's title with the detected one."""
    matched: Optional[bool]
    match_type: str = "none"  # exact, partial, similar, none
    confidence: float = 0.0
    provided_title: Optional[str] = None
    detected_title: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_title(title: str) -> str:
    """Lowercase, drop non-word characters and collapse whitespace."""
    title = re.sub(r"[^\w\s]", "", title.lower())
    return " ".join(title.split())


def title_similarity(a: str, b: str) -> float:
    """
    Normalized edit similarity in [0, 1].

    Uses the insertion/deletion distance, normalized by the combined
    length of both strings.
    """
    try:
        from rapidfuzz.distance import Indel
    except ImportError:
        raise ImportError(
            "rapidfuzz not available. Install with: pip install rapidfuzz"
        )

    if not a and not b:
        return 1.0
    return float(Indel.normalized_similarity(a, b))


def validate_title(
    provided: Optional[str],
    detected: Optional[str],
    config: Optional[TitleConfig] = None
) -> TitleValidationResult:
    """
    Compare a declared title with the extracted one.

    Decision order: no declared title, no detected title, exact match,
    containment (partial), then edit similarity against the threshold.
    """
    config = config or TitleConfig()

    normalized_provided = normalize_title(provided) if provided else ""
    if not normalized_provided:
        return TitleValidationResult(
            matched=None,
            detected_title=detected,
            reason="No title provided by student"
        )

    if not detected or not normalize_title(detected):
        return TitleValidationResult(
            matched=False,
            provided_title=provided,
            reason="No title detected in essay image"
        )

    normalized_detected = normalize_title(detected)
    logger.debug(f"Title validation: \"{normalized_provided}\" vs \"{normalized_detected}\"")

    if normalized_provided == normalized_detected:
        logger.info("Title: exact match")
        return TitleValidationResult(
            matched=True,
            match_type="exact",
            confidence=1.0,
            provided_title=provided,
            detected_title=detected
        )

    if normalized_provided in normalized_detected or normalized_detected in normalized_provided:
        logger.info("Title: partial match")
        return TitleValidationResult(
            matched=True,
            match_type="partial",
            confidence=config.partial_confidence,
            provided_title=provided,
            detected_title=detected
        )

    similarity = round(title_similarity(normalized_provided, normalized_detected), 4)

    if similarity > config.similarity_threshold:
        logger.info(f"Title: similar ({similarity:.0%})")
        return TitleValidationResult(
            matched=True,
            match_type="similar",
            confidence=similarity,
            provided_title=provided,
            detected_title=detected
        )

    logger.info(f"Title: no match ({similarity:.0%} similar)")
    return TitleValidationResult(
        matched=False,
        confidence=similarity,
        provided_title=provided,
        detected_title=detected,
        reason="Titles do not match"
    )
