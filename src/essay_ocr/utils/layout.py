"""
Block layout for OCR output.

Provides:
- Block and word geometry produced by the OCR engines
- Block classification (heading, body, fragment)
- Reading order resolution with two-column detection
- Fragment rules for short, low-information blocks
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Dict, Any, Callable, Sequence
from enum import Enum

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes and Enums
# ============================================================================

class BlockType(Enum):
    """Classification of an OCR block."""
    HEADING = "heading"
    BODY = "body"
    FRAGMENT = "fragment"


@dataclass
class BoundingBox:
    """Bounding box with coordinates."""
    x1: int
    y1: int
    x2: int
    y2: int

    @property
    def width(self) -> int:
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        return self.y2 - self.y1

    @property
    def center(self) -> Tuple[int, int]:
        return ((self.x1 + self.x2) // 2, (self.y1 + self.y2) // 2)

    def to_tuple(self) -> Tuple[int, int, int, int]:
        return (self.x1, self.y1, self.x2, self.y2)

    @classmethod
    def from_xywh(cls, x: int, y: int, w: int, h: int) -> 'BoundingBox':
        return cls(x, y, x + w, y + h)

    @classmethod
    def from_vertices(cls, vertices: Sequence[Any]) -> Optional['BoundingBox']:
        """Build a box from polygon vertices exposing .x/.y (Vision API style)."""
        xs = [int(getattr(v, "x", 0) or 0) for v in vertices]
        ys = [int(getattr(v, "y", 0) or 0) for v in vertices]
        if not xs:
            return None
        return cls(min(xs), min(ys), max(xs), max(ys))

    @classmethod
    def union(cls, boxes: Sequence[Optional['BoundingBox']]) -> Optional['BoundingBox']:
        boxes = [b for b in boxes if b is not None]
        if not boxes:
            return None
        return cls(
            min(b.x1 for b in boxes),
            min(b.y1 for b in boxes),
            max(b.x2 for b in boxes),
            max(b.y2 for b in boxes)
        )


@dataclass
class Word:
    """A recognized word; confidence is on the engine's 0-1 scale."""
    text: str
    confidence: float
    bbox: Optional[BoundingBox] = None


@dataclass
class Block:
    """A geometrically grouped run of recognized text."""
    text: str
    words: List[Word] = field(default_factory=list)
    bbox: Optional[BoundingBox] = None
    block_type: BlockType = BlockType.BODY
    reading_order: int = 0
    column_index: int = 0
    page: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def confidence(self) -> float:
        """Mean word confidence, 0-100."""
        if not self.words:
            return 0.0
        return 100.0 * sum(w.confidence for w in self.words) / len(self.words)

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.block_type.value,
            "text": self.text,
            "bbox": self.bbox.to_tuple() if self.bbox else None,
            "confidence": round(self.confidence, 2),
            "reading_order": self.reading_order,
            "column_index": self.column_index,
            "page": self.page,
        }


# ============================================================================
# Reading Order
# ============================================================================

def detect_num_columns(blocks: List[Block], page_width: int) -> int:
    """Detect whether the blocks form one or two columns."""
    placed = [b for b in blocks if b.bbox is not None]
    if not placed:
        return 1

    mid = page_width / 2
    left = [b for b in placed if b.bbox.center[0] < mid * 0.8]
    right = [b for b in placed if b.bbox.center[0] > mid * 1.2]

    if len(left) >= 3 and len(right) >= 3:
        # Only a clear gutter counts as a column split
        left_max = max(b.bbox.x2 for b in left)
        right_min = min(b.bbox.x1 for b in right)
        if right_min - left_max > page_width * 0.05:
            return 2

    return 1


def assign_reading_order(blocks: List[Block]) -> List[Block]:
    """
    Sort blocks into reading order.

    Blocks are ordered by page, then column, then vertical position.
    A page with no block geometry keeps the engine order.

    Returns:
        New list of blocks with reading_order and column_index assigned
    """
    if not blocks:
        return []

    indexed = list(enumerate(blocks))
    pages = sorted({b.page for b in blocks})
    ordered = []

    for page in pages:
        page_blocks = [(i, b) for i, b in indexed if b.page == page]
        placed = [b for _, b in page_blocks if b.bbox is not None]
        page_width = max((b.bbox.x2 for b in placed), default=0)

        num_columns = detect_num_columns(placed, page_width) if page_width else 1
        column_width = page_width / num_columns if page_width else 1

        for _, block in page_blocks:
            if block.bbox is not None:
                block.column_index = min(int(block.bbox.center[0] / column_width), num_columns - 1)

        if placed:
            page_blocks.sort(key=lambda item: (
                item[1].column_index,
                item[1].bbox.y1 if item[1].bbox is not None else 0,
                item[0]
            ))
        ordered.extend(b for _, b in page_blocks)

    for i, block in enumerate(ordered):
        block.reading_order = i

    logger.debug(f"Reading order assigned to {len(ordered)} blocks on {len(pages)} page(s)")
    return ordered


# ============================================================================
# Fragment Rules
# ============================================================================

# Text left behind when the engine splits a sentence across blocks
NOISE_TOKENS = frozenset({
    "spread during",
    "spread",
    "during",
    "information",
    "however",
    "therefore",
    "thus",
    "-",
    ". -",
})

TRAILING_PUNCT = re.compile(r"[.!?;:\-]+$")


@dataclass(frozen=True)
class FragmentRule:
    """A predicate over block text marking it as a fragment."""
    name: str
    test: Callable[[str, int, int], bool]
    rationale: str


def normalize_block_text(text: str) -> str:
    """Lowercase, trim and collapse whitespace."""
    return " ".join(text.lower().split())


def is_noise_token(text: str) -> bool:
    normalized = normalize_block_text(text)
    return normalized in NOISE_TOKENS or TRAILING_PUNCT.sub("", normalized).strip() in NOISE_TOKENS


FRAGMENT_RULES = (
    FragmentRule(
        name="noise_token",
        test=lambda text, max_words, max_chars: is_noise_token(text),
        rationale="known connective or split-word leftovers",
    ),
    FragmentRule(
        name="too_short",
        test=lambda text, max_words, max_chars: (
            len(text.split()) <= max_words and len(text.strip()) < max_chars
        ),
        rationale="one or two short words carry no paragraph content",
    ),
)


def match_fragment_rule(
    text: str,
    max_words: int = 2,
    max_chars: int = 15
) -> Optional[FragmentRule]:
    """Return the first fragment rule the text matches, if any."""
    for rule in FRAGMENT_RULES:
        if rule.test(text, max_words, max_chars):
            return rule
    return None
