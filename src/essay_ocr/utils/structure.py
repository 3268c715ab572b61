"""
Essay structure extraction.

Turns an ordered sequence of content units (OCR blocks or text lines) into
an optional title, ordered unique section names and paragraphs attributed
to sections. One extractor serves both inputs; a SegmentationPolicy holds
the thresholds that differ between them.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, Iterable, Union, Sequence

from ..config import SegmentationPolicy, StructureConfig, LINE_POLICY
from .layout import Block, BlockType, BoundingBox, match_fragment_rule

logger = logging.getLogger(__name__)


# ============================================================================
# Header Rules
# ============================================================================

@dataclass(frozen=True)
class HeaderRule:
    """A pattern that marks a unit as a section header."""
    name: str
    pattern: re.Pattern
    rationale: str


def _rule(name: str, pattern: str, rationale: str, flags: int = re.IGNORECASE) -> HeaderRule:
    return HeaderRule(name, re.compile(pattern, flags), rationale)


_LIST_WORDS = r"(?:advantages|disadvantages|benefits|drawbacks|pros|cons)"

HEADER_RULES = (
    _rule("introduction", r"(?:introduction|intoduction)", "opening section; includes a common misspelling"),
    _rule("conclusion", r"(?:in\s+)?conclusions?", "closing section"),
    _rule("summary", r"(?:summary|in\s+summary|to\s+summarize)", "closing section"),
    _rule("body", r"(?:main\s+)?body", "explicit body marker"),
    _rule("abstract", r"abstract", "report-style essays"),
    _rule(
        "report_sections",
        r"(?:discussion|analysis|methodology|results|findings)",
        "research-report layout",
    ),
    _rule("references", r"(?:references|bibliography|works\s+cited)", "citation list at the end"),
    _rule(
        "pros_cons",
        rf"(?:the\s+)?{_LIST_WORDS}(?:\s+(?:and|&)\s+{_LIST_WORDS})?(?:\s+of\s+.{{1,40}})?",
        "argumentative essays",
    ),
    _rule(
        "good_bad_parts",
        r"(?:the\s+)?(?:good|bad)\s+(?:parts?|sides?|aspects?|ports?)\s+of\s+.{1,40}",
        "'ports' is a frequent handwriting misread of 'parts'",
    ),
    _rule("numbered", r"\d{1,2}[.)]\s+[A-Z].*", "numbered headings", flags=0),
    _rule("roman", r"(?:I|II|III|IV|V|VI|VII|VIII|IX|X)[.)]\s+[A-Z].*", "roman-numbered headings", flags=0),
    _rule(
        "chapter",
        r"(?:chapter|part|section)\s+(?:\d+|[ivx]+|one|two|three|four|five)\b.*",
        "long-form submissions",
    ),
)

STANDALONE_HEADERS = frozenset({
    "introduction",
    "intoduction",
    "conclusion",
    "body",
    "summary",
    "abstract",
    "advantages",
    "disadvantages",
    "references",
    "bibliography",
    "discussion",
    "analysis",
    "methodology",
    "results",
    "findings",
})

HEADER_TRAILING = re.compile(r"[\s.:;,\-]+$")
SENTENCE_END = (".", "!", "?", ",")
TITLE_END = (".", "!", "?", ",", ";", ":")


def header_name(text: str) -> str:
    """Section name for a header unit: trimmed, without trailing punctuation."""
    return HEADER_TRAILING.sub("", text.strip())


def match_header_rule(text: str) -> Optional[HeaderRule]:
    """Return the header rule matched by the text, if any."""
    name = header_name(text)
    for rule in HEADER_RULES:
        if rule.pattern.fullmatch(name):
            return rule
    return None


def is_header_text(text: str) -> bool:
    """True if the text matches a header rule or is a standalone header word."""
    if match_header_rule(text):
        return True
    letters = re.sub(r"[^a-z\s]", "", text.lower()).strip()
    return letters in STANDALONE_HEADERS


def section_key(name: str) -> str:
    """Case- and whitespace-insensitive identity of a section name."""
    return " ".join(name.casefold().split())


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ContentUnit:
    """
    One segment of input text.

    Lines and OCR blocks both become units; `break_before` marks a blank
    line preceding the unit.
    """
    text: str
    index: int = 0
    bbox: Optional[BoundingBox] = None
    confidence: Optional[float] = None
    break_before: bool = False
    kind: Optional[BlockType] = None
    source: Optional[Block] = None

    @property
    def word_count(self) -> int:
        return len(self.text.split())


@dataclass
class Paragraph:
    """A paragraph attributed to a section."""
    section: str
    text: str
    order: int
    word_count: int = 0
    char_count: int = 0
    confidence: Optional[float] = None

    @classmethod
    def build(cls, section: str, text: str, order: int, confidence: Optional[float] = None) -> 'Paragraph':
        return cls(
            section=section,
            text=text,
            order=order,
            word_count=len(text.split()),
            char_count=len(text),
            confidence=confidence
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section": self.section,
            "text": self.text,
            "order": self.order,
            "word_count": self.word_count,
            "char_count": self.char_count,
            "confidence": self.confidence,
        }


@dataclass
class StructureResult:
    """Title, sections and paragraphs of one essay."""
    title: Optional[str] = None
    sections: List[str] = field(default_factory=list)
    paragraphs: List[Paragraph] = field(default_factory=list)

    @property
    def content_text(self) -> str:
        """Paragraph text only, joined by spaces."""
        return " ".join(p.text for p in self.paragraphs).strip()

    def full_text(self, default_section: Optional[str] = None) -> str:
        """
        Title, section headers and paragraphs separated by blank lines.

        The default bucket is not a header in the source, so it is not
        written out.
        """
        parts = [self.title] if self.title else []
        shown = {section_key(default_section)} if default_section else set()
        for paragraph in self.paragraphs:
            key = section_key(paragraph.section)
            if key not in shown:
                shown.add(key)
                parts.append(paragraph.section)
            parts.append(paragraph.text)
        return "\n\n".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "sections": list(self.sections),
            "paragraphs": [p.to_dict() for p in self.paragraphs],
        }


# ============================================================================
# Unit Builders
# ============================================================================

def units_from_lines(text: Union[str, Sequence[str]]) -> List[ContentUnit]:
    """Split text (or pre-split lines) into line units, recording blank-line breaks."""
    lines = text.split("\n") if isinstance(text, str) else list(text)

    units = []
    pending_break = False
    for line in lines:
        stripped = line.strip()
        if not stripped:
            pending_break = True
            continue
        units.append(ContentUnit(text=stripped, index=len(units), break_before=pending_break))
        pending_break = False
    return units


def units_from_blocks(blocks: Iterable[Block]) -> List[ContentUnit]:
    """Wrap reading-ordered blocks as units carrying geometry and confidence."""
    units = []
    for block in blocks:
        text = " ".join(block.text.split())
        if not text:
            continue
        units.append(ContentUnit(
            text=text,
            index=len(units),
            bbox=block.bbox,
            confidence=block.confidence if block.words else None,
            source=block
        ))
    return units


# ============================================================================
# Extractor
# ============================================================================

class StructureExtractor:
    """
    Heuristic title/section/paragraph segmentation.

    Args:
        policy: Thresholds for the input kind (LINE_POLICY or BLOCK_POLICY)
        config: Title bounds, default bucket and reserved sections
    """

    def __init__(
        self,
        policy: SegmentationPolicy = LINE_POLICY,
        config: Optional[StructureConfig] = None
    ):
        self.policy = policy
        self.config = config or StructureConfig()
        self._reserved = {section_key(s) for s in self.config.reserved_sections}

    @classmethod
    def for_lines(cls, config: Optional[StructureConfig] = None) -> 'StructureExtractor':
        config = config or StructureConfig()
        return cls(config.lines, config)

    @classmethod
    def for_blocks(cls, config: Optional[StructureConfig] = None) -> 'StructureExtractor':
        config = config or StructureConfig()
        return cls(config.blocks, config)

    def extract(self, units: Sequence[ContentUnit]) -> StructureResult:
        """
        Segment units into a StructureResult.

        Identical input always yields identical output.
        """
        units = [u for u in units if u.text.strip()]
        if self.policy.reject_fragments:
            units = self._reject_fragments(units)

        result = StructureResult()
        if not units:
            return result

        if self.is_title(units[0].text):
            result.title = units[0].text.strip()
            units = units[1:]
            logger.info(f"Title: \"{result.title}\"")

        seen: Dict[str, str] = {}
        current: Optional[str] = None
        buffer: List[ContentUnit] = []
        total = len(units)

        for position, unit in enumerate(units):
            if self.is_header(unit.text, position, total):
                self._flush(buffer, current, result)
                buffer = []
                name = header_name(unit.text)
                key = section_key(name)
                if key not in seen:
                    seen[key] = name
                    result.sections.append(name)
                    logger.info(f"Section: \"{name}\"")
                current = seen[key]
                self._mark(unit, BlockType.HEADING)
                continue

            if unit.break_before and buffer:
                self._flush(buffer, current, result)
                buffer = []
            buffer.append(unit)
            self._mark(unit, BlockType.BODY)

        self._flush(buffer, current, result)
        self._post_validate(result)

        logger.info(
            f"Structure: {len(result.sections)} sections, {len(result.paragraphs)} paragraphs"
        )
        return result

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def is_title(self, text: str) -> bool:
        text = text.strip()
        words = len(text.split())
        cfg = self.config
        return (
            cfg.title_min_chars <= len(text) <= cfg.title_max_chars
            and text[:1].isupper()
            and cfg.title_min_words <= words <= cfg.title_max_words
            and not text.endswith(TITLE_END)
            and not is_header_text(text)
        )

    def is_header(self, text: str, position: int = 0, total: int = 1) -> bool:
        """
        Decide whether a unit is a section header.

        Args:
            text: Unit text
            position: Index of the unit among the units after the title
            total: Number of such units
        """
        raw = text.strip()
        if raw.endswith(SENTENCE_END):
            return False

        name = header_name(raw)
        words = len(name.split())
        if not 1 <= words <= self.policy.max_header_words:
            return False

        if not is_header_text(name):
            return False

        fraction = self.policy.header_tail_fraction
        if fraction is not None and position >= total * (1 - fraction):
            logger.debug(f"Rejected header near end: \"{raw}\"")
            return False

        if words == 1 and len(name) < self.policy.single_word_header_min_chars:
            return False

        return True

    def is_substantial(self, text: str) -> bool:
        text = text.strip()
        return (
            len(text.split()) >= self.policy.min_paragraph_words
            and len(text) >= self.policy.min_paragraph_chars
        )

    def _reject_fragments(self, units: List[ContentUnit]) -> List[ContentUnit]:
        kept = []
        for unit in units:
            rule = match_fragment_rule(
                unit.text,
                self.policy.fragment_max_words,
                self.policy.fragment_max_chars
            )
            if rule is not None and (rule.name == "noise_token" or not is_header_text(unit.text)):
                logger.debug(f"Filtering out fragment ({rule.name}): \"{unit.text}\"")
                self._mark(unit, BlockType.FRAGMENT)
                continue
            kept.append(unit)
        return kept

    @staticmethod
    def _mark(unit: ContentUnit, kind: BlockType) -> None:
        unit.kind = kind
        if unit.source is not None:
            unit.source.block_type = kind

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _flush(
        self,
        buffer: List[ContentUnit],
        section: Optional[str],
        result: StructureResult
    ) -> None:
        if not buffer:
            return

        text = " ".join(u.text for u in buffer).strip()
        if not self.is_substantial(text):
            logger.debug(f"Dropped short paragraph ({len(text.split())} words): \"{text[:40]}\"")
            return

        confidences = [u.confidence for u in buffer if u.confidence is not None]
        confidence = round(sum(confidences) / len(confidences), 2) if confidences else None

        result.paragraphs.append(Paragraph.build(
            section=section or self.config.default_section,
            text=text,
            order=len(result.paragraphs),
            confidence=confidence
        ))

    def _post_validate(self, result: StructureResult) -> None:
        paragraphs = []
        for paragraph in result.paragraphs:
            if result.title and result.title in paragraph.text:
                text = paragraph.text
                # Removing one occurrence can join its neighbours into another
                while result.title in text:
                    text = " ".join(text.replace(result.title, " ").split())
                if not self.is_substantial(text):
                    logger.debug("Dropped paragraph left empty after removing the title")
                    continue
                paragraph = Paragraph.build(paragraph.section, text, 0, paragraph.confidence)
            paragraphs.append(paragraph)

        known = {section_key(s) for s in result.sections}
        for paragraph in paragraphs:
            key = section_key(paragraph.section)
            if key not in known:
                # Only content before the first header lacks a section
                result.sections.insert(0, paragraph.section)
                known.add(key)

        used = {section_key(p.section) for p in paragraphs}
        result.sections = [
            s for s in result.sections
            if section_key(s) in used or section_key(s) in self._reserved
        ]

        for order, paragraph in enumerate(paragraphs):
            paragraph.order = order
        result.paragraphs = paragraphs
