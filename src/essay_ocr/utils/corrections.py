"""
OCR artifact correction.

Fixes character and word confusions introduced by recognition engines.
Genuine spelling mistakes are left alone: the grader scores them.

Passes, in order:
1. Normalization (no correction records)
2. Character-confusion rules (0/o, l/1, ||/ll, rn/m)
3. Fixed word-confusion table (teh/the, adn/and, ...)
4. Structural cleanup (sentence spacing, standalone "i", whitespace)
"""

import logging
import re
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Any, List, Optional, Tuple

logger = logging.getLogger(__name__)

CHARACTER_CONFUSION = "character_confusion"
OCR_ERROR = "ocr_error"


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class Correction:
    """One applied OCR correction."""
    type: str
    original: str
    replacement: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ConfusionRule:
    """A regex substitution for a known engine misread."""
    pattern: re.Pattern
    replacement: str
    reason: str
    type: str = CHARACTER_CONFUSION


# ============================================================================
# Rule Tables
# ============================================================================

CHARACTER_RULES = (
    ConfusionRule(re.compile(r"\b0(?=[a-z])", re.IGNORECASE), "o", "OCR confusion: 0→o"),
    ConfusionRule(re.compile(r"\bl(?=\d)"), "1", "OCR confusion: l→1"),
    ConfusionRule(re.compile(r"\|\|"), "ll", "OCR confusion: ||→ll"),
)

WORD_RULES = (
    ConfusionRule(re.compile(r"\bteh\b", re.IGNORECASE), "the", "OCR confusion: teh→the", OCR_ERROR),
    ConfusionRule(re.compile(r"\badn\b", re.IGNORECASE), "and", "OCR confusion: adn→and", OCR_ERROR),
    ConfusionRule(re.compile(r"\btbe\b", re.IGNORECASE), "the", "OCR confusion: tbe→the", OCR_ERROR),
    ConfusionRule(re.compile(r"\bwlth\b", re.IGNORECASE), "with", "OCR confusion: wlth→with", OCR_ERROR),
)

# Words that legitimately contain "rn"; any word containing one is left alone
RN_ALLOWLIST = (
    "learn", "modern", "turn", "return", "concern", "journal", "journey",
    "intern", "extern", "kernel", "alternat", "corner", "burn", "born",
    "horn", "morning", "govern", "western", "eastern", "northern",
    "southern", "pattern", "stern", "tournament", "attorney", "furniture",
    "earn", "yearn", "mourn", "adorn", "scorn", "thorn", "worn", "torn",
    "sworn", "barn", "darn", "yarn", "fern", "tavern", "cavern", "lantern",
    "ornament", "eternal", "fraternal", "maternal",
    "paternal", "nocturnal", "saturn", "stubborn", "unicorn", "popcorn",
    "acorn", "cornea", "churn", "discern", "infernal", "vernacular",
)

WORD_TOKEN = re.compile(r"[A-Za-z]+")
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
SPACE_BEFORE_PUNCT = re.compile(r"[ \t]+([.!?,;:])")
SENTENCE_SPACING = re.compile(r"([.!?])([A-Z])")
STANDALONE_I = re.compile(r"\bi\b(?!\.\w)")
HORIZONTAL_SPACE = re.compile(r"[ \t]+")


def _match_case(template: str, replacement: str) -> str:
    if template.isupper() and len(template) > 1:
        return replacement.upper()
    if template[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def default_dictionary() -> Optional[Callable[[str], bool]]:
    """
    English word lookup backed by pyspellchecker.

    Returns None (and logs) when the dictionary cannot be loaded.
    """
    try:
        from spellchecker import SpellChecker
        checker = SpellChecker(language="en")
    except Exception as e:
        logger.warning(f"Could not load spell checker dictionary: {e}")
        return None

    logger.info("Spell checker dictionary loaded")
    return lambda word: bool(checker.known([word.lower()]))


# ============================================================================
# Corrector
# ============================================================================

class TextCorrector:
    """
    Applies the OCR correction passes to recognized text.

    Args:
        dictionary: Callable returning True for known words; used to
            accept rn→m rewrites. Defaults to pyspellchecker, loaded on
            first use. Without a dictionary the rn→m pass is skipped.
    """

    def __init__(self, dictionary: Optional[Callable[[str], bool]] = None):
        self._dictionary = dictionary
        self._dictionary_loaded = dictionary is not None

    @property
    def dictionary(self) -> Optional[Callable[[str], bool]]:
        if not self._dictionary_loaded:
            self._dictionary = default_dictionary()
            self._dictionary_loaded = True
        return self._dictionary

    def correct(self, text: str) -> Tuple[str, List[Correction]]:
        """
        Run every pass over OCR text.

        Returns:
            (corrected text, corrections in application order)
        """
        if not text or not text.strip():
            return "", []

        corrections: List[Correction] = []
        corrected = self.clean(text)
        corrected = self.fix_character_confusions(corrected, corrections)
        corrected = self.fix_word_confusions(corrected, corrections)
        corrected = self.fix_structure(corrected)

        logger.info(f"OCR pattern corrections: {len(corrections)}")
        return corrected, corrections

    def normalize(self, text: str) -> str:
        """Normalization and structural cleanup only, for digital documents."""
        if not text:
            return ""
        return self.fix_structure(self.clean(text))

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    @staticmethod
    def clean(text: str) -> str:
        """Strip control characters, normalize line breaks and punctuation spacing."""
        text = CONTROL_CHARS.sub("", text)
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = re.sub(r"\n{3,}", "\n\n", text)
        lines = [SPACE_BEFORE_PUNCT.sub(r"\1", line.strip()) for line in text.split("\n")]
        return "\n".join(lines).strip()

    def fix_character_confusions(self, text: str, corrections: List[Correction]) -> str:
        text = self._apply_rules(text, CHARACTER_RULES, corrections)

        dictionary = self.dictionary
        if dictionary is None:
            logger.debug("No dictionary available, skipping rn→m pass")
            return text

        def replace_rn(match: re.Match) -> str:
            word = match.group(0)
            if "rn" not in word:
                return word
            lowered = word.lower()
            if any(allowed in lowered for allowed in RN_ALLOWLIST):
                return word
            if dictionary(word):
                return word
            candidate = word.replace("rn", "m")
            if not dictionary(candidate):
                return word
            corrections.append(Correction(CHARACTER_CONFUSION, word, candidate, "OCR confusion: rn→m"))
            return candidate

        return WORD_TOKEN.sub(replace_rn, text)

    def fix_word_confusions(self, text: str, corrections: List[Correction]) -> str:
        return self._apply_rules(text, WORD_RULES, corrections)

    @staticmethod
    def fix_structure(text: str) -> str:
        """Sentence spacing, standalone "i" and horizontal whitespace; newlines kept."""
        text = SENTENCE_SPACING.sub(r"\1 \2", text)
        text = STANDALONE_I.sub("I", text)
        lines = [HORIZONTAL_SPACE.sub(" ", line).strip() for line in text.split("\n")]
        return "\n".join(lines).strip()

    @staticmethod
    def _apply_rules(
        text: str,
        rules: Tuple[ConfusionRule, ...],
        corrections: List[Correction]
    ) -> str:
        for rule in rules:
            def replace(match: re.Match, rule: ConfusionRule = rule) -> str:
                replacement = _match_case(match.group(0), rule.replacement)
                corrections.append(Correction(rule.type, match.group(0), replacement, rule.reason))
                return replacement

            text = rule.pattern.sub(replace, text)
        return text
