"""
Error taxonomy and warning records for the essay extraction pipeline.

Fatal errors abort the pipeline and reach the caller with an actionable
suggestion. Recoverable failures (preprocessing, cloud OCR timeout) are
absorbed by a fallback path and surface only as PipelineWarning records.
"""

from dataclasses import dataclass, asdict
from typing import List, Optional, Dict, Any


# ============================================================================
# Warning Records
# ============================================================================

@dataclass
class PipelineWarning:
    """A non-fatal issue recorded while processing a document."""
    type: str
    message: str
    severity: str = "medium"  # low, medium, high
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# Exceptions
# ============================================================================

class EssayOCRError(Exception):
    """
    Base class for pipeline errors.

    Carries the warnings and corrections accumulated before the failure so
    callers can attach them to diagnostics.
    """

    default_suggestion = "Please try again with a different file or contact support if the problem persists."

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        warnings: Optional[List[PipelineWarning]] = None,
        corrections: Optional[list] = None
    ):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion or self.default_suggestion
        self.warnings = list(warnings or [])
        self.corrections = list(corrections or [])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "suggestion": self.suggestion,
            "warnings": [w.to_dict() for w in self.warnings],
            "corrections": [c.to_dict() for c in self.corrections],
        }


class UnsupportedFormat(EssayOCRError):
    """No format signature or text heuristic matched the input."""

    default_suggestion = "Please upload only JPG, PNG, PDF, DOCX, or TXT files."


class FormatParseError(EssayOCRError):
    """A pdf/docx/text container could not be parsed."""

    default_suggestion = "The file appears to be damaged. Please re-export it and upload again."

    def __init__(self, kind: str, message: str, **kwargs):
        super().__init__(f"{kind} parsing failed: {message}", **kwargs)
        self.kind = kind


class OcrExtractionFailed(EssayOCRError):
    """Neither OCR engine produced a usable result."""

    default_suggestion = (
        "Please ensure your handwriting is clear and the image is well-lit. "
        "Try taking a clearer photo."
    )


class InsufficientText(EssayOCRError):
    """Extraction nominally succeeded but the cleaned text is too short."""

    default_suggestion = "Ensure the handwriting is clear and the entire essay is visible in the image."


class PreprocessingFailed(EssayOCRError):
    """Image preprocessing failed; callers fall back to the unmodified image."""


class TimeoutExceeded(EssayOCRError):
    """An engine call exceeded its time limit."""

    default_suggestion = "Try using a smaller image or better lighting."
