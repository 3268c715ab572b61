"""
Configuration and constants for the essay extraction pipeline.

This module provides:
- Preprocessing profiles (standard and enhanced retry)
- OCR engine policy thresholds and timeouts
- Segmentation policies for line and block input
- Environment overrides for credentials and tuning
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Dict
from pathlib import Path
import logging

logger = logging.getLogger("essay_ocr")


# ============================================================================
# Preprocessing Profiles
# ============================================================================

@dataclass(frozen=True)
class PreprocessingProfile:
    """Parameters of one deterministic pixel-transform pipeline."""
    name: str
    max_dimension: int
    brightness: float = 1.0
    contrast_gain: float = 1.0
    contrast_bias: float = 0.0
    threshold: int = 128
    median_ksize: int = 3
    sharpen_sigma: float = 1.0
    sharpen_amount: float = 1.0
    # Enhanced profile binarizes last so sharpening acts on gray levels
    threshold_last: bool = False
    normalize_percentiles: tuple = (1.0, 99.0)


STANDARD_PROFILE = PreprocessingProfile(
    name="standard",
    max_dimension=4000,
    contrast_gain=1.3,
    contrast_bias=-(128 * 0.3),
    threshold=128,
    median_ksize=3,
    sharpen_sigma=1.5,
)

ENHANCED_PROFILE = PreprocessingProfile(
    name="enhanced",
    max_dimension=5000,
    brightness=1.1,
    contrast_gain=1.5,
    contrast_bias=-50.0,
    threshold=120,
    median_ksize=3,
    sharpen_sigma=2.0,
    sharpen_amount=1.5,
    threshold_last=True,
)


# ============================================================================
# Segmentation Policies
# ============================================================================

@dataclass(frozen=True)
class SegmentationPolicy:
    """Thresholds that differ between line input and OCR block input."""
    name: str
    max_header_words: int
    min_paragraph_words: int
    min_paragraph_chars: int
    reject_fragments: bool = False
    # Headers may not appear in the trailing part of the unit sequence
    header_tail_fraction: Optional[float] = None
    single_word_header_min_chars: int = 0
    fragment_max_words: int = 2
    fragment_max_chars: int = 15


LINE_POLICY = SegmentationPolicy(
    name="lines",
    max_header_words=10,
    min_paragraph_words=3,
    min_paragraph_chars=20,
)

# Block segmentation fragments more aggressively, hence the higher bar
BLOCK_POLICY = SegmentationPolicy(
    name="blocks",
    max_header_words=12,
    min_paragraph_words=10,
    min_paragraph_chars=50,
    reject_fragments=True,
    header_tail_fraction=0.15,
    single_word_header_min_chars=5,
)

DEFAULT_SECTION = "Essay Body"
RESERVED_SECTIONS = ("Introduction", "Conclusion")


# ============================================================================
# Processing Configuration
# ============================================================================

@dataclass
class ImageConfig:
    """Image preprocessing configuration."""
    standard: PreprocessingProfile = STANDARD_PROFILE
    enhanced: PreprocessingProfile = ENHANCED_PROFILE
    temp_prefix: str = "essay_ocr_"


@dataclass
class OCRConfig:
    """OCR engine policy."""
    cloud_enabled: bool = True
    credentials_path: Optional[str] = None
    # Hard timeout for the cloud call, seconds
    cloud_timeout: float = 30.0
    # Cloud results above this confidence (0-100) are accepted as-is
    cloud_accept_threshold: float = 70.0
    # Local results below this confidence trigger one enhanced retry
    local_retry_threshold: float = 40.0
    tesseract_lang: str = "eng"
    tesseract_config: str = "--oem 3 --psm 3"


@dataclass
class StructureConfig:
    """Structure extraction configuration."""
    lines: SegmentationPolicy = LINE_POLICY
    blocks: SegmentationPolicy = BLOCK_POLICY
    default_section: str = DEFAULT_SECTION
    reserved_sections: tuple = RESERVED_SECTIONS
    title_min_chars: int = 10
    title_max_chars: int = 200
    title_min_words: int = 2
    title_max_words: int = 15


@dataclass
class TitleConfig:
    """Declared-vs-detected title comparison."""
    similarity_threshold: float = 0.7
    partial_confidence: float = 0.8


@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    image: ImageConfig = field(default_factory=ImageConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    structure: StructureConfig = field(default_factory=StructureConfig)
    title: TitleConfig = field(default_factory=TitleConfig)

    # Cleaned text shorter than this aborts with InsufficientText
    min_text_length: int = 20
    low_confidence_warning: float = 50.0
    short_text_warning: int = 100
    # Digital containers carry no engine confidence
    container_confidence: Dict[str, float] = field(default_factory=lambda: {
        "pdf": 95.0,
        "docx": 95.0,
        "text": 98.0,
    })

    # PDFs without a text layer are rasterized and sent through OCR
    ocr_scanned_pdfs: bool = True
    pdf_dpi: int = 300
    max_pdf_pages: Optional[int] = 5

    debug_mode: bool = False


# ============================================================================
# Default Configuration Instance
# ============================================================================

def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    if os.environ.get("ESSAY_OCR_DISABLE_CLOUD", "").lower() == "true":
        config.ocr.cloud_enabled = False

    timeout = os.environ.get("ESSAY_OCR_CLOUD_TIMEOUT")
    if timeout:
        try:
            config.ocr.cloud_timeout = float(timeout)
        except ValueError:
            logger.warning(f"Ignoring invalid ESSAY_OCR_CLOUD_TIMEOUT: {timeout!r}")

    lang = os.environ.get("ESSAY_OCR_TESSERACT_LANG")
    if lang:
        config.ocr.tesseract_lang = lang

    if os.environ.get("ESSAY_OCR_DEBUG", "").lower() == "true":
        config.debug_mode = True

    # Google Cloud Vision credentials from environment
    config.ocr.credentials_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")

    return config


def credentials_available(config: OCRConfig) -> bool:
    """Check whether a Google Cloud credentials file is present."""
    return bool(config.credentials_path) and Path(config.credentials_path).is_file()


# ============================================================================
# JSON Schema Version
# ============================================================================

JSON_SCHEMA_VERSION = "1.0"
