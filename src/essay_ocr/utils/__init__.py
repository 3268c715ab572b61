"""
Utility modules for the essay extraction pipeline.
"""

from .io import SourceFormat, detect_format, sniff_format, extract_text, load_pdf, save_json
from .images import ImagePreprocessor, preprocess_image
from .layout import Block, BlockType, BoundingBox, Word, assign_reading_order
from .ocr_text import CloudVisionEngine, TesseractEngine, OCROrchestrator, OCRResult
from .corrections import Correction, TextCorrector
from .structure import StructureExtractor, ContentUnit, Paragraph, StructureResult
from .titles import TitleValidationResult, validate_title
from .assembler import DocumentAssembler, ExtractedDocument

__all__ = [
    # IO
    "SourceFormat", "detect_format", "sniff_format", "extract_text", "load_pdf", "save_json",
    # Images
    "ImagePreprocessor", "preprocess_image",
    # Layout
    "Block", "BlockType", "BoundingBox", "Word", "assign_reading_order",
    # OCR
    "CloudVisionEngine", "TesseractEngine", "OCROrchestrator", "OCRResult",
    # Corrections
    "Correction", "TextCorrector",
    # Structure
    "StructureExtractor", "ContentUnit", "Paragraph", "StructureResult",
    # Titles
    "TitleValidationResult", "validate_title",
    # Assembly
    "DocumentAssembler", "ExtractedDocument",
]
