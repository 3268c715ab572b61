"""
Document assembler module for essay extraction.

Provides:
- ExtractedDocument, the single output record
- Pipeline orchestration for image, scanned-PDF and digital documents
- Quality warnings
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Dict, Any, Tuple, Union

from ..config import PipelineConfig, get_config, JSON_SCHEMA_VERSION
from ..errors import EssayOCRError, InsufficientText, PipelineWarning
from .corrections import Correction, TextCorrector
from .io import (
    Source, SourceFormat, detect_format, extract_text, load_pdf, read_source,
    save_image, temporary_artifact
)
from .layout import Block, assign_reading_order
from .ocr_text import CloudVisionEngine, OCROrchestrator, OCRResult, TesseractEngine
from .images import ImagePreprocessor
from .structure import Paragraph, StructureExtractor, StructureResult, units_from_blocks, units_from_lines
from .titles import TitleValidationResult, validate_title

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class ExtractedDocument:
    """Normalized record produced for one submitted essay."""
    source_format: SourceFormat
    title: Optional[str] = None
    sections: List[str] = field(default_factory=list)
    paragraphs: List[Paragraph] = field(default_factory=list)
    confidence: float = 0.0
    corrections: List[Correction] = field(default_factory=list)
    warnings: List[PipelineWarning] = field(default_factory=list)
    title_validation: TitleValidationResult = field(
        default_factory=lambda: TitleValidationResult(matched=None)
    )

    text: str = ""
    original_text: str = ""
    engine: str = ""
    word_confidences: List[Tuple[str, float]] = field(default_factory=list)

    # Metadata
    task_id: str = ""
    created_at: str = ""
    processing_time_seconds: float = 0.0
    schema_version: str = JSON_SCHEMA_VERSION

    def __post_init__(self):
        if not self.task_id:
            self.task_id = str(uuid.uuid4())
        if not self.created_at:
            self.created_at = datetime.now().isoformat()

    @property
    def content_text(self) -> str:
        """Paragraph text only, joined by spaces."""
        return " ".join(p.text for p in self.paragraphs).strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "schema_version": self.schema_version,
            "created_at": self.created_at,
            "source_format": self.source_format.value,
            "engine": self.engine,
            "confidence": round(self.confidence, 2),
            "title": self.title,
            "sections": list(self.sections),
            "paragraphs": [p.to_dict() for p in self.paragraphs],
            "text": self.text,
            "content_text": self.content_text,
            "original_text": self.original_text,
            "title_validation": self.title_validation.to_dict(),
            "corrections": [c.to_dict() for c in self.corrections],
            "warnings": [w.to_dict() for w in self.warnings],
            "word_confidences": [
                {"text": text, "confidence": conf} for text, conf in self.word_confidences
            ],
            "processing_time_seconds": round(self.processing_time_seconds, 2)
        }


# ============================================================================
# Document Assembler
# ============================================================================

class DocumentAssembler:
    """
    Orchestrates the essay extraction pipeline.

    Image path: preprocessing, OCR with engine fallback, correction, block
    segmentation, title validation. Document path: container text,
    normalization, line segmentation, title validation.

    The engines are long-lived; call `close()` (or use the assembler as a
    context manager) once at shutdown.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        cloud_engine: Optional[CloudVisionEngine] = None,
        local_engine: Optional[TesseractEngine] = None,
        corrector: Optional[TextCorrector] = None,
        preprocessor: Optional[ImagePreprocessor] = None
    ):
        self.config = config or get_config()

        # Initialize components lazily
        self._cloud_engine = cloud_engine
        self._local_engine = local_engine
        self._corrector = corrector
        self._preprocessor = preprocessor
        self._orchestrator = None

    @property
    def cloud_engine(self) -> Optional[CloudVisionEngine]:
        if self._cloud_engine is None and self.config.ocr.cloud_enabled:
            self._cloud_engine = CloudVisionEngine(self.config.ocr)
        return self._cloud_engine

    @property
    def local_engine(self) -> TesseractEngine:
        if self._local_engine is None:
            self._local_engine = TesseractEngine(
                language=self.config.ocr.tesseract_lang,
                config=self.config.ocr.tesseract_config
            )
        return self._local_engine

    @property
    def corrector(self) -> TextCorrector:
        if self._corrector is None:
            self._corrector = TextCorrector()
        return self._corrector

    @property
    def orchestrator(self) -> OCROrchestrator:
        if self._orchestrator is None:
            self._orchestrator = OCROrchestrator(
                cloud=self.cloud_engine,
                local=self.local_engine,
                preprocessor=self._preprocessor or ImagePreprocessor(self.config.image.temp_prefix),
                config=self.config.ocr,
                image_config=self.config.image
            )
        return self._orchestrator

    def process(self, source: Source, title: Optional[str] = None) -> ExtractedDocument:
        """
        Run the full pipeline on one submission.

        Args:
            source: File path, bytes or binary file handle
            title: Title the student declared, if any

        Returns:
            ExtractedDocument

        Raises:
            UnsupportedFormat, FormatParseError, OcrExtractionFailed,
            InsufficientText
        """
        start_time = time.time()
        warnings: List[PipelineWarning] = []

        if title:
            logger.info(f"Student provided title: \"{title}\"")

        try:
            data = read_source(source)
            fmt = detect_format(data)
            logger.info(f"Processing {fmt.value} submission ({len(data)} bytes)")

            if fmt is SourceFormat.IMAGE:
                doc = self._process_image(source, data, title, warnings)
            elif fmt is SourceFormat.PDF:
                doc = self._process_pdf(data, title, warnings)
            else:
                doc = self._process_container(extract_text(data, fmt), fmt, title, warnings)
        except EssayOCRError as e:
            e.warnings = warnings + [w for w in e.warnings if w not in warnings]
            raise

        doc.processing_time_seconds = time.time() - start_time
        logger.info(
            f"Done: {doc.engine}, confidence {doc.confidence:.1f}%, "
            f"{len(doc.paragraphs)} paragraphs, {len(doc.warnings)} warnings"
        )
        return doc

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _process_image(
        self,
        source: Source,
        data: bytes,
        title: Optional[str],
        warnings: List[PipelineWarning]
    ) -> ExtractedDocument:
        if isinstance(source, (str, Path)):
            result = self.orchestrator.recognize(source)
        else:
            with temporary_artifact(prefix=self.config.image.temp_prefix, suffix=".img") as path:
                path.write_bytes(data)
                result = self.orchestrator.recognize(path)

        return self._from_ocr([result], SourceFormat.IMAGE, title, warnings)

    def _process_pdf(
        self,
        data: bytes,
        title: Optional[str],
        warnings: List[PipelineWarning]
    ) -> ExtractedDocument:
        text = extract_text(data, SourceFormat.PDF)
        if len(text.strip()) >= self.config.min_text_length or not self.config.ocr_scanned_pdfs:
            return self._process_container(text, SourceFormat.PDF, title, warnings)

        logger.info("PDF has no usable text layer, running OCR on page images")
        warnings.append(PipelineWarning(
            type="scanned_pdf",
            message="PDF has no text layer; pages were recognized with OCR",
            severity="low"
        ))

        pages = load_pdf(data, dpi=self.config.pdf_dpi, first_page=1, last_page=self.config.max_pdf_pages)
        results = []
        for page_number, image in enumerate(pages):
            with temporary_artifact(prefix=self.config.image.temp_prefix) as path:
                save_image(image, path)
                result = self.orchestrator.recognize(path)
            for block in result.blocks:
                block.page = page_number
            results.append(result)

        return self._from_ocr(results, SourceFormat.PDF, title, warnings)

    def _from_ocr(
        self,
        results: List[OCRResult],
        fmt: SourceFormat,
        title: Optional[str],
        warnings: List[PipelineWarning]
    ) -> ExtractedDocument:
        for result in results:
            warnings.extend(result.warnings)

        original_text = "\n\n".join(r.text for r in results if r.text)
        blocks: List[Block] = assign_reading_order([b for r in results for b in r.blocks])
        corrections: List[Correction] = []

        if blocks:
            for block in blocks:
                block.text, block_corrections = self.corrector.correct(block.text)
                corrections.extend(block_corrections)
            corrected = "\n\n".join(b.text for b in blocks if b.text)
            self._check_length(corrected, warnings, corrections)
            structure = StructureExtractor.for_blocks(self.config.structure).extract(units_from_blocks(blocks))
        else:
            corrected, corrections = self.corrector.correct(original_text)
            self._check_length(corrected, warnings, corrections)
            structure = StructureExtractor.for_lines(self.config.structure).extract(units_from_lines(corrected))

        confidence = sum(r.confidence for r in results) / len(results)
        return self._build(
            fmt=fmt,
            structure=structure,
            confidence=confidence,
            engine=results[0].engine_used,
            title=title,
            warnings=warnings,
            corrections=corrections,
            original_text=original_text,
            word_confidences=[wc for r in results for wc in r.word_confidences]
        )

    def _process_container(
        self,
        text: str,
        fmt: SourceFormat,
        title: Optional[str],
        warnings: List[PipelineWarning]
    ) -> ExtractedDocument:
        normalized = self.corrector.normalize(text)
        self._check_length(normalized, warnings, [])

        structure = StructureExtractor.for_lines(self.config.structure).extract(units_from_lines(normalized))
        return self._build(
            fmt=fmt,
            structure=structure,
            confidence=self.config.container_confidence.get(fmt.value, 95.0),
            engine=fmt.value,
            title=title,
            warnings=warnings,
            corrections=[],
            original_text=text
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_length(
        self,
        text: str,
        warnings: List[PipelineWarning],
        corrections: List[Correction]
    ) -> None:
        length = len(text.strip())
        if length < self.config.min_text_length:
            raise InsufficientText(
                f"Only {length} characters extracted (minimum {self.config.min_text_length})",
                warnings=warnings,
                corrections=corrections
            )

    def _quality_warnings(self, confidence: float, text: str) -> List[PipelineWarning]:
        warnings = []
        if confidence < self.config.low_confidence_warning:
            warnings.append(PipelineWarning(
                type="low_confidence",
                message="Text extraction confidence is low",
                severity="high",
                suggestion="Ensure clear handwriting, good lighting, and high resolution"
            ))
        if len(text.strip()) < self.config.short_text_warning:
            warnings.append(PipelineWarning(
                type="short_text",
                message="Limited text extracted",
                severity="medium",
                suggestion="Check if entire essay is visible"
            ))
        return warnings

    def _build(
        self,
        fmt: SourceFormat,
        structure: StructureResult,
        confidence: float,
        engine: str,
        title: Optional[str],
        warnings: List[PipelineWarning],
        corrections: List[Correction],
        original_text: str,
        word_confidences: Optional[List[Tuple[str, float]]] = None
    ) -> ExtractedDocument:
        confidence = min(100.0, max(0.0, confidence))
        text = structure.full_text(self.config.structure.default_section)

        if not structure.paragraphs:
            warnings.append(PipelineWarning(
                type="no_paragraphs",
                message="No paragraph passed the substance check",
                severity="medium",
                suggestion="Check if entire essay is visible"
            ))

        return ExtractedDocument(
            source_format=fmt,
            title=structure.title,
            sections=list(structure.sections),
            paragraphs=list(structure.paragraphs),
            confidence=confidence,
            corrections=list(corrections),
            warnings=warnings + self._quality_warnings(confidence, structure.content_text),
            title_validation=validate_title(title, structure.title, self.config.title),
            text=text,
            original_text=original_text,
            engine=engine,
            word_confidences=word_confidences or []
        )

    def close(self) -> None:
        """Release the OCR worker and engine sessions."""
        if self._orchestrator is not None:
            self._orchestrator.close()
        if self._local_engine is not None:
            self._local_engine.close()
        if self._cloud_engine is not None:
            self._cloud_engine.close()

    def __enter__(self) -> 'DocumentAssembler':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
