"""
Text OCR module for essay extraction.

Provides:
- Google Cloud Vision document text detection (primary engine)
- Tesseract recognition with a reusable session (local fallback)
- Confidence-gated orchestration with timeout and enhanced retry
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Dict, Any, Union

from ..config import OCRConfig, ImageConfig, PreprocessingProfile, credentials_available
from ..errors import PipelineWarning, PreprocessingFailed, TimeoutExceeded, OcrExtractionFailed
from .images import ImagePreprocessor
from .layout import Block, BoundingBox, Word

logger = logging.getLogger(__name__)

CLOUD_ENGINE = "google_vision"
LOCAL_ENGINE = "tesseract"


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class OCRResult:
    """Complete OCR result for one image."""
    text: str
    confidence: float  # 0-100
    blocks: List[Block] = field(default_factory=list)
    engine_used: str = ""
    warnings: List[PipelineWarning] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def words(self) -> List[Word]:
        return [w for block in self.blocks for w in block.words]

    @property
    def word_confidences(self) -> List[Tuple[str, float]]:
        """(text, confidence 0-100) per recognized word."""
        return [(w.text, round(100.0 * w.confidence, 2)) for w in self.words]

    @property
    def has_text(self) -> bool:
        return bool(self.text.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "engine": self.engine_used,
            "blocks": [b.to_dict() for b in self.blocks],
            "warnings": [w.to_dict() for w in self.warnings],
            "metadata": self.metadata
        }


def mean_word_confidence(words: List[Word]) -> float:
    """Mean of per-word confidences scaled to 0-100."""
    if not words:
        return 0.0
    return 100.0 * sum(w.confidence for w in words) / len(words)


# ============================================================================
# Google Cloud Vision Engine
# ============================================================================

def parse_vision_annotation(annotation: Any) -> List[Block]:
    """
    Convert a Vision `full_text_annotation` into blocks.

    Each Vision block becomes one Block; word text is the concatenation of
    its symbols, and word confidence is Vision's 0-1 score.
    """
    blocks = []
    if annotation is None:
        return blocks

    for page_index, page in enumerate(getattr(annotation, "pages", None) or []):
        for vision_block in page.blocks:
            words = []
            for paragraph in vision_block.paragraphs:
                for vision_word in paragraph.words:
                    text = "".join(symbol.text for symbol in vision_word.symbols)
                    if not text:
                        continue
                    bbox = None
                    if getattr(vision_word, "bounding_box", None) is not None:
                        bbox = BoundingBox.from_vertices(vision_word.bounding_box.vertices)
                    words.append(Word(text=text, confidence=float(vision_word.confidence), bbox=bbox))

            if not words:
                continue

            bbox = None
            if getattr(vision_block, "bounding_box", None) is not None:
                bbox = BoundingBox.from_vertices(vision_block.bounding_box.vertices)

            blocks.append(Block(
                text=" ".join(w.text for w in words),
                words=words,
                bbox=bbox or BoundingBox.union([w.bbox for w in words]),
                page=page_index
            ))

    return blocks


class CloudVisionEngine:
    """
    OCR using Google Cloud Vision document text detection.

    The client is created lazily; the engine reports itself unconfigured
    when no credentials file is present or google-cloud-vision is missing.
    """

    name = CLOUD_ENGINE

    def __init__(self, config: Optional[OCRConfig] = None, client: Any = None):
        self.config = config or OCRConfig()
        self._client = client
        self._library_available: Optional[bool] = None

    @property
    def is_configured(self) -> bool:
        if self._client is not None:
            return True
        if not self.config.cloud_enabled or not credentials_available(self.config):
            return False
        if self._library_available is None:
            try:
                from google.cloud import vision  # noqa: F401
                self._library_available = True
            except ImportError:
                logger.warning(
                    "google-cloud-vision not installed; install with: pip install 'essay-ocr[cloud]'"
                )
                self._library_available = False
        return self._library_available

    def _get_client(self):
        if self._client is None:
            from google.cloud import vision
            self._client = vision.ImageAnnotatorClient()
            logger.info("Google Cloud Vision client initialized")
        return self._client

    def detect_document_text(self, content: bytes) -> OCRResult:
        """
        Run document text detection on raw image bytes.

        Raises:
            RuntimeError: If the API reports an error or detects no text
        """
        from google.cloud import vision

        client = self._get_client()
        response = client.document_text_detection(image=vision.Image(content=content))

        if response.error.message:
            raise RuntimeError(f"Google Vision error: {response.error.message}")

        annotation = response.full_text_annotation
        if annotation is None or not annotation.text:
            raise RuntimeError("No text detected in image")

        return self.build_result(annotation)

    def build_result(self, annotation: Any) -> OCRResult:
        blocks = parse_vision_annotation(annotation)
        confidence = mean_word_confidence([w for b in blocks for w in b.words])
        return OCRResult(
            text=annotation.text.strip(),
            confidence=confidence,
            blocks=blocks,
            engine_used=self.name
        )

    def close(self) -> None:
        transport = getattr(self._client, "transport", None)
        if transport is not None and hasattr(transport, "close"):
            transport.close()
        self._client = None


# ============================================================================
# Tesseract Engine
# ============================================================================

def parse_tesseract_data(data: Dict[str, List[Any]]) -> List[Block]:
    """
    Group pytesseract `image_to_data` output into blocks.

    Words are grouped by (block_num, par_num) in first-seen order; entries
    with negative confidence or empty text are layout rows and are skipped.
    """
    groups: Dict[Tuple[int, int], List[Word]] = {}

    for i in range(len(data["text"])):
        text = str(data["text"][i]).strip()
        conf = float(data["conf"][i])
        if conf < 0 or not text:
            continue

        word = Word(
            text=text,
            confidence=conf / 100.0,
            bbox=BoundingBox.from_xywh(
                int(data["left"][i]), int(data["top"][i]),
                int(data["width"][i]), int(data["height"][i])
            )
        )
        key = (int(data["block_num"][i]), int(data["par_num"][i]))
        groups.setdefault(key, []).append(word)

    return [
        Block(
            text=" ".join(w.text for w in words),
            words=words,
            bbox=BoundingBox.union([w.bbox for w in words])
        )
        for words in groups.values()
    ]


class TesseractEngine:
    """
    OCR using Tesseract.

    Owns a lazily created session (a single worker thread) that serializes
    recognitions. The session is long-lived and must be released with
    `close()` at shutdown.
    """

    name = LOCAL_ENGINE

    def __init__(
        self,
        language: str = "eng",
        config: str = "--oem 3 --psm 3"
    ):
        self.language = language
        self.config = config
        self._session: Optional[ThreadPoolExecutor] = None

    def _get_session(self) -> ThreadPoolExecutor:
        if self._session is None:
            try:
                import pytesseract
                version = pytesseract.get_tesseract_version()
            except Exception as e:
                raise RuntimeError(
                    f"Tesseract not available: {e}\n"
                    "Install with: pip install pytesseract\n"
                    "Also install Tesseract: https://github.com/tesseract-ocr/tesseract"
                ) from e
            self._session = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tesseract")
            logger.info(f"Tesseract session started (version {version})")
        return self._session

    def _image_to_data(self, image_path: str) -> Dict[str, List[Any]]:
        import pytesseract
        from PIL import Image

        with Image.open(image_path) as image:
            return pytesseract.image_to_data(
                image,
                lang=self.language,
                config=self.config,
                output_type=pytesseract.Output.DICT
            )

    def recognize(self, image_path: Union[str, Path]) -> OCRResult:
        """Recognize text in an image file."""
        data = self._get_session().submit(self._image_to_data, str(image_path)).result()
        blocks = parse_tesseract_data(data)
        confidence = mean_word_confidence([w for b in blocks for w in b.words])

        return OCRResult(
            text="\n\n".join(b.text for b in blocks),
            confidence=confidence,
            blocks=blocks,
            engine_used=self.name
        )

    def close(self) -> None:
        if self._session is not None:
            self._session.shutdown(wait=True)
            self._session = None
            logger.info("Tesseract session closed")


# ============================================================================
# Orchestrator
# ============================================================================

def _discard_late_result(future: Future) -> None:
    """Drop the outcome of a cloud call that resolved after its timeout."""
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.debug(f"Discarded late cloud OCR failure: {error}")
    else:
        logger.debug("Discarded late cloud OCR result")


class OCROrchestrator:
    """
    Confidence-gated policy over a cloud engine and a local engine.

    1. Cloud engine (if configured) under a hard timeout; accepted when its
       confidence exceeds `cloud_accept_threshold`.
    2. Otherwise the local engine on the standard-profile image, with one
       enhanced-profile retry when confidence is below
       `local_retry_threshold`. The better of the two passes wins.
    3. OcrExtractionFailed when neither engine produced text.
    """

    def __init__(
        self,
        cloud: Optional[CloudVisionEngine] = None,
        local: Optional[TesseractEngine] = None,
        preprocessor: Optional[ImagePreprocessor] = None,
        config: Optional[OCRConfig] = None,
        image_config: Optional[ImageConfig] = None
    ):
        self.cloud = cloud
        self.local = local
        self.config = config or OCRConfig()
        self.image_config = image_config or ImageConfig()
        self.preprocessor = preprocessor or ImagePreprocessor(self.image_config.temp_prefix)
        self._executor: Optional[ThreadPoolExecutor] = None

    def recognize(self, image_path: Union[str, Path]) -> OCRResult:
        """
        Recognize an image file with the engine fallback policy.

        Raises:
            OcrExtractionFailed: If neither engine produced a usable result
        """
        warnings: List[PipelineWarning] = []
        cloud_result = None

        if self.cloud is not None and self.config.cloud_enabled and self.cloud.is_configured:
            cloud_result = self._try_cloud(image_path, warnings)
            if cloud_result is not None and cloud_result.confidence > self.config.cloud_accept_threshold:
                logger.info(f"Using {cloud_result.engine_used} result ({cloud_result.confidence:.1f}%)")
                cloud_result.warnings = warnings + cloud_result.warnings
                return cloud_result
        elif self.cloud is not None and self.config.cloud_enabled:
            logger.info("Google Vision not available, using Tesseract")
            warnings.append(PipelineWarning(
                type="cloud_unavailable",
                message="Cloud OCR is not configured; local OCR was used",
                severity="low"
            ))

        local_result = None
        if self.local is not None:
            try:
                local_result = self._run_local(image_path, warnings)
            except Exception as e:
                logger.error(f"Local OCR failed: {e}")
                warnings.append(PipelineWarning(
                    type="local_ocr_error",
                    message=f"Local OCR failed: {e}",
                    severity="high"
                ))

        if local_result is not None:
            local_result.warnings = warnings + local_result.warnings
            return local_result

        if cloud_result is not None:
            logger.warning("Local OCR unavailable; keeping low-confidence cloud result")
            warnings.append(PipelineWarning(
                type="low_confidence_cloud_kept",
                message="Local OCR failed; the low-confidence cloud result was kept",
                severity="high",
                suggestion="Try taking a clearer photo."
            ))
            cloud_result.warnings = warnings + cloud_result.warnings
            return cloud_result

        raise OcrExtractionFailed("Both OCR engines failed to extract text", warnings=warnings)

    # ------------------------------------------------------------------
    # Cloud
    # ------------------------------------------------------------------

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="cloud_ocr")
        return self._executor

    def _run_cloud(self, image_path: Union[str, Path]) -> OCRResult:
        """
        Run the cloud engine under the configured timeout.

        Raises:
            TimeoutExceeded: If the call does not finish in time
        """
        content = Path(image_path).read_bytes()
        future = self._get_executor().submit(self.cloud.detect_document_text, content)
        try:
            return future.result(timeout=self.config.cloud_timeout)
        except FuturesTimeout:
            future.cancel()
            future.add_done_callback(_discard_late_result)
            raise TimeoutExceeded(
                f"Cloud OCR exceeded {self.config.cloud_timeout:g}s timeout"
            ) from None

    def _try_cloud(
        self,
        image_path: Union[str, Path],
        warnings: List[PipelineWarning]
    ) -> Optional[OCRResult]:
        logger.info("Attempting Google Vision OCR...")
        try:
            result = self._run_cloud(image_path)
        except TimeoutExceeded as e:
            logger.warning(f"{e}; falling back to Tesseract")
            warnings.append(PipelineWarning(
                type="cloud_timeout",
                message=e.message,
                severity="medium",
                suggestion=e.suggestion
            ))
            return None
        except Exception as e:
            logger.warning(f"Google Vision failed: {e}; falling back to Tesseract")
            warnings.append(PipelineWarning(
                type="cloud_error",
                message=f"Cloud OCR failed: {e}",
                severity="low"
            ))
            return None

        logger.info(f"Google Vision confidence: {result.confidence:.1f}%")
        if result.confidence <= self.config.cloud_accept_threshold:
            logger.info("Google Vision confidence low, trying Tesseract")
            warnings.append(PipelineWarning(
                type="cloud_low_confidence",
                message=(
                    f"Cloud OCR confidence {result.confidence:.1f}% is not above "
                    f"{self.config.cloud_accept_threshold:g}%"
                ),
                severity="low"
            ))
        return result

    # ------------------------------------------------------------------
    # Local
    # ------------------------------------------------------------------

    def _recognize_with_profile(
        self,
        image_path: Union[str, Path],
        profile: PreprocessingProfile,
        warnings: List[PipelineWarning]
    ) -> OCRResult:
        """Run the local engine on a preprocessed copy, or the original on failure."""
        with ExitStack() as stack:
            try:
                target = stack.enter_context(self.preprocessor.preprocessed(image_path, profile))
                used_profile = profile.name
            except PreprocessingFailed as e:
                logger.warning(f"Preprocessing failed, using original image: {e.message}")
                warnings.append(PipelineWarning(
                    type="preprocessing_failed",
                    message=e.message,
                    severity="low"
                ))
                target = Path(image_path)
                used_profile = "original"

            result = self.local.recognize(target)

        result.metadata["profile"] = used_profile
        return result

    def _run_local(
        self,
        image_path: Union[str, Path],
        warnings: List[PipelineWarning]
    ) -> OCRResult:
        result = self._recognize_with_profile(image_path, self.image_config.standard, warnings)
        logger.info(f"Tesseract confidence: {result.confidence:.1f}%")

        if result.confidence < self.config.local_retry_threshold:
            logger.warning("Low confidence, retrying with enhanced preprocessing...")
            try:
                retry = self._recognize_with_profile(image_path, self.image_config.enhanced, warnings)
            except Exception as e:
                logger.warning(f"Enhanced retry failed, keeping first pass: {e}")
                warnings.append(PipelineWarning(
                    type="retry_failed",
                    message=f"Enhanced retry failed: {e}",
                    severity="low"
                ))
                retry = None

            if retry is not None:
                retry.metadata["retry"] = True
                warnings.append(PipelineWarning(
                    type="enhanced_retry",
                    message=(
                        f"Confidence {result.confidence:.1f}% triggered an enhanced retry "
                        f"({retry.confidence:.1f}%)"
                    ),
                    severity="low"
                ))
                if retry.confidence > result.confidence:
                    logger.info(f"Retry improved: {retry.confidence:.1f}%")
                    result = retry

        if not result.has_text:
            raise RuntimeError("Tesseract recognized no text")

        return result

    def close(self) -> None:
        """Release the cloud worker; abandoned calls are not awaited."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
