"""
I/O utilities for the essay extraction pipeline.

Handles:
- Format detection from magic numbers and a text heuristic
- Raw text extraction from PDF, DOCX and plain-text containers
- PDF rasterization for scanned submissions
- Image loading and scoped temporary artifacts
- JSON serialization
"""

import io
import json
import logging
import os
import re
import tempfile
from contextlib import contextmanager
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import List, Union, Optional, Any, BinaryIO, Iterator

import numpy as np

from ..errors import FormatParseError, UnsupportedFormat

logger = logging.getLogger(__name__)

Source = Union[str, Path, bytes, BinaryIO]


# ============================================================================
# Format Detection
# ============================================================================

class SourceFormat(Enum):
    """Kinds of submitted documents."""
    PDF = "pdf"
    DOCX = "docx"
    IMAGE = "image"
    TEXT = "text"
    UNKNOWN = "unknown"


# Magic byte signatures, checked in order
MAGIC = (
    (b"%PDF", SourceFormat.PDF),
    (b"PK", SourceFormat.DOCX),
    (b"\x89PNG\r\n\x1a\n", SourceFormat.IMAGE),
    (b"\xff\xd8\xff", SourceFormat.IMAGE),
    (b"GIF87a", SourceFormat.IMAGE),
    (b"GIF89a", SourceFormat.IMAGE),
    (b"BM", SourceFormat.IMAGE),
    (b"II*\x00", SourceFormat.IMAGE),
    (b"MM\x00*", SourceFormat.IMAGE),
)

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
TEXT_SAMPLE_CHARS = 100


def sniff_format(data: bytes) -> SourceFormat:
    """
    Classify a byte buffer by its signature.

    Args:
        data: Raw bytes (the full file or at least its first few KB)

    Returns:
        The detected SourceFormat, UNKNOWN if nothing matched
    """
    for signature, fmt in MAGIC:
        if data.startswith(signature):
            return fmt

    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return SourceFormat.IMAGE

    if not data:
        return SourceFormat.UNKNOWN

    # 4 bytes per char at most, so a multibyte char cut at the end of the
    # slice never lands inside the sample
    sample = data[:TEXT_SAMPLE_CHARS * 4].decode("utf-8", errors="replace")[:TEXT_SAMPLE_CHARS]

    if "\ufffd" not in sample and not CONTROL_CHARS.search(sample):
        return SourceFormat.TEXT

    return SourceFormat.UNKNOWN


def detect_format(data: bytes) -> SourceFormat:
    """Like sniff_format, but raises UnsupportedFormat instead of returning UNKNOWN."""
    fmt = sniff_format(data)
    if fmt is SourceFormat.UNKNOWN:
        raise UnsupportedFormat("Unsupported document format: no signature or text heuristic matched")
    logger.debug(f"Detected format: {fmt.value}")
    return fmt


def read_source(source: Source) -> bytes:
    """Read a path, byte buffer or binary file handle into bytes."""
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")
        return path.read_bytes()
    return source.read()


# ============================================================================
# Container Text Extraction
# ============================================================================

def _as_stream(source: Source) -> Union[str, BinaryIO]:
    if isinstance(source, (bytes, bytearray)):
        return io.BytesIO(source)
    if isinstance(source, Path):
        return str(source)
    return source


def clean_container_text(text: str) -> str:
    """
    Normalize raw container text.

    Removes control characters, normalizes line endings, keeps at most one
    blank line between paragraphs and trims every line.
    """
    if not text:
        return ""
    text = CONTROL_CHARS.sub("", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    return text.strip()


def extract_pdf_text(source: Source) -> str:
    """
    Extract the text layer of a PDF with pdfplumber.

    Raises:
        FormatParseError: If the PDF cannot be opened or read
    """
    import pdfplumber

    try:
        with pdfplumber.open(_as_stream(source)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as e:
        raise FormatParseError("pdf", str(e)) from e

    logger.info(f"Extracted text layer from {len(pages)} PDF page(s)")
    return clean_container_text("\n\n".join(pages))


def extract_docx_text(source: Source) -> str:
    """
    Extract paragraph text from a Word document with python-docx.

    Paragraphs are separated by blank lines so that each one is a
    paragraph break for the line-based structure extractor.

    Raises:
        FormatParseError: If the document cannot be parsed
    """
    try:
        from docx import Document as DocxDocument
        document = DocxDocument(_as_stream(source))
    except Exception as e:
        raise FormatParseError("docx", str(e)) from e

    paragraphs = [p.text for p in document.paragraphs]
    return clean_container_text("\n\n".join(paragraphs))


def extract_plain_text(source: Source) -> str:
    """
    Decode a plain-text file as UTF-8.

    Raises:
        FormatParseError: If the bytes are not valid UTF-8
    """
    data = read_source(source)
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise FormatParseError("text", str(e)) from e
    return clean_container_text(text)


CONTAINER_EXTRACTORS = {
    SourceFormat.PDF: extract_pdf_text,
    SourceFormat.DOCX: extract_docx_text,
    SourceFormat.TEXT: extract_plain_text,
}


def extract_text(source: Source, kind: SourceFormat) -> str:
    """
    Pull raw text out of a pdf/docx/plain-text container.

    Args:
        source: Path, bytes or binary file handle
        kind: Container kind, as returned by detect_format

    Returns:
        Cleaned text with blank lines between paragraphs
    """
    try:
        extractor = CONTAINER_EXTRACTORS[kind]
    except KeyError:
        raise UnsupportedFormat(f"No text extractor for format: {kind.value}")
    return extractor(source)


# ============================================================================
# PDF to Image Conversion
# ============================================================================

def load_pdf(
    source: Source,
    dpi: int = 300,
    first_page: Optional[int] = None,
    last_page: Optional[int] = None
) -> List[np.ndarray]:
    """
    Convert PDF pages to images using pdf2image (poppler backend).

    Args:
        source: PDF path or bytes
        dpi: Resolution for rendering (300-400 recommended for OCR)
        first_page: First page to convert (1-indexed, None = first)
        last_page: Last page to convert (1-indexed, None = last)

    Returns:
        List of numpy arrays (BGR format) representing each page

    Raises:
        FormatParseError: If the PDF cannot be rendered
    """
    from pdf2image import convert_from_bytes, convert_from_path

    try:
        logger.info(f"Rasterizing PDF at {dpi} DPI")
        if isinstance(source, (str, Path)):
            pil_images = convert_from_path(
                str(source), dpi=dpi, first_page=first_page, last_page=last_page, fmt="png"
            )
        else:
            pil_images = convert_from_bytes(
                read_source(source), dpi=dpi, first_page=first_page, last_page=last_page, fmt="png"
            )
    except Exception as e:
        if "poppler" in str(e).lower():
            raise FormatParseError(
                "pdf",
                "Poppler is not installed; scanned PDFs cannot be rendered",
                suggestion="Upload the essay as an image or install poppler-utils."
            ) from e
        raise FormatParseError("pdf", str(e)) from e

    images = []
    for pil_img in pil_images:
        img_array = np.array(pil_img.convert("RGB"))
        # RGB -> BGR for OpenCV compatibility
        images.append(img_array[:, :, ::-1].copy())

    logger.info(f"Converted {len(images)} pages from PDF")
    return images


# ============================================================================
# Image Loading
# ============================================================================

def load_image(
    image_path: Union[str, Path],
    grayscale: bool = False
) -> np.ndarray:
    """
    Load an image from file.

    Raises:
        FileNotFoundError: If image file doesn't exist
        ValueError: If image cannot be decoded
    """
    import cv2

    image_path = Path(image_path)
    if not image_path.exists():
        raise FileNotFoundError(f"Image file not found: {image_path}")

    flag = cv2.IMREAD_GRAYSCALE if grayscale else cv2.IMREAD_COLOR
    img = cv2.imread(str(image_path), flag)

    if img is None:
        raise ValueError(f"Could not decode image: {image_path}")

    logger.debug(f"Loaded image: {image_path}, shape: {img.shape}")
    return img


def save_image(image: np.ndarray, output_path: Union[str, Path]) -> Path:
    """Save an image losslessly as PNG (or whatever the suffix says)."""
    import cv2

    output_path = Path(output_path)
    if output_path.suffix.lower() == ".png":
        ok = cv2.imwrite(str(output_path), image, [cv2.IMWRITE_PNG_COMPRESSION, 0])
    else:
        ok = cv2.imwrite(str(output_path), image)
    if not ok:
        raise ValueError(f"Could not encode image: {output_path}")

    logger.debug(f"Saved image: {output_path}")
    return output_path


# ============================================================================
# Temporary Artifacts
# ============================================================================

def new_temp_path(prefix: str = "essay_ocr_", suffix: str = ".png") -> Path:
    """Reserve a uniquely named temporary file and return its path."""
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    os.close(fd)
    return Path(name)


def remove_file(path: Union[str, Path]) -> None:
    """Delete a temporary file, logging (not raising) on failure."""
    try:
        Path(path).unlink()
        logger.debug(f"Removed temp file: {path}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove temp file {path}: {e}")


@contextmanager
def temporary_artifact(
    prefix: str = "essay_ocr_",
    suffix: str = ".png"
) -> Iterator[Path]:
    """
    Scope a temporary file to a with-block.

    The file is deleted on every exit path, including exceptions.
    """
    path = new_temp_path(prefix=prefix, suffix=suffix)
    try:
        yield path
    finally:
        remove_file(path)


# ============================================================================
# JSON Serialization
# ============================================================================

class EnhancedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy types, enums and dataclasses."""

    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        if hasattr(obj, "__dataclass_fields__"):
            return asdict(obj)
        if isinstance(obj, Path):
            return str(obj)
        return super().default(obj)


def save_json(
    data: Any,
    output_path: Union[str, Path],
    indent: int = 2,
    ensure_ascii: bool = False
) -> Path:
    """Save data to a JSON file, creating parent directories."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, ensure_ascii=ensure_ascii, cls=EnhancedJSONEncoder)

    logger.debug(f"Saved JSON: {output_path}")
    return output_path


def load_json(json_path: Union[str, Path]) -> Any:
    """Load data from a JSON file."""
    json_path = Path(json_path)
    if not json_path.exists():
        raise FileNotFoundError(f"JSON file not found: {json_path}")

    with open(json_path, "r", encoding="utf-8") as f:
        return json.load(f)
