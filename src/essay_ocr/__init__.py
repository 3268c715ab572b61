"""
Essay OCR Extraction Pipeline
=============================

Turns a submitted essay (handwritten photo, scanned or digital PDF, DOCX or
plain text) into one normalized record: text, an optional title, ordered
section names and paragraphs attributed to sections.

Main components:
- Format detection and container text extraction
- Image preprocessing (standard and enhanced profiles)
- OCR with cloud/local engine fallback and confidence-gated retry
- OCR artifact correction (never spelling)
- Title, section and paragraph segmentation
- Declared-title validation
"""

__version__ = "1.0.0"
__author__ = "Essay OCR Team"
