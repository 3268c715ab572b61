"""
Tests for the OCR engines and the engine fallback policy.
"""

import pytest
import numpy as np
import sys
import threading
from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def make_result(confidence, engine, text="Recognized essay text for the test"):
    from essay_ocr.utils.ocr_text import OCRResult
    return OCRResult(text=text, confidence=confidence, engine_used=engine)


class FakeCloud:
    """Cloud engine stand-in returning a fixed confidence."""

    name = "google_vision"

    def __init__(self, confidence=85.0, configured=True, error=None, block=None):
        self.confidence = confidence
        self.is_configured = configured
        self.error = error
        self.block = block
        self.calls = 0

    def detect_document_text(self, content):
        self.calls += 1
        if self.block is not None:
            self.block.wait(5)
        if self.error is not None:
            raise self.error
        return make_result(self.confidence, self.name)


class FakeLocal:
    """Local engine stand-in returning confidences in sequence."""

    name = "tesseract"

    def __init__(self, confidences=(80.0,), error=None):
        self.confidences = list(confidences)
        self.error = error
        self.paths = []

    def recognize(self, image_path):
        self.paths.append(Path(image_path))
        if self.error is not None:
            raise self.error
        confidence = self.confidences[min(len(self.paths), len(self.confidences)) - 1]
        return make_result(confidence, self.name)

    def close(self):
        pass


class TestOrchestrator:
    """Test the confidence-gated cloud/local policy."""

    @pytest.fixture
    def image_file(self, tmp_path):
        import cv2

        img = np.ones((120, 160, 3), dtype=np.uint8) * 220
        img[30:40, 10:150] = 30
        img[60:70, 10:120] = 30
        path = tmp_path / "essay.png"
        cv2.imwrite(str(path), img)
        return path

    @pytest.fixture
    def make_orchestrator(self):
        from essay_ocr.config import ImageConfig, OCRConfig, STANDARD_PROFILE, ENHANCED_PROFILE
        from essay_ocr.utils.ocr_text import OCROrchestrator

        created = []

        def factory(cloud=None, local=None, **ocr_overrides):
            image_config = ImageConfig(
                standard=replace(STANDARD_PROFILE, max_dimension=320),
                enhanced=replace(ENHANCED_PROFILE, max_dimension=400),
            )
            orchestrator = OCROrchestrator(
                cloud=cloud,
                local=local,
                config=OCRConfig(**ocr_overrides),
                image_config=image_config
            )
            created.append(orchestrator)
            return orchestrator

        yield factory

        for orchestrator in created:
            orchestrator.close()

    def test_high_cloud_confidence_is_accepted(self, image_file, make_orchestrator):
        cloud, local = FakeCloud(85.0), FakeLocal()

        result = make_orchestrator(cloud, local).recognize(image_file)

        assert result.engine_used == "google_vision"
        assert result.confidence == 85.0
        assert cloud.calls == 1
        assert local.paths == []

    def test_low_cloud_confidence_falls_back_to_local(self, image_file, make_orchestrator):
        cloud, local = FakeCloud(65.0), FakeLocal([80.0])

        result = make_orchestrator(cloud, local).recognize(image_file)

        assert len(local.paths) == 1
        assert result.engine_used == "tesseract"
        assert "cloud_low_confidence" in [w.type for w in result.warnings]

    def test_cloud_exactly_at_threshold_falls_back(self, image_file, make_orchestrator):
        cloud, local = FakeCloud(70.0), FakeLocal([80.0])

        result = make_orchestrator(cloud, local).recognize(image_file)

        assert result.engine_used == "tesseract"

    def test_cloud_timeout_falls_back_to_local(self, image_file, make_orchestrator):
        release = threading.Event()
        cloud, local = FakeCloud(95.0, block=release), FakeLocal([75.0])

        try:
            result = make_orchestrator(cloud, local, cloud_timeout=0.2).recognize(image_file)
        finally:
            release.set()

        assert result.engine_used == "tesseract"
        assert result.confidence == 75.0
        assert "cloud_timeout" in [w.type for w in result.warnings]

    def test_unconfigured_cloud_is_skipped(self, image_file, make_orchestrator):
        cloud, local = FakeCloud(configured=False), FakeLocal([80.0])

        result = make_orchestrator(cloud, local).recognize(image_file)

        assert cloud.calls == 0
        assert result.engine_used == "tesseract"
        assert "cloud_unavailable" in [w.type for w in result.warnings]

    def test_cloud_error_falls_back(self, image_file, make_orchestrator):
        cloud = FakeCloud(error=RuntimeError("quota exceeded"))
        local = FakeLocal([80.0])

        result = make_orchestrator(cloud, local).recognize(image_file)

        assert result.engine_used == "tesseract"
        assert "cloud_error" in [w.type for w in result.warnings]

    def test_low_local_confidence_retries_once(self, image_file, make_orchestrator):
        local = FakeLocal([35.0, 55.0])

        result = make_orchestrator(None, local).recognize(image_file)

        assert len(local.paths) == 2
        assert result.confidence == 55.0
        assert result.metadata["profile"] == "enhanced"
        assert result.metadata["retry"] is True

    def test_retry_keeps_better_first_pass(self, image_file, make_orchestrator):
        local = FakeLocal([35.0, 20.0])

        result = make_orchestrator(None, local).recognize(image_file)

        assert len(local.paths) == 2
        assert result.confidence == 35.0
        assert result.metadata["profile"] == "standard"

    def test_failed_retry_keeps_first_pass(self, image_file, make_orchestrator):
        class RetryCrashLocal(FakeLocal):
            def recognize(self, image_path):
                if self.paths:
                    self.paths.append(Path(image_path))
                    raise RuntimeError("tesseract crashed")
                return super().recognize(image_path)

        local = RetryCrashLocal([35.0])

        result = make_orchestrator(None, local).recognize(image_file)

        assert len(local.paths) == 2
        assert result.engine_used == "tesseract"
        assert result.confidence == 35.0
        assert result.metadata["profile"] == "standard"
        types = [w.type for w in result.warnings]
        assert "retry_failed" in types
        assert "enhanced_retry" not in types

    def test_no_retry_above_threshold(self, image_file, make_orchestrator):
        local = FakeLocal([45.0, 90.0])

        result = make_orchestrator(None, local).recognize(image_file)

        assert len(local.paths) == 1
        assert result.confidence == 45.0

    def test_preprocessed_artifacts_are_removed(self, image_file, make_orchestrator):
        local = FakeLocal([35.0, 50.0])

        make_orchestrator(None, local).recognize(image_file)

        assert len(local.paths) == 2
        for path in local.paths:
            assert path != image_file
            assert not path.exists()
        assert image_file.exists()

    def test_preprocessing_failure_uses_original(self, tmp_path, make_orchestrator):
        broken = tmp_path / "broken.png"
        broken.write_bytes(b"\x89PNG\r\n\x1a\ncorrupt")
        local = FakeLocal([80.0])

        result = make_orchestrator(None, local).recognize(broken)

        assert local.paths == [broken]
        assert result.metadata["profile"] == "original"
        assert "preprocessing_failed" in [w.type for w in result.warnings]

    def test_both_engines_failing_raises(self, image_file, make_orchestrator):
        from essay_ocr.errors import OcrExtractionFailed

        cloud = FakeCloud(error=RuntimeError("network down"))
        local = FakeLocal(error=RuntimeError("tesseract missing"))

        with pytest.raises(OcrExtractionFailed) as exc_info:
            make_orchestrator(cloud, local).recognize(image_file)

        types = [w.type for w in exc_info.value.warnings]
        assert "cloud_error" in types
        assert "local_ocr_error" in types

    def test_low_cloud_result_kept_when_local_fails(self, image_file, make_orchestrator):
        cloud = FakeCloud(60.0)
        local = FakeLocal(error=RuntimeError("tesseract missing"))

        result = make_orchestrator(cloud, local).recognize(image_file)

        assert result.engine_used == "google_vision"
        assert "low_confidence_cloud_kept" in [w.type for w in result.warnings]

    def test_empty_local_text_is_a_failure(self, image_file, make_orchestrator):
        from essay_ocr.errors import OcrExtractionFailed
        from essay_ocr.utils.ocr_text import OCRResult

        class BlankLocal(FakeLocal):
            def recognize(self, image_path):
                self.paths.append(Path(image_path))
                return OCRResult(text="  ", confidence=0.0, engine_used="tesseract")

        with pytest.raises(OcrExtractionFailed):
            make_orchestrator(None, BlankLocal()).recognize(image_file)


class TestTesseractParsing:
    """Test grouping of pytesseract image_to_data output."""

    @pytest.fixture
    def tesseract_data(self):
        return {
            "text": ["", "Introduction", "", "The", "beach", "was", "", "fun."],
            "conf": ["-1", "96", "-1", 90, 80, 70, "-1", 60],
            "block_num": [1, 1, 2, 2, 2, 2, 2, 2],
            "par_num": [0, 1, 0, 1, 1, 1, 2, 2],
            "left": [0, 10, 0, 10, 60, 120, 0, 10],
            "top": [0, 10, 0, 50, 50, 50, 0, 90],
            "width": [500, 120, 500, 40, 50, 40, 500, 40],
            "height": [400, 20, 300, 20, 20, 20, 100, 20],
        }

    def test_groups_by_block_and_paragraph(self, tesseract_data):
        from essay_ocr.utils.ocr_text import parse_tesseract_data

        blocks = parse_tesseract_data(tesseract_data)

        assert [b.text for b in blocks] == ["Introduction", "The beach was", "fun."]
        assert blocks[1].bbox.to_tuple() == (10, 50, 160, 70)
        assert blocks[1].confidence == pytest.approx(80.0)

    def test_mean_confidence(self, tesseract_data):
        from essay_ocr.utils.ocr_text import parse_tesseract_data, mean_word_confidence

        blocks = parse_tesseract_data(tesseract_data)
        words = [w for b in blocks for w in b.words]

        assert mean_word_confidence(words) == pytest.approx((96 + 90 + 80 + 70 + 60) / 5)

    def test_close_without_session(self):
        from essay_ocr.utils.ocr_text import TesseractEngine

        engine = TesseractEngine()
        engine.close()
        engine.close()


class TestVisionParsing:
    """Test conversion of Vision API annotations."""

    @staticmethod
    def _word(text, confidence, x):
        vertices = [SimpleNamespace(x=x, y=10), SimpleNamespace(x=x + 40, y=10),
                    SimpleNamespace(x=x + 40, y=30), SimpleNamespace(x=x, y=30)]
        return SimpleNamespace(
            symbols=[SimpleNamespace(text=c) for c in text],
            confidence=confidence,
            bounding_box=SimpleNamespace(vertices=vertices)
        )

    @pytest.fixture
    def annotation(self):
        block = SimpleNamespace(
            bounding_box=SimpleNamespace(vertices=[
                SimpleNamespace(x=5, y=5), SimpleNamespace(x=200, y=5),
                SimpleNamespace(x=200, y=40), SimpleNamespace(x=5, y=40),
            ]),
            paragraphs=[SimpleNamespace(words=[
                self._word("My", 0.9, 10),
                self._word("Essay", 0.7, 60),
            ])]
        )
        return SimpleNamespace(text="My Essay\n", pages=[SimpleNamespace(blocks=[block])])

    def test_parse_annotation(self, annotation):
        from essay_ocr.utils.ocr_text import parse_vision_annotation

        blocks = parse_vision_annotation(annotation)

        assert len(blocks) == 1
        assert blocks[0].text == "My Essay"
        assert blocks[0].bbox.to_tuple() == (5, 5, 200, 40)
        assert [w.text for w in blocks[0].words] == ["My", "Essay"]

    def test_build_result_confidence_scaled(self, annotation):
        from essay_ocr.utils.ocr_text import CloudVisionEngine

        result = CloudVisionEngine(client=object()).build_result(annotation)

        assert result.engine_used == "google_vision"
        assert result.confidence == pytest.approx(80.0)
        assert result.text == "My Essay"
        assert result.word_confidences == [("My", 90.0), ("Essay", 70.0)]

    def test_unconfigured_without_credentials(self):
        from essay_ocr.config import OCRConfig
        from essay_ocr.utils.ocr_text import CloudVisionEngine

        engine = CloudVisionEngine(OCRConfig(credentials_path=None))

        assert engine.is_configured is False

    def test_configured_with_injected_client(self):
        from essay_ocr.utils.ocr_text import CloudVisionEngine

        assert CloudVisionEngine(client=object()).is_configured is True

    def test_missing_library_warned_once(self, monkeypatch, tmp_path, caplog):
        import logging
        from essay_ocr.config import OCRConfig
        from essay_ocr.utils.ocr_text import CloudVisionEngine

        for module in ("google", "google.cloud", "google.cloud.vision"):
            monkeypatch.setitem(sys.modules, module, None)
        credentials = tmp_path / "credentials.json"
        credentials.write_text("{}")
        engine = CloudVisionEngine(OCRConfig(credentials_path=str(credentials)))

        with caplog.at_level(logging.WARNING):
            checks = [engine.is_configured for _ in range(3)]

        assert checks == [False, False, False]
        missing = [r for r in caplog.records if "google-cloud-vision not installed" in r.getMessage()]
        assert len(missing) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
