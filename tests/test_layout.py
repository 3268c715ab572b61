"""
Tests for block layout module.
"""

import pytest
import sys
from pathlib import Path
from types import SimpleNamespace

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


class TestBoundingBox:
    """Test BoundingBox class."""

    def test_bbox_properties(self):
        """Test bounding box computed properties."""
        from essay_ocr.utils.layout import BoundingBox

        bbox = BoundingBox(10, 20, 110, 70)

        assert bbox.width == 100
        assert bbox.height == 50
        assert bbox.center == (60, 45)
        assert bbox.to_tuple() == (10, 20, 110, 70)

    def test_bbox_from_xywh(self):
        from essay_ocr.utils.layout import BoundingBox

        assert BoundingBox.from_xywh(10, 20, 100, 50).to_tuple() == (10, 20, 110, 70)

    def test_bbox_from_vertices(self):
        """Vision API vertices may omit zero coordinates."""
        from essay_ocr.utils.layout import BoundingBox

        vertices = [
            SimpleNamespace(x=None, y=5),
            SimpleNamespace(x=40, y=5),
            SimpleNamespace(x=40, y=25),
            SimpleNamespace(x=None, y=25),
        ]

        assert BoundingBox.from_vertices(vertices).to_tuple() == (0, 5, 40, 25)
        assert BoundingBox.from_vertices([]) is None

    def test_bbox_union(self):
        from essay_ocr.utils.layout import BoundingBox

        union = BoundingBox.union([BoundingBox(10, 10, 20, 20), None, BoundingBox(5, 15, 30, 18)])

        assert union.to_tuple() == (5, 10, 30, 20)
        assert BoundingBox.union([None]) is None


class TestBlock:
    """Test Block class."""

    def test_block_confidence_scaled(self):
        from essay_ocr.utils.layout import Block, Word

        block = Block(text="two words", words=[Word("two", 0.9), Word("words", 0.5)])

        assert block.confidence == pytest.approx(70.0)
        assert block.word_count == 2

    def test_block_without_words(self):
        from essay_ocr.utils.layout import Block

        assert Block(text="empty").confidence == 0.0

    def test_block_to_dict(self):
        from essay_ocr.utils.layout import Block, BlockType, BoundingBox

        block = Block(text="Introduction", bbox=BoundingBox(0, 0, 100, 20), block_type=BlockType.HEADING)
        data = block.to_dict()

        assert data["type"] == "heading"
        assert data["bbox"] == (0, 0, 100, 20)


class TestReadingOrder:
    """Test reading order resolution."""

    def _block(self, text, x1, y1, x2, y2, page=0):
        from essay_ocr.utils.layout import Block, BoundingBox
        return Block(text=text, bbox=BoundingBox(x1, y1, x2, y2), page=page)

    def test_single_column_sorted_top_to_bottom(self):
        from essay_ocr.utils.layout import assign_reading_order

        blocks = [
            self._block("third", 10, 300, 390, 340),
            self._block("first", 10, 10, 390, 50),
            self._block("second", 10, 150, 390, 190),
        ]

        ordered = assign_reading_order(blocks)

        assert [b.text for b in ordered] == ["first", "second", "third"]
        assert [b.reading_order for b in ordered] == [0, 1, 2]

    def test_two_columns_left_first(self):
        from essay_ocr.utils.layout import assign_reading_order, detect_num_columns

        blocks = []
        for row in range(3):
            y = 20 + row * 100
            blocks.append(self._block(f"R{row}", 220, y, 400, y + 40))
            blocks.append(self._block(f"L{row}", 0, y, 180, y + 40))

        assert detect_num_columns(blocks, 400) == 2

        ordered = assign_reading_order(blocks)

        assert [b.text for b in ordered] == ["L0", "L1", "L2", "R0", "R1", "R2"]
        assert [b.column_index for b in ordered] == [0, 0, 0, 1, 1, 1]

    def test_pages_kept_in_order(self):
        from essay_ocr.utils.layout import assign_reading_order

        blocks = [
            self._block("page two", 10, 10, 300, 40, page=1),
            self._block("page one", 10, 500, 300, 540, page=0),
        ]

        assert [b.text for b in assign_reading_order(blocks)] == ["page one", "page two"]

    def test_blocks_without_geometry_keep_engine_order(self):
        from essay_ocr.utils.layout import Block, assign_reading_order

        blocks = [Block(text="b"), Block(text="a"), Block(text="c")]

        assert [b.text for b in assign_reading_order(blocks)] == ["b", "a", "c"]

    def test_empty(self):
        from essay_ocr.utils.layout import assign_reading_order

        assert assign_reading_order([]) == []


class TestFragmentRules:
    """Test fragment classification of short blocks."""

    @pytest.mark.parametrize("text,rule", [
        ("however", "noise_token"),
        ("Therefore.", "noise_token"),
        ("spread   during", "noise_token"),
        ("-", "noise_token"),
        ("Wow!", "too_short"),
        ("the end", "too_short"),
    ])
    def test_fragments(self, text, rule):
        from essay_ocr.utils.layout import match_fragment_rule

        assert match_fragment_rule(text).name == rule

    @pytest.mark.parametrize("text", [
        "We went to the beach",
        "Extraordinarily",
        "unquestionable results",
    ])
    def test_not_fragments(self, text):
        from essay_ocr.utils.layout import match_fragment_rule

        assert match_fragment_rule(text) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
