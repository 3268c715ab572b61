"""
Tests for OCR artifact correction.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def word_set(*words):
    known = {w.lower() for w in words}
    return lambda word: word.lower() in known


class TestCharacterConfusions:
    """Test digit/letter and rn/m confusion rules."""

    @pytest.fixture
    def corrector(self):
        from essay_ocr.utils.corrections import TextCorrector
        return TextCorrector(dictionary=word_set("time", "modern", "home"))

    def test_zero_before_letter(self, corrector):
        text, corrections = corrector.correct("We went 0ver the hill.")

        assert text == "We went over the hill."
        assert len(corrections) == 1
        assert corrections[0].original == "0"
        assert corrections[0].replacement == "o"
        assert corrections[0].type == "character_confusion"

    def test_l_before_digit(self, corrector):
        text, corrections = corrector.correct("It cost l0 dollars.")

        assert text == "It cost 10 dollars."
        assert [c.reason for c in corrections] == ["OCR confusion: l→1"]

    def test_double_pipe(self, corrector):
        text, corrections = corrector.correct("The wa|| was tall.")

        assert text == "The wall was tall."
        assert corrections[0].replacement == "ll"

    def test_rn_to_m_when_candidate_is_a_word(self, corrector):
        text, corrections = corrector.correct("It was tirne to go.")

        assert text == "It was time to go."
        assert corrections[0].original == "tirne"
        assert corrections[0].replacement == "time"

    def test_rn_allowlist_untouched(self, corrector):
        text, corrections = corrector.correct("A modern home.")

        assert text == "A modern home."
        assert corrections == []

    def test_rn_unknown_candidate_untouched(self, corrector):
        text, corrections = corrector.correct("The barnacle held on.")

        assert "barnacle" in text
        assert corrections == []

    def test_no_dictionary_skips_rn_pass(self):
        from essay_ocr.utils.corrections import TextCorrector

        corrector = TextCorrector(dictionary=None)
        corrector._dictionary_loaded = True

        text, corrections = corrector.correct("It was tirne to go.")

        assert text == "It was tirne to go."
        assert corrections == []


class TestWordConfusions:
    """Test the fixed word-confusion table."""

    @pytest.fixture
    def corrector(self):
        from essay_ocr.utils.corrections import TextCorrector
        return TextCorrector(dictionary=word_set())

    @pytest.mark.parametrize("raw,expected", [
        ("I saw teh sea.", "I saw the sea."),
        ("Salt adn pepper here.", "Salt and pepper here."),
        ("Over tbe bridge.", "Over the bridge."),
        ("Tea wlth milk.", "Tea with milk."),
    ])
    def test_table(self, corrector, raw, expected):
        text, corrections = corrector.correct(raw)

        assert text == expected
        assert len(corrections) == 1
        assert corrections[0].type == "ocr_error"

    def test_case_is_kept(self, corrector):
        text, corrections = corrector.correct("Teh beach was calm.")

        assert text == "The beach was calm."
        assert corrections[0].original == "Teh"
        assert corrections[0].replacement == "The"

    def test_spelling_mistakes_are_left_alone(self, corrector):
        text, corrections = corrector.correct("I recieve letters.")

        assert text == "I recieve letters."
        assert corrections == []

    def test_correction_to_dict(self, corrector):
        _, corrections = corrector.correct("teh end")

        assert corrections[0].to_dict() == {
            "type": "ocr_error",
            "original": "teh",
            "replacement": "the",
            "reason": "OCR confusion: teh→the",
        }


class TestStructuralCleanup:
    """Test passes that fix layout without recording corrections."""

    @pytest.fixture
    def corrector(self):
        from essay_ocr.utils.corrections import TextCorrector
        return TextCorrector(dictionary=word_set())

    def test_sentence_spacing(self, corrector):
        text, corrections = corrector.correct("It was late.We went home.")

        assert text == "It was late. We went home."
        assert corrections == []

    def test_standalone_i(self, corrector):
        text, _ = corrector.correct("i think i can.")

        assert text == "I think I can."

    def test_abbreviation_kept(self, corrector):
        text, _ = corrector.correct("Fruit, i.e. apples.")

        assert text == "Fruit, i.e. apples."

    def test_whitespace_collapsed_newlines_kept(self, corrector):
        text, _ = corrector.correct("  First   line here \n\n\n\nSecond\t\tline  ")

        assert text == "First line here\n\nSecond line"

    def test_space_before_punctuation(self, corrector):
        text, _ = corrector.correct("Hello , world !")

        assert text == "Hello, world!"

    def test_control_characters_removed(self, corrector):
        text, _ = corrector.correct("Bad\x07 byte")

        assert text == "Bad byte"

    def test_empty_input(self, corrector):
        assert corrector.correct("   ") == ("", [])

    def test_normalize_skips_confusion_rules(self, corrector):
        assert corrector.normalize("i saw teh 0cean.") == "I saw teh 0cean."


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
