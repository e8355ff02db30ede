"""
Tests for the extraction quality gate.
"""
from manualqa.quality import is_insufficient, should_attempt_ocr

GOOD_PROSE = "Turn the main valve clockwise until the pressure gauge reads 2 bar. " * 9
NOISY = "ab $$ %% && ** ++ == // @@ ## " * 10


def test_short_text_is_insufficient():
    assert is_insufficient("Only forty characters of text in here..", 1)


def test_long_clean_text_is_sufficient():
    assert len(GOOD_PROSE) > 600
    assert not is_insufficient(GOOD_PROSE, 1)


def test_too_few_chars_per_page():
    # ~600 characters spread across 20 pages
    assert is_insufficient(GOOD_PROSE, 20)


def test_low_meaningful_ratio():
    assert is_insufficient(NOISY, 1)


def test_ocr_only_for_short_documents():
    short = "Scanned page"
    assert should_attempt_ocr(short, 30)
    assert not should_attempt_ocr(short, 31)
    assert should_attempt_ocr(short, 5, max_pages=5)
    assert not should_attempt_ocr(GOOD_PROSE, 1)
