"""
Extraction quality gate: decides whether extracted text is good enough or
the document should be sent to OCR.
"""
from .sanitizer import meaningful_char_ratio, sanitize

MIN_TOTAL_CHARS = 100
MIN_CHARS_PER_SEGMENT = 50
MIN_MEANINGFUL_RATIO = 0.6
DEFAULT_OCR_MAX_PAGES = 30


def is_insufficient(text: str, segment_count: int) -> bool:
    """
    Return True when extraction looks too thin or too noisy to trust.

    Rules are evaluated in order and the first match wins:
    1. fewer than 100 sanitized characters in total;
    2. fewer than 50 sanitized characters per page/segment;
    3. less than 60% meaningful characters.
    """
    clean = sanitize(text)
    length = len(clean)

    if length < MIN_TOTAL_CHARS:
        return True

    if segment_count > 0 and length / max(segment_count, 1) < MIN_CHARS_PER_SEGMENT:
        return True

    if meaningful_char_ratio(clean) < MIN_MEANINGFUL_RATIO:
        return True

    return False


def should_attempt_ocr(text: str, segment_count: int, max_pages: int = DEFAULT_OCR_MAX_PAGES) -> bool:
    """OCR is only worth paying for on short documents whose extraction is insufficient."""
    return segment_count <= max_pages and is_insufficient(text, segment_count)
