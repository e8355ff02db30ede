"""
Text normalization for extracted document text.

sanitize() is applied to raw extraction output, to OCR output and to every
chunk before it is embedded. It must be idempotent: the rule pipeline is
re-applied until the text stops changing, so a rule that exposes a new match
for an earlier rule (e.g. dropping a noise line between blank lines) is
handled in the same call.
"""
import re

# ASCII alphanumerics, hiragana, katakana, CJK ideographs and sentence punctuation
_MEANINGFUL_CHAR = re.compile(r"[a-zA-Z0-9\u3040-\u309f\u30a0-\u30ff\u4e00-\u9faf。、！？.,!?]")

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_DECORATIVE_GLYPHS = re.compile(r"[▪▫■□●○◆◇▲△▼▽★☆※｜￨∣\\|~`^{}\[\]<>＜＞｛｝［］]")
_REPEATED_CHAR = re.compile(r"(.)\1{4,}", re.DOTALL)
_REPEATED_IDEOGRAPHIC_STOP = re.compile(r"[。、]{3,}|。{2,}")
_REPEATED_EXCLAMATION = re.compile(r"[!！]{2,}")
_REPEATED_QUESTION = re.compile(r"[?？]{2,}")
_DASHES = re.compile(r"[－―‐‑‒–—]")
_DOUBLE_QUOTES = re.compile(r"[“”„‟″＂]")
_SINGLE_QUOTES = re.compile(r"[‘’‚‛′＇]")
_SPACE_CLASSES = re.compile(r"[\t\u00a0\u2000-\u200b\u2028\u2029\u202f\u205f\u3000\ufeff]")
_MULTI_SPACE = re.compile(r" {2,}")
_SPACE_AROUND_NEWLINE = re.compile(r" *\n *")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")


def is_meaningful_char(ch: str) -> bool:
    """ASCII letters and digits, kana, CJK ideographs and sentence punctuation."""
    return _MEANINGFUL_CHAR.fullmatch(ch) is not None


def meaningful_char_ratio(text: str) -> float:
    """Share of characters in `text` that carry content."""
    if not text:
        return 0.0
    meaningful = sum(1 for ch in text if is_meaningful_char(ch))
    return meaningful / len(text)


def _is_noise_line(line: str) -> bool:
    stripped = line.strip()
    if not stripped:
        return False
    if len(stripped) == 1 and not is_meaningful_char(stripped):
        return True
    if len(stripped) <= 2 and not any(ch.isalnum() for ch in stripped):
        return True
    return False


def _sanitize_once(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    text = _DECORATIVE_GLYPHS.sub("", text)
    text = _REPEATED_CHAR.sub(r"\1\1\1", text)
    text = _REPEATED_IDEOGRAPHIC_STOP.sub("。", text)
    text = _REPEATED_EXCLAMATION.sub("!", text)
    text = _REPEATED_QUESTION.sub("?", text)
    text = _DASHES.sub("-", text)
    text = _DOUBLE_QUOTES.sub('"', text)
    text = _SINGLE_QUOTES.sub("'", text)
    text = _SPACE_CLASSES.sub(" ", text)
    text = _MULTI_SPACE.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE.sub("\n", text)
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    lines = [line for line in text.split("\n") if not _is_noise_line(line)]
    return "\n".join(lines).strip()


def sanitize(text: str) -> str:
    """
    Normalize raw extracted text.

    Strips control characters and OCR noise glyphs, limits repeated
    characters and punctuation, maps dash/quote variants to ASCII, folds
    whitespace to single spaces and at most one blank line, and drops lines
    that carry no content.

    Every rule either shortens the text or replaces a non-ASCII variant with
    its ASCII form, so the loop terminates.
    """
    if not text or not isinstance(text, str):
        return ""
    current = text
    while True:
        cleaned = _sanitize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned
