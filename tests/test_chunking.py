"""
Tests for the separator-priority chunker.
"""
import pytest

from manualqa.chunking import chunk_document, split_text

STEPS = "".join(f"Step {i} done. " for i in range(1, 10))


def test_overlap_must_be_smaller_than_size():
    with pytest.raises(ValueError):
        split_text("text", chunk_size=100, chunk_overlap=100)


def test_empty_text():
    assert split_text("", 100, 10) == []
    assert chunk_document("", 100, 10) == []


def test_short_text_is_one_chunk():
    assert split_text("Short manual.", 100, 10) == ["Short manual."]


def test_sentence_chunks_carry_overlap():
    chunks = split_text(STEPS, chunk_size=60, chunk_overlap=20)
    assert len(chunks) == 3
    assert all(len(c) <= 60 for c in chunks)
    assert chunks[0].endswith("Step 4 done. ")
    assert chunks[1].startswith("Step 4 done. ")
    assert chunks[2].startswith("Step 7 done. ")


def test_hard_cut_when_no_separator():
    chunks = split_text("a" * 250, chunk_size=100, chunk_overlap=0)
    assert [len(c) for c in chunks] == [100, 100, 50]


def test_paragraphs_preferred_over_sentences():
    text = "First paragraph. Still first.\n\nSecond paragraph."
    chunks = split_text(text, chunk_size=35, chunk_overlap=0)
    assert chunks[0] == "First paragraph. Still first.\n\n"
    assert chunks[-1] == "Second paragraph."


def test_cjk_text_respects_size():
    text = "これは操作マニュアルの説明です。" * 30
    chunks = split_text(text, chunk_size=50, chunk_overlap=10)
    assert len(chunks) > 1
    assert all(len(c) <= 50 for c in chunks)


def test_chunk_document_orders_are_contiguous():
    long_text = ("Clean the intake filter every week. " * 120).strip()
    drafts = chunk_document(long_text, chunk_size=300, chunk_overlap=50)
    assert len(drafts) > 1
    assert [d.order for d in drafts] == list(range(1, len(drafts) + 1))
    assert all(d.text and d.text == d.text.strip() for d in drafts)
    assert all(len(d.text) <= 300 for d in drafts)
