"""
Bridge to the external OCR service.

The service contract is POST {"content": <base64>, "mimeType": <mime>} ->
{"text": <str|null>}. OCR is best effort: every failure is logged and
reported as "no OCR result" so ingestion continues with the extracted text.
"""
import asyncio
import base64
from typing import Optional

import aiohttp

from .logging_config import logger
from .sanitizer import meaningful_char_ratio, sanitize

OCR_MARKER = "--- OCR EXTRACTED TEXT ---"
DEFAULT_REPLACE_RATIO = 0.8


class OcrClient:
    def __init__(self, url: str, timeout: float = 120.0):
        self.url = url
        self.timeout = timeout

    async def ocr(self, data: bytes, mime_type: str) -> Optional[str]:
        """Run OCR on a document. Returns None on any failure or empty result."""
        payload = {
            "content": base64.b64encode(data).decode("ascii"),
            "mimeType": mime_type,
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as r:
                    if not r.ok:
                        body = await r.text()
                        logger.error("OCR service error", status=r.status, body=body[:200])
                        return None
                    data_json = await r.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error("OCR request failed", error=str(e) or e.__class__.__name__)
            return None

        text = data_json.get("text") if isinstance(data_json, dict) else None
        if not isinstance(text, str) or not text.strip():
            logger.warning("OCR returned no text")
            return None
        logger.info("OCR completed", chars=len(text))
        return text


def merge_ocr_text(original: str, ocr_text: str, replace_ratio: float = DEFAULT_REPLACE_RATIO) -> str:
    """
    Combine extracted text with an OCR result.

    Clean OCR output (meaningful ratio above `replace_ratio`) replaces the
    extraction; otherwise both are kept, separated by a marker line.
    """
    clean_ocr = sanitize(ocr_text)
    if meaningful_char_ratio(clean_ocr) > replace_ratio:
        logger.info("High OCR quality, using OCR text only")
        return clean_ocr
    if not original.strip():
        return clean_ocr
    logger.info("Combining extracted text with OCR text")
    return f"{original}\n\n{OCR_MARKER}\n{clean_ocr}"
