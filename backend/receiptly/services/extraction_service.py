"""Receipt extraction service using the OpenAI vision models.

This service turns a receipt image into a *raw* dictionary of fields.
It does not judge the values: everything it returns must still pass
``receiptly.services.receipt_validation`` before it is stored.

One request is made per image through ``openai.AsyncOpenAI``; the SDK
retries transient failures (connection errors, rate limits, 5xx) up to
``EXTRACTION_MAX_RETRIES`` times.  The model answers in free text which
is expected to contain a single JSON object; :func:`extract_json_object`
pulls that object out or fails with ``ExtractionFormatError``.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, Optional

import openai
from fastapi.concurrency import run_in_threadpool
from openai import AsyncOpenAI

from receiptly.core.config import Settings
from receiptly.core.errors import ExtractionFormatError, ExtractionProviderError
from receiptly.utils.image_processing import preprocess_image
from receiptly.utils.prompts import load_extraction_prompt

logger = logging.getLogger(__name__)

INVALID_FORMAT_MESSAGE = "AI returned invalid data format"


def extract_json_object(text: Optional[str]) -> Dict[str, Any]:
    """Return the JSON object embedded in ``text``.

    The slice runs from the first ``{`` to the last ``}``; anything around
    it (prose, markdown fences) is discarded.  Raises
    ``ExtractionFormatError`` when there is no such slice, it does not
    parse, or it is not an object.
    """
    if not text:
        raise ExtractionFormatError(INVALID_FORMAT_MESSAGE)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise ExtractionFormatError(INVALID_FORMAT_MESSAGE)
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as exc:
        raise ExtractionFormatError(INVALID_FORMAT_MESSAGE) from exc
    if not isinstance(data, dict):
        raise ExtractionFormatError(INVALID_FORMAT_MESSAGE)
    return data


class ExtractionClient:
    """Client responsible for extracting raw receipt fields from an image.

    Diagnostic logging can be enabled with ``EXTRACTION_DEBUG=1``.
    """

    def __init__(
        self,
        client: Optional[AsyncOpenAI],
        model: str = "gpt-4o-mini",
        max_tokens: int = 1000,
        temperature: float = 0.2,
        prompt_path: Optional[str] = None,
        debug: bool = False,
    ) -> None:
        self._client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.prompt_path = prompt_path
        self.debug = debug
        if self.debug:
            logger.info("[extraction:init] model=%s max_tokens=%s", self.model, self.max_tokens)

    @classmethod
    def from_settings(cls, cfg: Settings) -> "ExtractionClient":
        client: Optional[AsyncOpenAI] = None
        if cfg.OPENAI_API_KEY:
            client = AsyncOpenAI(api_key=cfg.OPENAI_API_KEY, max_retries=cfg.EXTRACTION_MAX_RETRIES)
        else:
            logger.warning("[extraction:init] OPENAI_API_KEY not set; extraction requests will fail")
        return cls(
            client,
            model=cfg.EXTRACTION_MODEL,
            max_tokens=cfg.EXTRACTION_MAX_TOKENS,
            temperature=cfg.EXTRACTION_TEMPERATURE,
            prompt_path=cfg.EXTRACTION_PROMPT_PATH,
            debug=cfg.EXTRACTION_DEBUG,
        )

    def build_messages(self, image_bytes: bytes, content_type: Optional[str] = None) -> list[dict[str, Any]]:
        """Build the single user message: the instruction text plus the inline image."""
        processed = preprocess_image(image_bytes)
        mime = "image/jpeg" if processed is not image_bytes else (content_type or "image/jpeg")
        b64 = base64.b64encode(processed).decode("utf-8")
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": load_extraction_prompt(self.prompt_path)},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{mime};base64,{b64}", "detail": "high"},
                    },
                ],
            }
        ]

    async def extract(self, image_bytes: bytes, content_type: Optional[str] = None) -> Dict[str, Any]:
        """Send the image to the model and return the raw JSON object it produced."""
        if self._client is None:
            raise ExtractionProviderError("AI extraction failed: OPENAI_API_KEY is not configured")
        # Pillow decoding and resizing is CPU bound
        messages = await run_in_threadpool(self.build_messages, image_bytes, content_type)
        if self.debug:
            logger.info("[extraction] request model=%s size=%d", self.model, len(image_bytes))
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.APIError as exc:
            logger.warning("[extraction] provider failure model=%s err=%s", self.model, exc)
            raise ExtractionProviderError("AI extraction failed") from exc

        content = response.choices[0].message.content if response.choices else None
        if self.debug:
            logger.info("[extraction] response chars=%d", len(content or ""))
        try:
            return extract_json_object(content)
        except ExtractionFormatError:
            logger.warning("[extraction] no JSON object in model output model=%s", self.model)
            raise
