"""Instruction prompt for receipt extraction.

The prompt lives in a plain text file (``EXTRACTION_PROMPT_PATH``, by
default ``receiptly/prompts/receipt_extraction.txt``) so it can be
iterated on without touching code.  When the file cannot be read the
short built-in prompt below is used instead; that is expected in some
deployments and is not an error.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_EXTRACTION_PROMPT = (
    "Analyze receipt image and return JSON with date, merchant, amount, items, and category"
)


def get_default_extraction_prompt() -> str:
    """Return the built-in fallback prompt."""
    return DEFAULT_EXTRACTION_PROMPT


def load_extraction_prompt(path: Optional[str]) -> str:
    """Read the extraction prompt from ``path`` or fall back to the default."""
    if not path:
        return get_default_extraction_prompt()
    try:
        text = Path(path).read_text(encoding="utf-8").strip()
    except OSError as exc:
        logger.info("[prompts] extraction prompt unavailable path=%s err=%s; using default", path, exc)
        return get_default_extraction_prompt()
    if not text:
        logger.info("[prompts] extraction prompt empty path=%s; using default", path)
        return get_default_extraction_prompt()
    return text
