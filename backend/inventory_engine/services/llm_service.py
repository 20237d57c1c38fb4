r"""backend/inventory_engine/services/llm_service.py

Optional integration with Google's Gemini API.

The engine's numbers never come from here: this service only rewrites the
rule-based key findings of an analysis report into plain business language.
If the ``GEMINI_API_KEY`` environment variable is not set the function
returns ``None`` and the caller keeps its own findings.  Whatever the model
returns is validated by the caller before use.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Optional

import google.generativeai as genai

LOGGER = logging.getLogger(__name__)

_configured_key: Optional[str] = None


def _get_client() -> Optional[Any]:
    """Return the configured ``genai`` module if credentials are available."""

    global _configured_key
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        return None
    if _configured_key != api_key:
        genai.configure(api_key=api_key)
        _configured_key = api_key
    return genai


def _extract_json_list(text: str) -> Optional[List[Any]]:
    start, end = text.find("["), text.rfind("]")
    if start < 0 or end <= start:
        return None
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, list) else None


def summarize_report(context_object: Dict[str, Any]) -> Optional[List[Any]]:
    """Return 3-6 key findings for an inventory report, or ``None``."""

    client = _get_client()
    if client is None:
        return None

    prompt_text = (
        "You are an inventory analyst. Rewrite the findings of the following inventory "
        "analysis as 3 to 6 short, actionable bullet points for an operations manager. "
        "Do not invent numbers that are not in the data. "
        "Answer with a JSON array of strings only.\n\n"
        f"Analysis: {json.dumps(context_object, default=str)}"
    )

    try:
        model_name = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
        model = client.GenerativeModel(model_name)
        resp = model.generate_content(prompt_text)
        text = getattr(resp, "text", None)
    except Exception:
        LOGGER.exception("Gemini request for report narrative failed")
        return None

    if not isinstance(text, str) or not text.strip():
        return None
    return _extract_json_list(text)
