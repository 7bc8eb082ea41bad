"""Shared LLM utilities: JSON extraction and prompt assembly helpers.

Models asked for JSON often wrap it in markdown fences or add a preamble;
parse_llm_json tolerates both.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def parse_llm_json(raw: str, caller: str = "LLM") -> Optional[Dict[str, Any]]:
    """Parse a JSON object from an LLM response, handling markdown fences and preamble.

    Tries in order: direct parse -> strip leading fence -> regex fence -> outermost braces.
    Returns None when nothing parses to a JSON object.
    """
    if not raw:
        return None

    text = raw.strip()

    # Strip leading markdown code fence
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines).strip()

    candidates = [text]

    # Non-leading markdown fence
    fence_match = re.search(r"```(?:json)?\s*\n(.*?)\n```", text, re.DOTALL)
    if fence_match:
        candidates.append(fence_match.group(1))

    # Outermost { ... }
    brace_start = text.find("{")
    brace_end = text.rfind("}")
    if brace_start >= 0 and brace_end > brace_start:
        candidates.append(text[brace_start:brace_end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    logger.warning("%s: JSON parse error, raw[:500]: %s", caller, text[:500])
    return None


def build_intent_prompt(intents: List[Dict[str, str]]) -> str:
    """System prompt asking the model to pick one of ``intents``.

    Each intent is a dict with ``name`` and ``description``; the model must
    answer with {"intent": <name>, "confidence": <0..1>}.
    """
    intent_list = "\n".join(
        f"{idx}. {intent['name']}: {intent.get('description', '')}"
        for idx, intent in enumerate(intents, start=1)
    )
    return (
        "You are an intent classifier. Given a user message, classify it into "
        "one of the following intents:\n\n"
        f"{intent_list}\n\n"
        "Respond with JSON in this exact format:\n"
        '{"intent": "intent_name", "confidence": 0.95}\n\n'
        "Only respond with the JSON, nothing else."
    )
