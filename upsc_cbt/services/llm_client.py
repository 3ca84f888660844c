"""
services/llm_client.py

Shared OpenAI plumbing for the AI feedback and PDF import services:
client construction, JSON-mode chat calls with exponential back-off,
and cleanup of fenced/noisy JSON replies.
"""

import logging
import re
import time
from typing import Optional

from openai import APIError, OpenAI, RateLimitError

from config import MODEL_NAME, OPENAI_API_KEY

logger = logging.getLogger(__name__)

_MAX_API_RETRIES = 3
_BACKOFF_BASE = 1.0
_RATE_LIMIT_MAX_RETRIES = 5
_RATE_LIMIT_BACKOFF_BASE = 2.0


def make_client(api_key: str = "") -> Optional[OpenAI]:
    """Build an OpenAI client from the given key or OPENAI_API_KEY."""
    key = api_key or OPENAI_API_KEY
    if not key:
        logger.warning("No OpenAI API key configured.")
        return None
    return OpenAI(api_key=key)


def call_openai(
    client: Optional[OpenAI],
    system_prompt: str,
    user_content: str | list,
    temperature: float = 0.3,
    max_retries: int = _MAX_API_RETRIES,
    max_tokens: int = 2000,
    model: str = MODEL_NAME,
    sleep=time.sleep,
) -> Optional[str]:
    """
    Chat completion in JSON mode with retries.
    Rate limits get a longer retry budget; other API errors are retried only
    when they look transient. Returns None once retries are exhausted.
    """
    if client is None:
        return None

    last_exception: Optional[Exception] = None
    effective_retries = max_retries

    attempt = 0
    while attempt < effective_retries:
        attempt += 1
        try:
            response = client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                temperature=temperature,
                response_format={"type": "json_object"},
                max_tokens=max_tokens,
            )
            return response.choices[0].message.content or ""
        except RateLimitError as e:
            last_exception = e
            effective_retries = _RATE_LIMIT_MAX_RETRIES
            if attempt < effective_retries:
                wait = _RATE_LIMIT_BACKOFF_BASE * (2 ** (attempt - 1))
                logger.warning(f"Rate limited, retrying in {wait:.1f}s ({attempt}/{effective_retries})")
                sleep(wait)
            else:
                logger.error("Rate limit retries exhausted.")
        except APIError as e:
            last_exception = e
            error_str = str(e).lower()
            is_transient = any(k in error_str for k in ("timeout", "connection", "unavailable"))
            if getattr(e, "status_code", None) in (500, 502, 503, 504):
                is_transient = True
            if attempt < effective_retries and is_transient:
                wait = _BACKOFF_BASE * (2 ** (attempt - 1))
                logger.warning(f"API error, retrying in {wait:.1f}s ({attempt}/{effective_retries})")
                sleep(wait)
            else:
                logger.error(f"API error: {e}")
                break

    logger.error(f"OpenAI call failed: {last_exception}")
    return None


def clean_json_response(response_text: str) -> str:
    """Strip code fences and chatter around the JSON payload of an LLM reply."""
    if not response_text:
        return ""

    text = re.sub(r"```(?:json)?\s*", "", response_text, flags=re.IGNORECASE)
    text = re.sub(r"```", "", text)
    text = text.strip()

    if text.startswith("{") or text.startswith("["):
        return text

    match = re.search(r"[{[].*[}\]]", text, re.DOTALL)
    if match:
        return match.group(0).strip()

    return ""
