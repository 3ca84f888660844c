"""
services/pdf_parser.py

Question paper PDF import (text-first).
Public API:
  - extract_question_drafts(file_bytes, api_key) -> List[dict] : paper PDF -> raw question items
  - parse_answer_key(file_bytes) -> Dict[int, str]               : answer key PDF -> {number: label}
  - build_questions(drafts, answer_key, prefix) -> List[Question] : drafts + key -> validated questions

Design:
- PyMuPDF text extraction; pages below MIN_CHARS_PER_PAGE are treated as
  scanned and rejected (no OCR here)
- TEXT_PAGES_PER_GROUP pages per LLM call, groups sent in parallel
- a failed group is skipped, the rest of the paper still imports
- answer keys are parsed deterministically ("1. (b)", "2 - C", "Q3 a")
- build_questions is re-run whenever a key arrives; callers keep the drafts
"""

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional

import fitz  # PyMuPDF
from openai import OpenAI
from pydantic import ValidationError

from config import MAX_PDF_PAGES, MIN_CHARS_PER_PAGE, TEXT_PAGES_PER_GROUP
from upsc_cbt.models.question_model import OPTION_LABELS, Question
from upsc_cbt.services.llm_client import call_openai, clean_json_response, make_client

logger = logging.getLogger(__name__)

_MAX_WORKERS = 3

_ANSWER_LINE = re.compile(
    r"\b(?:Q\.?\s*)?(\d{1,3})\s*[.):\-]?\s*\(?([a-dA-D])\)?(?![A-Za-z])"
)
_OPTION_MARKER = re.compile(r"^\s*\(?([a-dA-D])[).:]\s*")


# ══════════════════════════════════════════════════════════════════════════════
# Public API
# ══════════════════════════════════════════════════════════════════════════════

def extract_question_drafts(file_bytes: bytes, api_key: str = "", client: Optional[OpenAI] = None) -> List[Dict[str, Any]]:
    """
    Paper PDF -> question drafts (dicts), in page order.

    Raises:
        ValueError:   empty/unreadable/too long/scanned PDF.
        RuntimeError: no OpenAI client available.
    """
    pages = _read_pages(file_bytes)

    scanned = [i + 1 for i, text in enumerate(pages) if len(text.strip()) < MIN_CHARS_PER_PAGE]
    if len(scanned) == len(pages):
        raise ValueError("PDF has no extractable text (scanned paper?). OCR is not supported.")
    if scanned:
        logger.warning(f"Pages {scanned} have too little text and will likely yield no questions")

    client = client or make_client(api_key)
    if client is None:
        raise RuntimeError("OpenAI API key is missing or the client could not be created.")

    groups: List[List[tuple[int, str]]] = []
    for i in range(0, len(pages), TEXT_PAGES_PER_GROUP):
        groups.append([(i + j + 1, pages[i + j]) for j in range(min(TEXT_PAGES_PER_GROUP, len(pages) - i))])
    logger.info(f"extract_question_drafts: {len(pages)} pages -> {len(groups)} groups")

    results: Dict[int, List[Dict[str, Any]]] = {}
    with ThreadPoolExecutor(max_workers=_MAX_WORKERS) as executor:
        future_map = {
            executor.submit(_extract_from_text, group, client): idx
            for idx, group in enumerate(groups)
        }
        for future in as_completed(future_map):
            idx = future_map[future]
            try:
                results[idx] = future.result()
            except Exception as e:
                logger.error(f"Group {idx} failed: {e}")
                results[idx] = []

    drafts: List[Dict[str, Any]] = []
    for idx in sorted(results):
        drafts.extend(results[idx])
    logger.info(f"extract_question_drafts: {len(drafts)} drafts extracted")
    return drafts


def parse_answer_key(file_bytes: bytes) -> Dict[int, str]:
    """Answer key PDF -> {question number: label}."""
    return parse_answer_key_text("\n".join(_read_pages(file_bytes)))


def parse_answer_key_text(text: str) -> Dict[int, str]:
    answers: Dict[int, str] = {}
    for match in _ANSWER_LINE.finditer(text or ""):
        number = int(match.group(1))
        # first occurrence wins; later hits are usually page furniture
        answers.setdefault(number, match.group(2).upper())
    logger.info(f"parse_answer_key_text: {len(answers)} answers found")
    return answers


def build_questions(
    drafts: List[Dict[str, Any]],
    answer_key: Optional[Dict[int, str]] = None,
    prefix: str = "pdf",
) -> List[Question]:
    """
    Merge answer key into drafts and validate. Drafts without a usable
    answer or with malformed options are dropped (logged).
    """
    answer_key = answer_key or {}
    questions: List[Question] = []
    seen: set = set()
    for idx, item in enumerate(drafts):
        try:
            number = int(item.get("number") or idx + 1)
        except (TypeError, ValueError):
            number = idx + 1
        answer = answer_key.get(number) or str(item.get("correct_answer") or "").strip().upper()
        if answer not in OPTION_LABELS:
            logger.warning(f"Q{number}: no answer available, skipped")
            continue
        qid = f"{prefix}_{number}"
        if qid in seen:
            qid = f"{prefix}_{number}_{idx}"
        try:
            q = Question(
                id=qid,
                question_text=item.get("question_text", ""),
                options=_normalize_options(item.get("options")),
                correct_answer=answer,
                explanation=item.get("explanation") or "",
                topic=item.get("topic") or "General Studies",
                sub_topic=item.get("sub_topic"),
                difficulty_level=item.get("difficulty_level") or "medium",
                source="custom",
            )
        except (ValidationError, TypeError) as e:
            logger.warning(f"Q{number}: invalid question skipped: {e}")
            continue
        seen.add(qid)
        questions.append(q)

    logger.info(f"build_questions: {len(questions)}/{len(drafts)} questions usable")
    return questions


# ══════════════════════════════════════════════════════════════════════════════
# Internals
# ══════════════════════════════════════════════════════════════════════════════

def _read_pages(file_bytes: bytes) -> List[str]:
    if not file_bytes:
        raise ValueError("PDF file is empty.")
    try:
        doc = fitz.open(stream=file_bytes, filetype="pdf")
    except Exception as e:
        raise ValueError(f"Could not open PDF: {e}") from e
    try:
        if len(doc) > MAX_PDF_PAGES:
            raise ValueError(f"PDF has too many pages ({len(doc)}). At most {MAX_PDF_PAGES} are supported.")
        return [doc.load_page(i).get_text() for i in range(len(doc))]
    finally:
        doc.close()


def _normalize_options(raw: Any) -> Dict[str, str]:
    """Accept {"A": ..}, {"a": ..} or a 4-item list; strip "(a)" markers."""
    if isinstance(raw, dict):
        items = {str(k).strip().upper(): v for k, v in raw.items()}
    elif isinstance(raw, list):
        items = dict(zip(OPTION_LABELS, raw))
    else:
        return {}
    return {label: _OPTION_MARKER.sub("", str(text)).strip() for label, text in items.items()}


def _build_system_prompt() -> str:
    return (
        "You extract multiple-choice questions from UPSC Civil Services Preliminary "
        "question paper text.\n"
        'Reply only with a JSON object {"questions": [...]}; no markdown, no commentary.\n'
        "Each item:\n"
        "{\n"
        '  "number": (int) question number as printed,\n'
        '  "question_text": (str) full stem including statement lists, without the options,\n'
        '  "options": {"A": str, "B": str, "C": str, "D": str} (options (a)-(d) in order),\n'
        '  "correct_answer": (str) "A"-"D" only if the text states it, else "",\n'
        '  "explanation": (str) solution text if present, else "",\n'
        '  "topic": (str) one of History, Geography, Polity, Economy, Environment, '
        'Science & Technology, Current Affairs, Art & Culture,\n'
        '  "sub_topic": (str|null),\n'
        '  "difficulty_level": "easy" | "medium" | "hard"\n'
        "}\n"
        'If the pages contain no questions return {"questions": []}. '
        "Copy text exactly; do not invent questions or answers."
    )


def _extract_from_text(page_group: List[tuple[int, str]], client: OpenAI) -> List[Dict[str, Any]]:
    page_nums = [p[0] for p in page_group]
    text = "".join(f"\n[PAGE {num}]\n{body}\n" for num, body in page_group)

    for attempt in range(2):
        prompt = _build_system_prompt()
        if attempt:
            prompt += "\n\nReturn a valid JSON object only."
        raw = call_openai(client, prompt, text, temperature=0.1, max_tokens=16384)
        if raw is None:
            break
        drafts = _parse_drafts(raw, page_nums)
        if drafts is not None:
            return drafts

    logger.error(f"Text parsing failed for pages {page_nums}")
    return []


def _parse_drafts(raw_response: str, page_nums: List[int]) -> Optional[List[Dict[str, Any]]]:
    """LLM JSON -> draft list. None when the reply is not parseable."""
    cleaned = clean_json_response(raw_response)
    if not cleaned:
        return None
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        return None

    if isinstance(data, dict):
        data = data.get("questions", [])
    if not isinstance(data, list):
        return None

    drafts = []
    for item in data:
        if not isinstance(item, dict) or not str(item.get("question_text", "")).strip():
            continue
        item.setdefault("page_number", page_nums[0] if page_nums else None)
        drafts.append(item)
    return drafts
