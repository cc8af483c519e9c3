"""
extraction.py – AI question extraction façade

PDF bytes in, ``ExtractionResult`` out.  The PDF text is read locally with
pdfplumber and sent to an OpenAI-compatible chat-completions endpoint
(DeepSeek by default) that is asked to return a JSON array of questions:

    [{"id": "...", "text": "...",
      "options": [{"id": "a", "text": "..."}, ...],
      "correctOptionId": "a"}, ...]

Every failure is folded into ``ExtractionResult.error``; callers never see
an exception from ``extract_questions_from_pdf``.
"""

import io
import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx
import pdfplumber

from errors import ExtractionError
from models import Question, question_from_ai

logger = logging.getLogger(__name__)

# Characters kept from the PDF text in a single prompt.
MAX_PROMPT_CHARS = 60_000

JSON_ARRAY_RE = re.compile(r"\[\s*\{.*\}\s*\]", re.DOTALL)

# Symbol-font glyphs some exam PDFs use in place of the real characters.
_MATH_CHAR_MAP: dict[str, str] = {
    "\uf028": "√",   # radical sign
    "\uf0d6": "√",
    "\uf0b0": "°",   # degree
    "\uf0b2": "²",
    "\uf0b3": "³",
    "\uf02d": "−",   # minus
}


@dataclass(kw_only=True)
class ExtractorConfig:
    """Connection settings for the extraction API, read from the environment."""

    api_key: str = field(
        default_factory=lambda: os.getenv("DEEPSEEK_API_KEY", ""),
        metadata={"description": "API key for the chat-completions endpoint"},
    )
    endpoint: str = field(
        default_factory=lambda: os.getenv(
            "AI_ENDPOINT", "https://api.deepseek.com/v1/chat/completions"
        ),
    )
    model: str = field(default_factory=lambda: os.getenv("AI_MODEL", "deepseek-chat"))
    timeout: float = field(default_factory=lambda: float(os.getenv("AI_TIMEOUT", "120")))
    # Low temperature keeps the JSON output stable.
    temperature: float = 0.2


@dataclass
class ExtractionResult:
    questions: list[Question] = field(default_factory=list)
    error: Optional[str] = None


Extractor = Callable[[bytes, str], Awaitable[ExtractionResult]]


# ── PDF text ──────────────────────────────────────────────────────────────────

def _normalize_math_chars(text: str) -> str:
    return "".join(_MATH_CHAR_MAP.get(c, c) for c in text)


def extract_pdf_text(data: bytes) -> str:
    """Return the text of every readable page, pages separated by blank lines."""
    pages: list[str] = []
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            for page_num, page in enumerate(pdf.pages, start=1):
                try:
                    text = page.extract_text() or ""
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Skipping text on page %d: %s", page_num, exc)
                    continue
                if text.strip():
                    pages.append(_normalize_math_chars(text.strip()))
    except Exception as exc:  # noqa: BLE001
        raise ExtractionError(f"Could not read PDF: {exc}") from exc
    return "\n\n".join(pages)


def build_prompt(pdf_text: str) -> str:
    if len(pdf_text) > MAX_PROMPT_CHARS:
        pdf_text = pdf_text[:MAX_PROMPT_CHARS] + "\n...[truncated]"
    return (
        "Below is the text of a multiple choice exam extracted from a PDF.\n\n"
        f"{pdf_text}\n\n"
        "Extract all multiple choice questions and format them as a JSON array.\n"
        "Each question must have the following structure:\n"
        "{\n"
        '  "id": "unique_id",\n'
        '  "text": "question text",\n'
        '  "options": [\n'
        '    { "id": "a", "text": "option text" },\n'
        '    { "id": "b", "text": "option text" }\n'
        "  ],\n"
        '  "correctOptionId": "correct_option_id"\n'
        "}\n\n"
        "Return ONLY the JSON array without any additional text or explanation."
    )


# ── AI reply ──────────────────────────────────────────────────────────────────

def parse_questions(content: str) -> list[Question]:
    """Find the JSON array in the model's reply and map it onto Questions.

    The array may be wrapped in markdown fences or prose.  Records that
    cannot be mapped are skipped; question ids are made unique.
    """
    match = JSON_ARRAY_RE.search(content)
    if not match:
        raise ExtractionError("Could not find valid JSON in the response")
    try:
        records = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        logger.error("Error parsing JSON from AI response: %s", exc)
        raise ExtractionError("Failed to parse questions from AI response") from exc

    questions: list[Question] = []
    seen: set[str] = set()
    for position, record in enumerate(records, start=1):
        try:
            question = question_from_ai(record, position)
        except ValueError as exc:
            logger.warning("Skipping extracted record: %s", exc)
            continue
        qid = question.id
        while qid in seen:
            qid = f"{qid}-{position}"
        seen.add(qid)
        questions.append(question.model_copy(update={"id": qid}))
    return questions


async def _request_completion(
    prompt: str, config: ExtractorConfig, client: httpx.AsyncClient
) -> str:
    try:
        response = await client.post(
            config.endpoint,
            headers={"Authorization": f"Bearer {config.api_key}"},
            json={
                "model": config.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": config.temperature,
            },
            timeout=config.timeout,
        )
    except httpx.HTTPError as exc:
        raise ExtractionError(f"AI API request failed: {exc}") from exc

    if not response.is_success:
        detail = response.reason_phrase
        try:
            detail = response.json().get("error", {}).get("message") or detail
        except (ValueError, AttributeError):
            pass  # non-JSON error body
        raise ExtractionError(f"AI API error: {detail}")

    try:
        content = response.json()["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError):
        content = None
    if not content:
        raise ExtractionError("No content returned from AI API")
    return content


async def extract_questions_from_pdf(
    data: bytes,
    filename: str,
    config: Optional[ExtractorConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ExtractionResult:
    """Extract multiple choice questions from a PDF via the AI API."""
    config = config or ExtractorConfig()
    try:
        if not config.api_key.strip():
            logger.error("AI API key is missing in environment variables")
            raise ExtractionError("AI extraction API key is not configured")
        logger.info(
            "Extracting questions from %s (%d bytes, key length %d)",
            filename, len(data), len(config.api_key),
        )

        pdf_text = extract_pdf_text(data)
        if not pdf_text.strip():
            raise ExtractionError("No readable text was found in the PDF")
        prompt = build_prompt(pdf_text)

        if client is None:
            async with httpx.AsyncClient(timeout=config.timeout) as owned:
                content = await _request_completion(prompt, config, owned)
        else:
            content = await _request_completion(prompt, config, client)

        questions = parse_questions(content)
    except ExtractionError as exc:
        logger.error("Error extracting questions from %s: %s", filename, exc.message)
        return ExtractionResult(questions=[], error=exc.message)

    logger.info("Extracted %d questions from %s", len(questions), filename)
    return ExtractionResult(questions=questions)
