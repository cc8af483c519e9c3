import json

import httpx
import pytest

from errors import ExtractionError
from extraction import (
    ExtractorConfig,
    build_prompt,
    extract_pdf_text,
    extract_questions_from_pdf,
    parse_questions,
)
from models import question_from_ai

ENDPOINT = "https://ai.test/v1/chat/completions"

AI_QUESTIONS = [
    {
        "id": "1",
        "text": "What is 2 + 2?",
        "options": [
            {"id": "a", "text": "3"},
            {"id": "b", "text": "4"},
            {"id": "c", "text": "5"},
        ],
        "correctOptionId": "b",
    },
    {
        "id": "2",
        "text": "Which gas do plants absorb?",
        "options": ["Oxygen", "Carbon dioxide"],
        "correctAnswer": "Carbon dioxide",
    },
]


def _config(**overrides) -> ExtractorConfig:
    values = {"api_key": "test-key", "endpoint": ENDPOINT, "model": "deepseek-chat", "timeout": 5}
    values.update(overrides)
    return ExtractorConfig(**values)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _reply(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def test_extract_pdf_text_reads_the_text_layer(sample_pdf):
    text = extract_pdf_text(sample_pdf)
    assert "What is 2 + 2?" in text
    assert "Carbon dioxide" in text


def test_extract_pdf_text_rejects_garbage():
    with pytest.raises(ExtractionError, match="Could not read PDF"):
        extract_pdf_text(b"definitely not a pdf")


def test_build_prompt_truncates_long_text():
    prompt = build_prompt("x" * 100_000)
    assert "...[truncated]" in prompt
    assert "correctOptionId" in prompt


def test_parse_questions_accepts_fenced_reply():
    content = "Here you go:\n```json\n" + json.dumps(AI_QUESTIONS) + "\n```"

    questions = parse_questions(content)

    assert [q.id for q in questions] == ["1", "2"]
    assert questions[0].correct_option_id == "b"
    # String options get letter ids and the answer is matched by text.
    assert questions[1].option_ids() == ["a", "b"]
    assert questions[1].correct_option_id == "b"


def test_parse_questions_skips_bad_records_and_dedupes_ids():
    records = [
        {"id": "q", "text": "First?", "options": ["x", "y"], "correctOptionId": "a"},
        {"id": "q", "text": "Second?", "options": ["x", "y"], "correctOptionId": "b"},
        {"id": "r", "text": "", "options": ["x"]},
    ]

    questions = parse_questions(json.dumps(records))

    assert [q.id for q in questions] == ["q", "q-2"]


def test_parse_questions_errors():
    with pytest.raises(ExtractionError, match="Could not find valid JSON"):
        parse_questions("Sorry, I cannot help with that.")
    with pytest.raises(ExtractionError, match="Failed to parse questions"):
        parse_questions('[{"text": "broken",}]')


def test_question_from_ai_without_answer_leaves_key_empty():
    question = question_from_ai({"text": "Pick one", "options": ["a", "b"]}, 4)
    assert question.id == "q4"
    assert question.correct_option_id == ""


@pytest.mark.asyncio
async def test_extract_questions_from_pdf_success(sample_pdf):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_reply(json.dumps(AI_QUESTIONS)))

    async with _client(handler) as client:
        result = await extract_questions_from_pdf(sample_pdf, "quiz.pdf", _config(), client)

    assert result.error is None
    assert len(result.questions) == 2
    assert seen["auth"] == "Bearer test-key"
    assert seen["body"]["model"] == "deepseek-chat"
    assert "What is 2 + 2?" in seen["body"]["messages"][0]["content"]


@pytest.mark.asyncio
async def test_missing_api_key_is_reported(sample_pdf):
    result = await extract_questions_from_pdf(sample_pdf, "quiz.pdf", _config(api_key=""))
    assert result.questions == []
    assert result.error == "AI extraction API key is not configured"


@pytest.mark.asyncio
async def test_api_error_message_is_reported(sample_pdf):
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "Invalid API key"}})

    async with _client(handler) as client:
        result = await extract_questions_from_pdf(sample_pdf, "quiz.pdf", _config(), client)

    assert result.error == "AI API error: Invalid API key"


@pytest.mark.asyncio
async def test_empty_completion_is_reported(sample_pdf):
    def handler(request):
        return httpx.Response(200, json={"choices": []})

    async with _client(handler) as client:
        result = await extract_questions_from_pdf(sample_pdf, "quiz.pdf", _config(), client)

    assert result.error == "No content returned from AI API"


@pytest.mark.asyncio
async def test_transport_failure_is_reported(sample_pdf):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        result = await extract_questions_from_pdf(sample_pdf, "quiz.pdf", _config(), client)

    assert result.error.startswith("AI API request failed")


@pytest.mark.asyncio
async def test_unreadable_pdf_is_reported():
    result = await extract_questions_from_pdf(b"not a pdf", "broken.pdf", _config())
    assert result.error.startswith("Could not read PDF")
