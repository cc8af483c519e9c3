"""
models.py – exam portal records and the mappings used at each boundary

One Question shape is used everywhere.  Records crossing a boundary go
through an explicit mapping function:

    AI reply      ──question_from_ai──▶  Question
    Question      ──question_to_row───▶  questions table row
    table row     ──question_from_row─▶  Question
    Question      ──question_for_student▶ dict without the answer key
"""

import json
import math
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, Field

from errors import PersistenceError

QUESTION_SCHEMA_VERSION = 1

ExamStatus = Literal["active", "draft"]


# ── Records ───────────────────────────────────────────────────────────────────

class Option(BaseModel):
    id: str
    text: str


class Question(BaseModel):
    id: str
    text: str
    options: list[Option] = Field(default_factory=list)
    correct_option_id: str = ""

    def option_ids(self) -> list[str]:
        return [o.id for o in self.options]

    def is_publishable(self) -> bool:
        """True when ``correct_option_id`` names exactly one option."""
        return self.option_ids().count(self.correct_option_id) == 1


class Exam(BaseModel):
    id: str
    title: str
    created_at: str
    questions: list[Question] = Field(default_factory=list)
    status: ExamStatus = "active"
    url: Optional[str] = None
    submissions: int = 0

    def summary(self) -> "ExamSummary":
        return ExamSummary(
            id=self.id,
            title=self.title,
            created_at=self.created_at,
            question_count=len(self.questions),
            status=self.status,
            url=self.url,
            submissions=self.submissions,
        )


class ExamSummary(BaseModel):
    """Row of the examiner's exam list."""

    id: str
    title: str
    created_at: str
    question_count: int
    status: ExamStatus
    url: Optional[str] = None
    submissions: int = 0


class Submission(BaseModel):
    id: str
    student_name: str
    student_id: str
    exam_id: str
    exam_title: str
    submitted_at: str
    answers: dict[str, str] = Field(default_factory=dict)
    score: int
    total_questions: int

    @property
    def percentage(self) -> int:
        return percentage(self.score, self.total_questions)


class StudentSession(BaseModel):
    student_name: str = ""
    student_id: str = ""
    exam_id: Optional[str] = None

    def is_valid(self) -> bool:
        return bool(self.student_name.strip() and self.student_id.strip())


def percentage(score: int, total: int) -> int:
    """Whole-number percentage, halves rounded up (2.5 → 3)."""
    if total <= 0:
        return 0
    return int(math.floor(score / total * 100 + 0.5))


# ── Boundary: AI reply → Question ─────────────────────────────────────────────

def _option_letter(index: int) -> str:
    return chr(ord("a") + index)


def question_from_ai(record: Mapping[str, Any], position: int) -> Question:
    """Map one record of the AI's JSON array onto a Question.

    Accepts ``correctOptionId`` (the requested key) as well as the
    ``correct_option_id`` / ``correctAnswer`` variants models tend to emit,
    and options given either as ``{"id", "text"}`` objects or bare strings.
    Raises ValueError when the record has no usable question text.
    """
    if not isinstance(record, Mapping):
        raise ValueError(f"question {position} is not an object")

    text = str(record.get("text") or record.get("question") or "").strip()
    if not text:
        raise ValueError(f"question {position} has no text")

    options: list[Option] = []
    seen: set[str] = set()
    for idx, raw in enumerate(record.get("options") or []):
        if isinstance(raw, Mapping):
            opt_id   = str(raw.get("id") or "").strip()
            opt_text = str(raw.get("text") or "").strip()
        else:
            opt_id, opt_text = "", str(raw).strip()
        if not opt_id or opt_id in seen:
            opt_id = _option_letter(idx)
        seen.add(opt_id)
        options.append(Option(id=opt_id, text=opt_text))

    correct = str(
        record.get("correctOptionId")
        or record.get("correct_option_id")
        or record.get("correctAnswer")
        or ""
    ).strip()
    if correct and correct not in seen:
        # Some replies name the answer by its text instead of its id.
        by_text = [o.id for o in options if o.text.lower() == correct.lower()]
        correct = by_text[0] if by_text else ""

    return Question(
        id=str(record.get("id") or f"q{position}"),
        text=text,
        options=options,
        correct_option_id=correct,
    )


# ── Boundary: Question ⇄ questions table ──────────────────────────────────────

def question_to_row(question: Question, exam_id: str, position: int) -> dict:
    return {
        "id":                question.id,
        "exam_id":           exam_id,
        "position":          position,
        "text":              question.text,
        "options_json":      json.dumps([o.model_dump() for o in question.options]),
        "correct_option_id": question.correct_option_id,
        "schema_version":    QUESTION_SCHEMA_VERSION,
    }


def question_from_row(row: Mapping[str, Any]) -> Question:
    version = row["schema_version"]
    if version != QUESTION_SCHEMA_VERSION:
        raise PersistenceError(f"Unsupported question schema version: {version}")
    return Question(
        id=row["id"],
        text=row["text"],
        options=[Option(**o) for o in json.loads(row["options_json"])],
        correct_option_id=row["correct_option_id"] or "",
    )


# ── Boundary: Question → student view ─────────────────────────────────────────

def question_for_student(question: Question) -> dict:
    return {
        "id":      question.id,
        "text":    question.text,
        "options": [o.model_dump() for o in question.options],
    }
