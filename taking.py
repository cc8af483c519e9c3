"""
taking.py – student flow: identify → instructions → answer → submit

    loading ──▶ auth ──▶ instructions ──▶ exam ──submit──▶ confirmation
       │                                   ▲  │
       ▼                                   └──┘ submit failed
     error

``confirmation`` and ``error`` are terminal: the flow makes no further
store calls once it reaches either of them.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from errors import InvalidTransition, PortalError
from models import Exam, Question, StudentSession, Submission
from storage import ExamStore, SessionStore

logger = logging.getLogger(__name__)

DEFAULT_EXAM_TITLE = "Sample Examination"


class TakingStep(str, Enum):
    LOADING      = "loading"
    AUTH         = "auth"
    INSTRUCTIONS = "instructions"
    EXAM         = "exam"
    CONFIRMATION = "confirmation"
    ERROR        = "error"


@dataclass
class SubmitSummary:
    answered: int
    total: int
    warning: Optional[str] = None


class ExamTakingFlow:

    def __init__(
        self,
        store: ExamStore,
        session_store: SessionStore,
        exam_id: Optional[str] = None,
        questions: Optional[list[Question]] = None,
        exam_title: Optional[str] = None,
        on_submit: Optional[Callable[[dict[str, str]], None]] = None,
    ):
        self.store = store
        self.session_store = session_store
        self.exam_id = exam_id
        self.on_submit = on_submit or (lambda answers: None)

        self.exam: Optional[Exam] = None
        self._questions: list[Question] = list(questions or [])
        self._title = exam_title

        self.step = TakingStep.LOADING
        self.student_name = ""
        self.student_id = ""
        self.current_index = 0
        self.answers: dict[str, str] = {}
        self.submit_dialog_open = False
        self.error: Optional[str] = None
        self.submission: Optional[Submission] = None

    # ── Derived values ────────────────────────────────────────────────────────

    @property
    def questions(self) -> list[Question]:
        return self.exam.questions if self.exam else self._questions

    @property
    def exam_title(self) -> str:
        if self.exam:
            return self.exam.title
        return self._title or DEFAULT_EXAM_TITLE

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if not self.questions:
            return None
        return self.questions[self.current_index]

    @property
    def answered_count(self) -> int:
        return len(self.answers)

    @property
    def progress(self) -> float:
        """Position in the exam on a 0–100 scale."""
        if not self.total_questions:
            return 0.0
        return (self.current_index + 1) / self.total_questions * 100

    @property
    def retry_action(self) -> Optional[str]:
        return "reload" if self.step == TakingStep.ERROR else None

    def _require(self, step: TakingStep) -> None:
        if self.step != step:
            raise InvalidTransition(f"Not available during {self.step.value}")

    # ── Entry ─────────────────────────────────────────────────────────────────

    def open(self) -> TakingStep:
        """Resolve the exam and decide whether the student must identify."""
        self._require(TakingStep.LOADING)
        try:
            session = self.session_store.load()
        except PortalError as exc:
            logger.warning("Ignoring stored student session: %s", exc.message)
            session = None

        if not self.exam_id:
            if self._questions:
                if session is not None:
                    self.student_name = session.student_name
                    self.student_id = session.student_id
                self.step = TakingStep.AUTH
            else:
                self.error = "No exam was specified"
                self.step = TakingStep.ERROR
            return self.step

        try:
            self.exam = self.store.get_exam(self.exam_id)
        except PortalError as exc:
            logger.error("Error fetching exam %s: %s", self.exam_id, exc.message)
            self.error = exc.message or "Failed to load exam"
            self.step = TakingStep.ERROR
            return self.step

        if session is not None and session.is_valid():
            self.student_name = session.student_name
            self.student_id = session.student_id
            self.step = TakingStep.INSTRUCTIONS
        else:
            self.step = TakingStep.AUTH
        return self.step

    def authenticate(self, student_name: str, student_id: str) -> bool:
        """Record the student's name and ID; both are required."""
        self._require(TakingStep.AUTH)
        name, sid = student_name.strip(), student_id.strip()
        if not name or not sid:
            return False
        self.student_name, self.student_id = name, sid
        try:
            self.session_store.save(
                StudentSession(student_name=name, student_id=sid, exam_id=self.exam_id)
            )
        except PortalError as exc:
            # The attempt continues; only a reload will ask again.
            logger.warning("Could not remember student %s: %s", sid, exc.message)
        self.step = TakingStep.INSTRUCTIONS
        return True

    def start(self) -> None:
        self._require(TakingStep.INSTRUCTIONS)
        self.step = TakingStep.EXAM

    # ── Answering ─────────────────────────────────────────────────────────────

    def select_answer(self, option_id: str) -> bool:
        self._require(TakingStep.EXAM)
        question = self.current_question
        if question is None or option_id not in question.option_ids():
            return False
        self.answers[question.id] = option_id
        return True

    def next(self) -> bool:
        self._require(TakingStep.EXAM)
        if self.current_index < self.total_questions - 1:
            self.current_index += 1
            return True
        return False

    def previous(self) -> bool:
        self._require(TakingStep.EXAM)
        if self.current_index > 0:
            self.current_index -= 1
            return True
        return False

    # ── Submission ────────────────────────────────────────────────────────────

    def open_submit_dialog(self) -> SubmitSummary:
        self._require(TakingStep.EXAM)
        self.submit_dialog_open = True
        return self.submit_summary()

    def close_submit_dialog(self) -> None:
        self.submit_dialog_open = False

    def submit_summary(self) -> SubmitSummary:
        answered, total = self.answered_count, self.total_questions
        warning = None
        if answered < total:
            warning = (
                f"You have {total - answered} unanswered question(s). "
                "You can still submit."
            )
        return SubmitSummary(answered=answered, total=total, warning=warning)

    def submit(self) -> bool:
        """Send the answers for scoring.

        Success clears the stored student session and ends the flow in
        ``confirmation``.  Failure keeps the student in ``exam`` with
        ``error`` set and every answer intact.
        """
        self._require(TakingStep.EXAM)
        self.error = None
        try:
            self.submission = self.store.submit_exam(
                student_name=self.student_name,
                student_id=self.student_id,
                exam_id=self.exam_id or "",
                exam_title=self.exam_title,
                answers=dict(self.answers),
                total_questions=self.total_questions,
            )
        except PortalError as exc:
            logger.error("Error submitting exam %s: %s", self.exam_id, exc.message)
            self.error = exc.message or "Failed to submit exam"
            return False
        finally:
            self.submit_dialog_open = False

        self.on_submit(dict(self.answers))
        try:
            self.session_store.clear()
        except PortalError as exc:
            logger.warning("Could not clear student session: %s", exc.message)
        self.step = TakingStep.CONFIRMATION
        return True
