"""
authoring.py – examiner flow: upload → AI extraction → review → publish

    idle ──upload──▶ uploading ──▶ processing ──▶ success ──publish──▶ idle
      ▲                 │                │            │
      │                 ▼                ▼            └─cancel──▶ idle
      └──── validation-error          error

Validation happens before anything leaves the process.  A failed publish
keeps the reviewed questions so the examiner can retry without uploading
again.
"""

import logging
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from config import BASE_URL, EXTERNAL_HOST, MAX_UPLOAD_BYTES, PDF_MEDIA_TYPE, UPLOAD_PROGRESS_STEP
from editor import QuestionEditor
from errors import InvalidTransition, PortalError, UploadValidationError
from extraction import Extractor
from models import ExamSummary, Option, Question
from storage import ExamStore
from urls import exam_url, is_uuid

logger = logging.getLogger(__name__)

NO_QUESTIONS_MESSAGE = "No questions were extracted from the PDF. Please try a different file."


class AuthoringStatus(str, Enum):
    IDLE             = "idle"
    UPLOADING        = "uploading"
    PROCESSING       = "processing"
    SUCCESS          = "success"
    ERROR            = "error"
    VALIDATION_ERROR = "validation-error"


# Upload is accepted from these states only.
UPLOAD_READY = {AuthoringStatus.IDLE, AuthoringStatus.ERROR, AuthoringStatus.VALIDATION_ERROR}

VIEWS = ("upload", "manage", "results")


def validate_upload(content_type: Optional[str], size: int) -> None:
    """Raise UploadValidationError unless the file is a PDF of at most 10 MiB."""
    if content_type != PDF_MEDIA_TYPE:
        raise UploadValidationError("Please upload a PDF file")
    if size > MAX_UPLOAD_BYTES:
        raise UploadValidationError("File size exceeds 10MB limit")


def title_from_filename(filename: str) -> str:
    return re.sub(r"\.pdf$", "", filename or "", flags=re.IGNORECASE).strip()


def assign_stable_ids(questions: list[Question]) -> list[Question]:
    """Give every question and option a UUID, keeping ids that already are one.

    The correct option is carried over by position: the option that held the
    correct id before assignment is the one that holds it afterwards.  When
    no option held it, the first option becomes correct.
    """
    published: list[Question] = []
    for number, question in enumerate(questions, start=1):
        if not question.options:
            raise UploadValidationError(f"Question {number} has no options")

        options = [
            Option(id=o.id if is_uuid(o.id) else str(uuid.uuid4()), text=o.text)
            for o in question.options
        ]
        old_ids = question.option_ids()
        if question.correct_option_id in old_ids:
            correct = options[old_ids.index(question.correct_option_id)].id
        else:
            logger.warning("Question %d has no correct option; defaulting to the first", number)
            correct = options[0].id

        published.append(
            Question(
                id=question.id if is_uuid(question.id) else str(uuid.uuid4()),
                text=question.text,
                options=options,
                correct_option_id=correct,
            )
        )
    return published


class ExamAuthoringFlow:
    """State of one examiner's dashboard: the upload/review pipeline plus the exam list."""

    def __init__(
        self,
        extractor: Extractor,
        store: ExamStore,
        base_url: str = BASE_URL,
        external_host: Optional[str] = EXTERNAL_HOST,
    ):
        self.extractor = extractor
        self.store = store
        self.base_url = base_url
        self.external_host = external_host

        self.status = AuthoringStatus.IDLE
        self.error_message = ""
        self.upload_progress = 0
        self.exam_title = ""
        self.editor: Optional[QuestionEditor] = None
        self.exams: list[ExamSummary] = []
        self.active_view = "upload"

    # ── Exam list ─────────────────────────────────────────────────────────────

    def load_exams(self) -> list[ExamSummary]:
        self.exams = self.store.list_exams()
        return self.exams

    # ── Upload ────────────────────────────────────────────────────────────────

    async def upload(self, filename: str, content_type: Optional[str], data: bytes) -> AuthoringStatus:
        if self.status not in UPLOAD_READY:
            raise InvalidTransition(f"Cannot upload while {self.status.value}")

        try:
            validate_upload(content_type, len(data))
        except UploadValidationError as exc:
            logger.info("Rejected upload %s: %s", filename, exc.message)
            self.error_message = exc.message
            self.status = AuthoringStatus.VALIDATION_ERROR
            return self.status

        self.error_message = ""
        self.status = AuthoringStatus.UPLOADING
        for progress in range(UPLOAD_PROGRESS_STEP, 101, UPLOAD_PROGRESS_STEP):
            self.upload_progress = progress

        self.status = AuthoringStatus.PROCESSING
        try:
            result = await self.extractor(data, filename)
        except PortalError as exc:
            self.error_message = exc.message
            self.status = AuthoringStatus.ERROR
            return self.status

        if result.error:
            self.error_message = result.error
            self.status = AuthoringStatus.ERROR
        elif not result.questions:
            self.error_message = NO_QUESTIONS_MESSAGE
            self.status = AuthoringStatus.ERROR
        else:
            self.editor = QuestionEditor(result.questions)
            self.exam_title = title_from_filename(filename)
            self.status = AuthoringStatus.SUCCESS
        return self.status

    # ── Review ────────────────────────────────────────────────────────────────

    def _require_review(self) -> QuestionEditor:
        if self.status != AuthoringStatus.SUCCESS or self.editor is None:
            raise InvalidTransition("There are no extracted questions to review")
        return self.editor

    @property
    def review_editor(self) -> QuestionEditor:
        return self._require_review()

    def set_title(self, title: str) -> None:
        self._require_review()
        self.exam_title = title

    def cancel(self) -> None:
        self._reset()

    def show(self, view: str) -> None:
        if view not in VIEWS:
            raise InvalidTransition(f"Unknown view: {view}")
        self.active_view = view

    def _reset(self) -> None:
        self.status = AuthoringStatus.IDLE
        self.error_message = ""
        self.upload_progress = 0
        self.exam_title = ""
        self.editor = None

    # ── Publish ───────────────────────────────────────────────────────────────

    def publish(self) -> ExamSummary:
        """Store the reviewed exam and put it at the top of the exam list.

        On any failure the flow stays in ``success`` with ``error_message``
        set, and the error is re-raised to the caller.
        """
        editor = self._require_review()
        title = self.exam_title.strip()
        try:
            if not title:
                raise UploadValidationError("Please enter a title for this exam")
            questions = assign_stable_ids(editor.questions)
            exam = self.store.create_exam(title, questions, "active")
        except PortalError as exc:
            logger.error("Error saving exam %r: %s", title, exc.message)
            self.error_message = exc.message
            raise

        exam_id = exam.id or str(uuid.uuid4())
        summary = ExamSummary(
            id=exam_id,
            title=title,
            created_at=exam.created_at or datetime.now(timezone.utc).date().isoformat(),
            question_count=len(questions),
            status="active",
            url=exam.url or exam_url(exam_id, self.base_url, self.external_host),
            submissions=0,
        )
        self.exams.insert(0, summary)

        self._reset()
        self.active_view = "manage"
        logger.info("Published exam %s with %d questions", summary.id, summary.question_count)
        return summary
