"""
storage.py – SQLite persistence façade for exams, submissions and sessions

The store is the single writer of record once an exam is published:
clients create exams and submissions, everything else (ids, timestamps,
scores, the per-exam submission counter) is decided here.
"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from config import BASE_URL, DB_PATH, EXTERNAL_HOST
from errors import ExamNotFound, PersistenceError
from models import (
    Exam, ExamStatus, ExamSummary, Question, StudentSession, Submission,
    question_from_row, question_to_row,
)
from urls import exam_url

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@contextmanager
def connect(db_path: str) -> Iterator[sqlite3.Connection]:
    """Open a connection that commits on success and always closes."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def score_answers(questions: list[Question], answers: dict[str, str]) -> int:
    """Count questions whose recorded answer is the correct option.

    Questions missing from ``answers`` never match, and answers for ids that
    are not part of ``questions`` are ignored.
    """
    return sum(
        1 for q in questions
        if q.id in answers and answers[q.id] == q.correct_option_id
    )


class ExamStore:
    """Exam CRUD, submission creation with scoring, and examiner accounts."""

    def __init__(
        self,
        db_path: str = DB_PATH,
        base_url: str = BASE_URL,
        external_host: Optional[str] = EXTERNAL_HOST,
    ):
        self.db_path = db_path
        self.base_url = base_url
        self.external_host = external_host

    def init_db(self) -> None:
        """Create tables and indexes if they do not exist (idempotent)."""
        with connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id            INTEGER PRIMARY KEY AUTOINCREMENT,
                    email         TEXT    NOT NULL UNIQUE,
                    username      TEXT    NOT NULL,
                    password_hash TEXT    NOT NULL,
                    created_at    TEXT    NOT NULL DEFAULT (datetime('now'))
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS exams (
                    id          TEXT    PRIMARY KEY,
                    title       TEXT    NOT NULL,
                    status      TEXT    NOT NULL DEFAULT 'active'
                                        CHECK(status IN ('active','draft')),
                    url         TEXT,
                    submissions INTEGER NOT NULL DEFAULT 0,
                    created_at  TEXT    NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS questions (
                    exam_id           TEXT    NOT NULL REFERENCES exams(id) ON DELETE CASCADE,
                    id                TEXT    NOT NULL,
                    position          INTEGER NOT NULL,
                    text              TEXT    NOT NULL,
                    options_json      TEXT    NOT NULL,
                    correct_option_id TEXT    NOT NULL DEFAULT '',
                    schema_version    INTEGER NOT NULL,
                    PRIMARY KEY (exam_id, id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS submissions (
                    id              TEXT    PRIMARY KEY,
                    exam_id         TEXT    NOT NULL REFERENCES exams(id) ON DELETE CASCADE,
                    exam_title      TEXT    NOT NULL,
                    student_name    TEXT    NOT NULL,
                    student_id      TEXT    NOT NULL,
                    answers_json    TEXT    NOT NULL,
                    score           INTEGER NOT NULL,
                    total_questions INTEGER NOT NULL,
                    submitted_at    TEXT    NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS student_sessions (
                    device_id  TEXT PRIMARY KEY,
                    payload    TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_question_exam "
                "ON questions(exam_id, position)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_submission_exam "
                "ON submissions(exam_id)"
            )

    # ── Exams ─────────────────────────────────────────────────────────────────

    def create_exam(
        self, title: str, questions: list[Question], status: ExamStatus = "active"
    ) -> Exam:
        """Insert an exam and its questions; the id and url are assigned here."""
        exam_id = str(uuid.uuid4())
        url = exam_url(exam_id, self.base_url, self.external_host)
        try:
            with connect(self.db_path) as conn:
                conn.execute(
                    """INSERT INTO exams (id, title, status, url, submissions, created_at)
                       VALUES (?,?,?,?,0,?)""",
                    (exam_id, title, status, url, _now()),
                )
                conn.executemany(
                    """INSERT INTO questions
                           (id, exam_id, position, text, options_json,
                            correct_option_id, schema_version)
                       VALUES
                           (:id, :exam_id, :position, :text, :options_json,
                            :correct_option_id, :schema_version)""",
                    [question_to_row(q, exam_id, pos) for pos, q in enumerate(questions)],
                )
        except sqlite3.Error as exc:
            logger.error("Error creating exam %r: %s", title, exc)
            raise PersistenceError(f"Could not create exam: {exc}") from exc

        logger.info("Created exam %s (%d questions)", exam_id, len(questions))
        return self.get_exam(exam_id)

    def get_exam(self, exam_id: str) -> Exam:
        try:
            with connect(self.db_path) as conn:
                row = conn.execute("SELECT * FROM exams WHERE id = ?", (exam_id,)).fetchone()
                if row is None:
                    raise ExamNotFound("Exam not found")
                q_rows = conn.execute(
                    "SELECT * FROM questions WHERE exam_id = ? ORDER BY position",
                    (exam_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            logger.error("Error loading exam %s: %s", exam_id, exc)
            raise PersistenceError(f"Could not load exam: {exc}") from exc
        return Exam(
            id=row["id"],
            title=row["title"],
            created_at=row["created_at"],
            status=row["status"],
            url=row["url"],
            submissions=row["submissions"],
            questions=[question_from_row(r) for r in q_rows],
        )

    def update_exam(
        self,
        exam_id: str,
        title: Optional[str] = None,
        status: Optional[ExamStatus] = None,
    ) -> Exam:
        """Change title and/or status.  The submission counter is not writable."""
        try:
            with connect(self.db_path) as conn:
                if title is not None:
                    updated = conn.execute(
                        "UPDATE exams SET title = ? WHERE id = ?", (title, exam_id)
                    ).rowcount
                    if not updated:
                        raise ExamNotFound("Exam not found")
                if status is not None:
                    updated = conn.execute(
                        "UPDATE exams SET status = ? WHERE id = ?", (status, exam_id)
                    ).rowcount
                    if not updated:
                        raise ExamNotFound("Exam not found")
        except sqlite3.Error as exc:
            logger.error("Error updating exam %s: %s", exam_id, exc)
            raise PersistenceError(f"Could not update exam: {exc}") from exc
        return self.get_exam(exam_id)

    def delete_exam(self, exam_id: str) -> None:
        """Delete an exam together with its questions and submissions."""
        try:
            with connect(self.db_path) as conn:
                conn.execute("DELETE FROM submissions WHERE exam_id = ?", (exam_id,))
                conn.execute("DELETE FROM questions WHERE exam_id = ?", (exam_id,))
                deleted = conn.execute("DELETE FROM exams WHERE id = ?", (exam_id,)).rowcount
        except sqlite3.Error as exc:
            logger.error("Error deleting exam %s: %s", exam_id, exc)
            raise PersistenceError(f"Could not delete exam: {exc}") from exc
        if not deleted:
            raise ExamNotFound("Exam not found")
        logger.info("Deleted exam %s", exam_id)

    def list_exams(self) -> list[ExamSummary]:
        try:
            with connect(self.db_path) as conn:
                rows = conn.execute(
                    """SELECT e.*, COUNT(q.id) AS question_count
                       FROM   exams e
                       LEFT JOIN questions q ON q.exam_id = e.id
                       GROUP BY e.id
                       ORDER BY e.created_at DESC, e.rowid DESC"""
                ).fetchall()
        except sqlite3.Error as exc:
            logger.error("Error listing exams: %s", exc)
            raise PersistenceError(f"Could not load exams: {exc}") from exc
        return [
            ExamSummary(
                id=r["id"],
                title=r["title"],
                created_at=r["created_at"],
                question_count=r["question_count"],
                status=r["status"],
                url=r["url"],
                submissions=r["submissions"],
            )
            for r in rows
        ]

    # ── Submissions ───────────────────────────────────────────────────────────

    def submit_exam(
        self,
        student_name: str,
        student_id: str,
        exam_id: str,
        exam_title: str,
        answers: dict[str, str],
        total_questions: Optional[int] = None,
    ) -> Submission:
        """Score and store one completed attempt.

        The score and the stored question count both come from the exam's
        own question set; ``total_questions`` sent by the client is only
        compared against it.  Inserting the submission and bumping the
        exam's counter happen in one transaction.
        """
        if not student_name.strip() or not student_id.strip():
            raise PersistenceError("Student name and ID are required")

        exam = self.get_exam(exam_id)
        score = score_answers(exam.questions, answers)
        total = len(exam.questions)
        if total_questions is not None and total_questions != total:
            logger.warning(
                "Submission for exam %s reported %d questions, exam has %d",
                exam_id, total_questions, total,
            )

        submission = Submission(
            id=str(uuid.uuid4()),
            student_name=student_name.strip(),
            student_id=student_id.strip(),
            exam_id=exam_id,
            exam_title=exam_title or exam.title,
            submitted_at=_now(),
            answers=dict(answers),
            score=score,
            total_questions=total,
        )
        try:
            with connect(self.db_path) as conn:
                conn.execute(
                    """INSERT INTO submissions
                           (id, exam_id, exam_title, student_name, student_id,
                            answers_json, score, total_questions, submitted_at)
                       VALUES (?,?,?,?,?,?,?,?,?)""",
                    (
                        submission.id, exam_id, submission.exam_title,
                        submission.student_name, submission.student_id,
                        json.dumps(submission.answers), score, total,
                        submission.submitted_at,
                    ),
                )
                conn.execute(
                    "UPDATE exams SET submissions = submissions + 1 WHERE id = ?",
                    (exam_id,),
                )
        except sqlite3.Error as exc:
            logger.error("Error submitting exam %s: %s", exam_id, exc)
            raise PersistenceError(f"Could not save submission: {exc}") from exc

        logger.info("Stored submission %s for exam %s (%d/%d)", submission.id, exam_id, score, total)
        return submission

    def list_submissions(self, exam_id: str) -> list[Submission]:
        return self._read_submissions(
            "SELECT * FROM submissions WHERE exam_id = ? ORDER BY submitted_at, rowid",
            (exam_id,),
        )

    def list_all_submissions(self) -> list[Submission]:
        return self._read_submissions("SELECT * FROM submissions ORDER BY submitted_at, rowid")

    def _read_submissions(self, query: str, params: tuple = ()) -> list[Submission]:
        try:
            with connect(self.db_path) as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            logger.error("Error loading submissions: %s", exc)
            raise PersistenceError(f"Could not load submissions: {exc}") from exc
        return [_submission_from_row(r) for r in rows]

    # ── Examiner accounts ─────────────────────────────────────────────────────

    def create_examiner(self, email: str, username: str, password_hash: str) -> int:
        with connect(self.db_path) as conn:
            cur = conn.execute(
                "INSERT INTO users (email, username, password_hash) VALUES (?,?,?)",
                (email, username, password_hash),
            )
            return cur.lastrowid

    def get_examiner_by_email(self, email: str) -> Optional[dict]:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT id, email, username, password_hash FROM users WHERE email = ?",
                (email,),
            ).fetchone()
        return dict(row) if row else None

    def get_examiner_by_id(self, examiner_id: int) -> Optional[dict]:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT id, email, username FROM users WHERE id = ?", (examiner_id,)
            ).fetchone()
        return dict(row) if row else None


def _submission_from_row(row: sqlite3.Row) -> Submission:
    return Submission(
        id=row["id"],
        student_name=row["student_name"],
        student_id=row["student_id"],
        exam_id=row["exam_id"],
        exam_title=row["exam_title"],
        submitted_at=row["submitted_at"],
        answers=json.loads(row["answers_json"]),
        score=row["score"],
        total_questions=row["total_questions"],
    )


class SessionStore:
    """One student session per device, kept across page reloads."""

    def __init__(self, db_path: str, device_id: str):
        self.db_path = db_path
        self.device_id = device_id

    def load(self) -> Optional[StudentSession]:
        try:
            with connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT payload FROM student_sessions WHERE device_id = ?",
                    (self.device_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not load student session: {exc}") from exc
        if row is None:
            return None
        try:
            return StudentSession(**json.loads(row["payload"]))
        except (ValueError, TypeError) as exc:
            logger.error("Discarding unreadable student session for %s: %s", self.device_id, exc)
            self.clear()
            return None

    def save(self, session: StudentSession) -> None:
        try:
            with connect(self.db_path) as conn:
                conn.execute(
                    """INSERT INTO student_sessions (device_id, payload, updated_at)
                       VALUES (?,?,?)
                       ON CONFLICT(device_id) DO UPDATE SET
                           payload    = excluded.payload,
                           updated_at = excluded.updated_at""",
                    (self.device_id, session.model_dump_json(), _now()),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not save student session: {exc}") from exc

    def clear(self) -> None:
        try:
            with connect(self.db_path) as conn:
                conn.execute(
                    "DELETE FROM student_sessions WHERE device_id = ?", (self.device_id,)
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not clear student session: {exc}") from exc
