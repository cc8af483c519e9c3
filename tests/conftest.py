import os
import sys
from pathlib import Path
from typing import Generator

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep auth from writing a .jwt_secret file into the project directory.
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from models import Option, Question  # noqa: E402
from storage import ExamStore, SessionStore  # noqa: E402


def make_question(qid: str, correct: str = "a", count: int = 4, text: str = "") -> Question:
    letters = "abcdef"[:count]
    return Question(
        id=qid,
        text=text or f"Question {qid}?",
        options=[Option(id=l, text=f"Option {l.upper()}") for l in letters],
        correct_option_id=correct,
    )


@pytest.fixture()
def sample_questions() -> list[Question]:
    return [
        make_question("q1", correct="b", text="What is 2 + 2?"),
        make_question("q2", correct="c", text="Which gas do plants absorb?"),
        make_question("q3", correct="a", text="What is the boiling point of water?"),
    ]


@pytest.fixture()
def store(tmp_path) -> ExamStore:
    exam_store = ExamStore(
        str(tmp_path / "exam_portal.db"),
        base_url="http://localhost:8000",
        external_host="exams.example.org",
    )
    exam_store.init_db()
    return exam_store


@pytest.fixture()
def session_store(store) -> SessionStore:
    return SessionStore(store.db_path, "device-1")


def make_pdf(lines: list[str]) -> bytes:
    """Build a one-page PDF whose text layer holds ``lines``."""
    content = ["BT", "/F1 12 Tf", "14 TL", "72 720 Td"]
    for line in lines:
        escaped = line.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        content.append(f"({escaped}) Tj T*")
    content.append("ET")
    stream = "\n".join(content).encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_at = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (
        len(objects) + 1, xref_at,
    )
    return bytes(out)


@pytest.fixture()
def sample_pdf() -> bytes:
    return make_pdf([
        "1. What is 2 + 2?",
        "a) 3   b) 4   c) 5   d) 22",
        "2. Which gas do plants absorb?",
        "a) Oxygen   b) Nitrogen   c) Carbon dioxide   d) Helium",
    ])


@pytest.fixture()
def client(store, monkeypatch) -> Generator:
    """TestClient over the app, bound to the temporary store."""
    from fastapi.testclient import TestClient

    import main

    monkeypatch.setattr(main, "store", store)
    monkeypatch.setattr(main, "_authoring_flows", {})
    monkeypatch.setattr(main, "_taking_flows", {})
    with TestClient(main.app) as test_client:
        yield test_client
