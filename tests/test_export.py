from datetime import date

from export import CSV_HEADERS, export_filename, submissions_to_csv
from models import Submission, percentage


def _submission(name: str, score: int, total: int) -> Submission:
    return Submission(
        id=f"s-{name}",
        student_name=name,
        student_id=f"ID-{name}",
        exam_id="e1",
        exam_title="Physics, Part 1",
        submitted_at="2026-10-18T09:00:00+00:00",
        answers={},
        score=score,
        total_questions=total,
    )


def test_percentage_rounds_halves_up():
    assert percentage(7, 8) == 88
    assert percentage(9, 10) == 90
    assert percentage(1, 8) == 13
    assert percentage(3, 0) == 0


def test_csv_has_one_header_and_one_row_per_submission():
    text = submissions_to_csv([_submission("Ana", 7, 8), _submission("Ben", 9, 10)])
    lines = text.strip().split("\n")

    assert lines[0] == ",".join(CSV_HEADERS)
    assert len(lines) == 3
    assert lines[1].endswith(",7,8,88%")
    assert lines[2].endswith(",9,10,90%")
    # Titles containing commas are quoted.
    assert '"Physics, Part 1"' in lines[1]


def test_csv_with_no_submissions_is_just_the_header():
    assert submissions_to_csv([]) == ",".join(CSV_HEADERS) + "\n"


def test_export_filename():
    assert export_filename(date(2026, 3, 7)) == "exam-results-2026-03-07.csv"
