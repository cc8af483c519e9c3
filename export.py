"""
export.py – CSV export of scored submissions
"""

import csv
import io
from datetime import date
from typing import Iterable, Optional

from models import Submission

CSV_HEADERS = [
    "Student Name",
    "Student ID",
    "Exam Title",
    "Submitted At",
    "Score",
    "Total Questions",
    "Percentage",
]


def submissions_to_csv(submissions: Iterable[Submission]) -> str:
    """Render one header row followed by one row per submission."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for s in submissions:
        writer.writerow([
            s.student_name,
            s.student_id,
            s.exam_title,
            s.submitted_at,
            s.score,
            s.total_questions,
            f"{s.percentage}%",
        ])
    return buffer.getvalue()


def export_filename(day: Optional[date] = None) -> str:
    return f"exam-results-{(day or date.today()).isoformat()}.csv"
