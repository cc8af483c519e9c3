import pytest

from errors import InvalidTransition, PersistenceError
from models import StudentSession
from storage import ExamStore, SessionStore
from taking import DEFAULT_EXAM_TITLE, ExamTakingFlow, TakingStep


@pytest.fixture()
def exam(store, sample_questions):
    return store.create_exam("Chemistry Quiz", sample_questions)


def _in_exam(store, session_store, exam, **kwargs) -> ExamTakingFlow:
    flow = ExamTakingFlow(store, session_store, exam_id=exam.id, **kwargs)
    flow.open()
    flow.authenticate("Ana", "S-1")
    flow.start()
    return flow


def test_open_without_session_asks_for_identity(store, session_store, exam):
    flow = ExamTakingFlow(store, session_store, exam_id=exam.id)

    assert flow.open() == TakingStep.AUTH
    assert flow.exam_title == "Chemistry Quiz"
    assert flow.total_questions == 3


def test_open_with_saved_session_skips_identity(store, session_store, exam):
    session_store.save(StudentSession(student_name="Ana", student_id="S-1", exam_id=exam.id))
    flow = ExamTakingFlow(store, session_store, exam_id=exam.id)

    assert flow.open() == TakingStep.INSTRUCTIONS
    assert (flow.student_name, flow.student_id) == ("Ana", "S-1")


def test_open_unknown_exam_ends_in_error(store, session_store):
    flow = ExamTakingFlow(store, session_store, exam_id="missing")

    assert flow.open() == TakingStep.ERROR
    assert flow.error == "Exam not found"
    assert flow.retry_action == "reload"


def test_open_without_exam_or_questions_ends_in_error(store, session_store):
    flow = ExamTakingFlow(store, session_store)

    assert flow.open() == TakingStep.ERROR
    assert flow.error


def test_open_with_supplied_questions_prefills_identity(store, session_store, sample_questions):
    session_store.save(StudentSession(student_name="Ana", student_id="S-1"))
    flow = ExamTakingFlow(store, session_store, questions=sample_questions)

    assert flow.open() == TakingStep.AUTH
    assert flow.student_name == "Ana"
    assert flow.exam_title == DEFAULT_EXAM_TITLE


def test_authenticate_requires_both_fields(store, session_store, exam):
    flow = ExamTakingFlow(store, session_store, exam_id=exam.id)
    flow.open()

    assert flow.authenticate("Ana", "   ") is False
    assert flow.step == TakingStep.AUTH
    assert flow.authenticate(" Ana ", " S-1 ") is True
    assert flow.step == TakingStep.INSTRUCTIONS
    assert session_store.load().student_name == "Ana"


def test_progress_and_navigation(store, session_store, exam):
    flow = _in_exam(store, session_store, exam)

    assert flow.progress == pytest.approx(100 / 3)
    assert flow.previous() is False
    flow.next()
    flow.next()
    assert flow.progress == pytest.approx(100.0)
    assert flow.next() is False
    assert flow.current_index == 2


def test_select_answer_only_accepts_current_options(store, session_store, exam):
    flow = _in_exam(store, session_store, exam)

    assert flow.select_answer("b")
    assert flow.select_answer("zz") is False
    flow.select_answer("c")
    assert flow.answers == {"q1": "c"}
    assert flow.answered_count == 1


def test_submit_summary_warns_about_unanswered(store, session_store, exam):
    flow = _in_exam(store, session_store, exam)
    flow.select_answer("b")

    summary = flow.open_submit_dialog()
    assert (summary.answered, summary.total) == (1, 3)
    assert "2 unanswered" in summary.warning

    flow.close_submit_dialog()
    assert flow.submit_dialog_open is False


def test_submit_success_clears_session_and_confirms(store, session_store, exam):
    submitted = []
    flow = _in_exam(store, session_store, exam, on_submit=submitted.append)
    flow.select_answer("b")
    flow.open_submit_dialog()

    assert flow.submit() is True
    assert flow.step == TakingStep.CONFIRMATION
    assert submitted == [{"q1": "b"}]
    assert session_store.load() is None
    assert flow.submission.score == 1
    assert store.get_exam(exam.id).submissions == 1


def test_submit_failure_keeps_answers(store, session_store, exam, monkeypatch):
    flow = _in_exam(store, session_store, exam)
    flow.select_answer("b")
    flow.open_submit_dialog()

    def broken_submit(**kwargs):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(store, "submit_exam", broken_submit)

    assert flow.submit() is False
    assert flow.step == TakingStep.EXAM
    assert flow.error == "database is locked"
    assert flow.answers == {"q1": "b"}
    assert flow.submit_dialog_open is False
    assert session_store.load() is not None


def test_actions_out_of_step_are_rejected(store, session_store, exam):
    flow = ExamTakingFlow(store, session_store, exam_id=exam.id)
    flow.open()

    with pytest.raises(InvalidTransition):
        flow.start()
    with pytest.raises(InvalidTransition):
        flow.select_answer("a")


def test_answers_survive_moving_forward_and_back(store, session_store, exam):
    flow = _in_exam(store, session_store, exam)

    flow.select_answer("b")
    flow.next()
    flow.select_answer("c")
    flow.previous()

    assert flow.current_index == 0
    assert flow.answers == {"q1": "b", "q2": "c"}
    assert flow.answered_count == 2


def test_open_with_unreachable_database_ends_in_error(tmp_path, session_store):
    unreachable = ExamStore(str(tmp_path / "no_such_dir" / "exam_portal.db"))
    flow = ExamTakingFlow(unreachable, session_store, exam_id="e1")

    assert flow.open() == TakingStep.ERROR
    assert flow.error.startswith("Could not load exam")
    assert flow.retry_action == "reload"


def test_unreachable_session_store_only_costs_the_saved_identity(tmp_path, store, exam):
    sessions = SessionStore(str(tmp_path / "no_such_dir" / "sessions.db"), "device-1")
    flow = ExamTakingFlow(store, sessions, exam_id=exam.id)

    assert flow.open() == TakingStep.AUTH
    assert flow.authenticate("Ana", "S-1") is True
    assert flow.step == TakingStep.INSTRUCTIONS


def test_submit_with_unreachable_database_stays_in_exam(tmp_path, store, session_store, exam):
    flow = _in_exam(store, session_store, exam)
    flow.select_answer("b")
    store.db_path = str(tmp_path / "no_such_dir" / "exam_portal.db")

    assert flow.submit() is False
    assert flow.step == TakingStep.EXAM
    assert flow.error.startswith("Could not load exam")
    assert flow.answers == {"q1": "b"}
