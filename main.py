"""
Exam Portal – FastAPI backend

Examiners upload a PDF, an AI API extracts multiple choice questions, the
examiner reviews and publishes the exam, students open the shareable link,
identify with name and student ID, answer and submit, and examiners export
the scored results as CSV.

The two workflows run as server-side state machines:

  ExamAuthoringFlow  (authoring.py) – one per examiner dashboard,
                                      addressed by /api/authoring/{flow_id}
  ExamTakingFlow     (taking.py)    – one per exam attempt,
                                      addressed by /api/take/{flow_id}

Students are recognised by a long-lived device cookie; their name/ID
session is stored per device so a reload mid-exam does not ask again.
"""

import logging
import os
import secrets
import uuid
from contextlib import asynccontextmanager
from typing import Literal, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from auth import (
    ExaminerIdentity, create_access_token, get_current_examiner, hash_password,
    password_problem, verify_password,
)
from authoring import AuthoringStatus, ExamAuthoringFlow
from config import DB_PATH, STATIC_DIR, configure_logging
from editor import MAX_OPTIONS, MIN_OPTIONS
from errors import PortalError
from export import export_filename, submissions_to_csv
from extraction import ExtractionResult, extract_questions_from_pdf
from models import question_for_student
from storage import ExamStore, SessionStore
from taking import ExamTakingFlow, TakingStep
from urls import exam_id_from_path, is_uuid

logger = configure_logging()

# ──────────────────────────────────────────────
# App setup
# ──────────────────────────────────────────────

store = ExamStore(DB_PATH)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store.init_db()
    logger.info("Exam store ready at %s", store.db_path)
    yield


app = FastAPI(title="Exam Portal", lifespan=lifespan)

app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ──────────────────────────────────────────────
# Flow registries
# ──────────────────────────────────────────────

MAX_FLOWS           = 5000
MAX_FLOWS_PER_OWNER = 20
DEVICE_COOKIE       = "examportal_device"

# flow_id -> (examiner_id, flow)
_authoring_flows: dict[str, tuple[int, ExamAuthoringFlow]] = {}
# flow_id -> (device_id, flow)
_taking_flows: dict[str, tuple[str, ExamTakingFlow]] = {}


def _remember(registry: dict, owner, flow) -> str:
    """Register a flow under a fresh id.

    Registries are kept in least-recently-used order (see ``_lookup``).  An
    owner keeps at most MAX_FLOWS_PER_OWNER flows, and past MAX_FLOWS the
    least recently used flow of any owner is dropped.
    """
    owned = [fid for fid, (o, _) in registry.items() if o == owner]
    for stale in owned[: max(0, len(owned) - MAX_FLOWS_PER_OWNER + 1)]:
        del registry[stale]

    flow_id = str(uuid.uuid4())
    registry[flow_id] = (owner, flow)
    while len(registry) > MAX_FLOWS:
        evicted = next(iter(registry))
        logger.warning("Flow registry full; dropping idle flow %s", evicted)
        del registry[evicted]
    return flow_id


def _lookup(registry: dict, flow_id: str, owner):
    """Return the flow owned by ``owner`` and mark it as most recently used."""
    entry = registry.get(flow_id)
    if entry is None or entry[0] != owner:
        return None
    registry[flow_id] = registry.pop(flow_id)
    return entry[1]


def _device_id(request: Request, response: Response) -> str:
    device = request.cookies.get(DEVICE_COOKIE)
    if not device:
        device = secrets.token_urlsafe(16)
        response.set_cookie(
            key=DEVICE_COOKIE,
            value=device,
            max_age=60 * 60 * 24 * 30,
            samesite="lax",
            httponly=True,
        )
    return device


async def _extract(data: bytes, filename: str) -> ExtractionResult:
    return await extract_questions_from_pdf(data, filename)


# ──────────────────────────────────────────────
# Pydantic request models
# ──────────────────────────────────────────────

class SignupRequest(BaseModel):
    username: str
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class TitleRequest(BaseModel):
    title: str


class TextRequest(BaseModel):
    text: str


class OptionRequest(BaseModel):
    option_id: str


class ViewRequest(BaseModel):
    view: Literal["upload", "manage", "results"]


class ExamUpdateRequest(BaseModel):
    title: Optional[str] = None
    status: Optional[Literal["active", "draft"]] = None


class StudentAuthRequest(BaseModel):
    student_name: str
    student_id: str


# ──────────────────────────────────────────────
# View builders
# ──────────────────────────────────────────────

def _authoring_view(flow_id: str, flow: ExamAuthoringFlow) -> dict:
    view = {
        "flow_id":         flow_id,
        "status":          flow.status.value,
        "error_message":   flow.error_message,
        "upload_progress": flow.upload_progress,
        "exam_title":      flow.exam_title,
        "active_view":     flow.active_view,
        "exams":           [e.model_dump() for e in flow.exams],
        "editor":          None,
    }
    editor = flow.editor
    if editor is not None and editor.current_question is not None:
        question = editor.current_question
        view["editor"] = {
            "current_index":     editor.current_index,
            "question_count":    editor.question_count,
            "current_question":  question.model_dump(),
            "can_previous":      editor.current_index > 0,
            "can_next":          editor.current_index < editor.question_count - 1,
            "can_add_option":    len(question.options) < MAX_OPTIONS,
            "can_remove_option": len(question.options) > MIN_OPTIONS,
        }
    return view


def _taking_view(flow_id: str, flow: ExamTakingFlow) -> dict:
    view = {
        "flow_id":         flow_id,
        "step":            flow.step.value,
        "exam_id":         flow.exam_id,
        "exam_title":      flow.exam_title,
        "student_name":    flow.student_name,
        "student_id":      flow.student_id,
        "total_questions": flow.total_questions,
        "error":           flow.error,
        "retry_action":    flow.retry_action,
    }
    if flow.step == TakingStep.EXAM and flow.current_question is not None:
        question = flow.current_question
        view.update({
            "current_index":      flow.current_index,
            "current_question":   question_for_student(question),
            "selected_option_id": flow.answers.get(question.id),
            "answered_count":     flow.answered_count,
            "progress":           flow.progress,
            "submit_dialog_open": flow.submit_dialog_open,
        })
        if flow.submit_dialog_open:
            view["submit_summary"] = vars(flow.submit_summary())
    if flow.step == TakingStep.CONFIRMATION and flow.submission is not None:
        view["submission"] = {
            "id":           flow.submission.id,
            "submitted_at": flow.submission.submitted_at,
            "answered":     len(flow.submission.answers),
        }
    return view


# ──────────────────────────────────────────────
# Routes
# ──────────────────────────────────────────────

# ── Static HTML pages ─────────────────────────

def _page(name: str) -> str:
    with open(os.path.join(STATIC_DIR, name), encoding="utf-8") as f:
        return f.read()


@app.get("/", response_class=HTMLResponse)
async def serve_index():
    return _page("index.html")


@app.get("/examiner", response_class=HTMLResponse)
async def serve_examiner():
    return _page("examiner.html")


@app.get("/student", response_class=HTMLResponse)
async def serve_student():
    return _page("student.html")


@app.get("/exam/{exam_id}", response_class=HTMLResponse)
async def serve_exam(exam_id: str):
    return _page("exam.html")


# ── Examiner auth API ─────────────────────────

@app.post("/api/auth/signup")
async def api_signup(body: SignupRequest):
    problem = password_problem(body.password)
    if problem:
        raise HTTPException(status_code=400, detail=problem)
    email = body.email.lower().strip()
    if store.get_examiner_by_email(email):
        raise HTTPException(status_code=409, detail="An account with this email already exists.")
    examiner_id = store.create_examiner(email, body.username.strip(), hash_password(body.password))
    token = create_access_token(examiner_id, email)
    return {"token": token, "examiner_id": examiner_id, "username": body.username}


@app.post("/api/auth/login")
async def api_login(body: LoginRequest):
    examiner = store.get_examiner_by_email(body.email.lower().strip())
    if not examiner or not verify_password(body.password, examiner["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid email or password.")
    token = create_access_token(examiner["id"], examiner["email"])
    return {"token": token, "examiner_id": examiner["id"], "username": examiner["username"]}


@app.get("/api/auth/me")
async def api_me(current: ExaminerIdentity = Depends(get_current_examiner)):
    examiner = store.get_examiner_by_id(current.examiner_id)
    if not examiner:
        raise HTTPException(status_code=404, detail="Examiner not found.")
    return examiner


# ── Authoring API ─────────────────────────────

def _authoring_flow(flow_id: str, current: ExaminerIdentity) -> ExamAuthoringFlow:
    flow = _lookup(_authoring_flows, flow_id, current.examiner_id)
    if flow is None:
        raise HTTPException(status_code=404, detail="Authoring session not found.")
    return flow


@app.post("/api/authoring")
async def api_start_authoring(current: ExaminerIdentity = Depends(get_current_examiner)):
    flow = ExamAuthoringFlow(_extract, store)
    flow.load_exams()
    flow_id = _remember(_authoring_flows, current.examiner_id, flow)
    return _authoring_view(flow_id, flow)


@app.get("/api/authoring/{flow_id}")
async def api_get_authoring(flow_id: str, current: ExaminerIdentity = Depends(get_current_examiner)):
    return _authoring_view(flow_id, _authoring_flow(flow_id, current))


@app.post("/api/authoring/{flow_id}/upload")
async def api_upload_pdf(
    flow_id: str,
    file: UploadFile = File(...),
    current: ExaminerIdentity = Depends(get_current_examiner),
):
    flow = _authoring_flow(flow_id, current)
    data = await file.read()
    status = await flow.upload(file.filename or "exam.pdf", file.content_type, data)

    view = _authoring_view(flow_id, flow)
    if status == AuthoringStatus.VALIDATION_ERROR:
        return JSONResponse(status_code=400, content=view)
    if status == AuthoringStatus.ERROR:
        return JSONResponse(status_code=422, content=view)
    return view


@app.put("/api/authoring/{flow_id}/title")
async def api_set_title(flow_id: str, body: TitleRequest, current: ExaminerIdentity = Depends(get_current_examiner)):
    flow = _authoring_flow(flow_id, current)
    flow.set_title(body.title)
    return _authoring_view(flow_id, flow)


@app.post("/api/authoring/{flow_id}/editor/next")
async def api_editor_next(flow_id: str, current: ExaminerIdentity = Depends(get_current_examiner)):
    flow = _authoring_flow(flow_id, current)
    changed = flow.review_editor.next()
    return {**_authoring_view(flow_id, flow), "changed": changed}


@app.post("/api/authoring/{flow_id}/editor/previous")
async def api_editor_previous(flow_id: str, current: ExaminerIdentity = Depends(get_current_examiner)):
    flow = _authoring_flow(flow_id, current)
    changed = flow.review_editor.previous()
    return {**_authoring_view(flow_id, flow), "changed": changed}


@app.put("/api/authoring/{flow_id}/editor/question")
async def api_edit_question(flow_id: str, body: TextRequest, current: ExaminerIdentity = Depends(get_current_examiner)):
    flow = _authoring_flow(flow_id, current)
    changed = flow.review_editor.set_question_text(body.text)
    return {**_authoring_view(flow_id, flow), "changed": changed}


@app.put("/api/authoring/{flow_id}/editor/options/{option_id}")
async def api_edit_option(
    flow_id: str,
    option_id: str,
    body: TextRequest,
    current: ExaminerIdentity = Depends(get_current_examiner),
):
    flow = _authoring_flow(flow_id, current)
    changed = flow.review_editor.set_option_text(option_id, body.text)
    return {**_authoring_view(flow_id, flow), "changed": changed}


@app.post("/api/authoring/{flow_id}/editor/options")
async def api_add_option(flow_id: str, current: ExaminerIdentity = Depends(get_current_examiner)):
    flow = _authoring_flow(flow_id, current)
    changed = flow.review_editor.add_option()
    return {**_authoring_view(flow_id, flow), "changed": changed}


@app.delete("/api/authoring/{flow_id}/editor/options/{option_id}")
async def api_remove_option(flow_id: str, option_id: str, current: ExaminerIdentity = Depends(get_current_examiner)):
    flow = _authoring_flow(flow_id, current)
    changed = flow.review_editor.remove_option(option_id)
    return {**_authoring_view(flow_id, flow), "changed": changed}


@app.put("/api/authoring/{flow_id}/editor/correct")
async def api_set_correct(flow_id: str, body: OptionRequest, current: ExaminerIdentity = Depends(get_current_examiner)):
    flow = _authoring_flow(flow_id, current)
    changed = flow.review_editor.set_correct_option(body.option_id)
    return {**_authoring_view(flow_id, flow), "changed": changed}


@app.post("/api/authoring/{flow_id}/cancel")
async def api_cancel_authoring(flow_id: str, current: ExaminerIdentity = Depends(get_current_examiner)):
    flow = _authoring_flow(flow_id, current)
    flow.cancel()
    return _authoring_view(flow_id, flow)


@app.put("/api/authoring/{flow_id}/view")
async def api_show_view(flow_id: str, body: ViewRequest, current: ExaminerIdentity = Depends(get_current_examiner)):
    flow = _authoring_flow(flow_id, current)
    if body.view != "upload":
        flow.load_exams()
    flow.show(body.view)
    return _authoring_view(flow_id, flow)


@app.post("/api/authoring/{flow_id}/publish")
async def api_publish(flow_id: str, current: ExaminerIdentity = Depends(get_current_examiner)):
    flow = _authoring_flow(flow_id, current)
    summary = flow.publish()
    return {**_authoring_view(flow_id, flow), "exam": summary.model_dump()}


# ── Exam management API ───────────────────────

@app.get("/api/exams")
async def api_list_exams(current: ExaminerIdentity = Depends(get_current_examiner)):
    return [e.model_dump() for e in store.list_exams()]


@app.patch("/api/exams/{exam_id}")
async def api_update_exam(
    exam_id: str,
    body: ExamUpdateRequest,
    current: ExaminerIdentity = Depends(get_current_examiner),
):
    exam = store.update_exam(exam_id, title=body.title, status=body.status)
    return exam.summary().model_dump()


@app.delete("/api/exams/{exam_id}")
async def api_delete_exam(exam_id: str, current: ExaminerIdentity = Depends(get_current_examiner)):
    store.delete_exam(exam_id)
    return {"ok": True}


@app.get("/api/exams/{exam_id}/submissions")
async def api_exam_submissions(exam_id: str, current: ExaminerIdentity = Depends(get_current_examiner)):
    store.get_exam(exam_id)
    return [
        {**s.model_dump(), "percentage": s.percentage}
        for s in store.list_submissions(exam_id)
    ]


@app.get("/api/results/export")
async def api_export_results(
    exam_id: Optional[str] = None,
    current: ExaminerIdentity = Depends(get_current_examiner),
):
    if exam_id:
        store.get_exam(exam_id)
        submissions = store.list_submissions(exam_id)
    else:
        submissions = store.list_all_submissions()
    logger.info("Exporting %d submissions", len(submissions))
    return Response(
        content=submissions_to_csv(submissions),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


# ── Student API ───────────────────────────────

def _taking_flow(flow_id: str, request: Request) -> ExamTakingFlow:
    flow = _lookup(_taking_flows, flow_id, request.cookies.get(DEVICE_COOKIE))
    if flow is None:
        raise HTTPException(status_code=404, detail="Exam session not found.")
    return flow


@app.get("/api/resolve")
async def api_resolve_link(link: str):
    exam_id = exam_id_from_path(link)
    if not exam_id:
        raise HTTPException(status_code=400, detail="That does not look like an exam link.")
    return {"exam_id": exam_id}


@app.post("/api/exams/{exam_id}/take")
async def api_open_exam(exam_id: str, request: Request, response: Response):
    device = _device_id(request, response)
    flow = ExamTakingFlow(
        store,
        SessionStore(store.db_path, device),
        exam_id=exam_id,
        on_submit=lambda answers: logger.info(
            "Exam %s submitted with %d answers", exam_id, len(answers)
        ),
    )
    flow.open()
    flow_id = _remember(_taking_flows, device, flow)
    return _taking_view(flow_id, flow)


@app.get("/api/take/{flow_id}")
async def api_get_attempt(flow_id: str, request: Request):
    return _taking_view(flow_id, _taking_flow(flow_id, request))


@app.post("/api/take/{flow_id}/auth")
async def api_student_auth(flow_id: str, body: StudentAuthRequest, request: Request):
    flow = _taking_flow(flow_id, request)
    if not flow.authenticate(body.student_name, body.student_id):
        raise HTTPException(status_code=400, detail="Please enter your name and student ID.")
    return _taking_view(flow_id, flow)


@app.post("/api/take/{flow_id}/start")
async def api_start_exam(flow_id: str, request: Request):
    flow = _taking_flow(flow_id, request)
    flow.start()
    return _taking_view(flow_id, flow)


@app.post("/api/take/{flow_id}/answer")
async def api_select_answer(flow_id: str, body: OptionRequest, request: Request):
    flow = _taking_flow(flow_id, request)
    if not flow.select_answer(body.option_id):
        raise HTTPException(status_code=400, detail="That option does not belong to this question.")
    return _taking_view(flow_id, flow)


@app.post("/api/take/{flow_id}/next")
async def api_next_question(flow_id: str, request: Request):
    flow = _taking_flow(flow_id, request)
    flow.next()
    return _taking_view(flow_id, flow)


@app.post("/api/take/{flow_id}/previous")
async def api_previous_question(flow_id: str, request: Request):
    flow = _taking_flow(flow_id, request)
    flow.previous()
    return _taking_view(flow_id, flow)


@app.post("/api/take/{flow_id}/submit-dialog")
async def api_open_submit_dialog(flow_id: str, request: Request):
    flow = _taking_flow(flow_id, request)
    flow.open_submit_dialog()
    return _taking_view(flow_id, flow)


@app.delete("/api/take/{flow_id}/submit-dialog")
async def api_close_submit_dialog(flow_id: str, request: Request):
    flow = _taking_flow(flow_id, request)
    flow.close_submit_dialog()
    return _taking_view(flow_id, flow)


@app.post("/api/take/{flow_id}/submit")
async def api_submit_exam(flow_id: str, request: Request):
    flow = _taking_flow(flow_id, request)
    if not flow.submit():
        return JSONResponse(status_code=500, content=_taking_view(flow_id, flow))
    return _taking_view(flow_id, flow)


@app.post("/api/student/sign-out")
async def api_student_sign_out(request: Request, response: Response):
    SessionStore(store.db_path, _device_id(request, response)).clear()
    return {"ok": True}


# ── Root-path exam links ──────────────────────
# Registered last so every named route above wins.

@app.get("/{exam_id}", response_class=HTMLResponse)
async def serve_exam_at_root(exam_id: str):
    if not is_uuid(exam_id):
        raise HTTPException(status_code=404, detail="Not found.")
    return _page("exam.html")


# ──────────────────────────────────────────────
# Local dev entry-point
# ──────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
