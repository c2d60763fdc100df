"""FastAPI host for forms, submissions and the save-to-resource action."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import logging

from action_errors import EFORMLOAD, ENOHANDLER, ENOIDP, EREQRECUR, ESUBLOAD, ActionError
from app.handlers import FORM_NOT_FOUND, SUBMISSION_NOT_FOUND, SubmissionHandlers
from app.stores import MemoryFormStore, MemorySubmissionStore, StoreError
from sub_request import MAX_CHILD_REQUESTS, SUBMISSION_ITEM_URL, SUBMISSION_URL, ResponseSink, SubmissionRequest
from transform_eval import DEFAULT_MAX_SCRIPT_LENGTH, DEFAULT_TIMEOUT_MS, TransformEvaluator


app = FastAPI(title="Subsync")
logger = logging.getLogger("subsync")
logging.basicConfig(level=logging.INFO)

USE_DB = os.getenv("USE_DB", "").strip() == "1"
VM_TIMEOUT_MS = int(os.getenv("SUBSYNC_VM_TIMEOUT_MS", str(DEFAULT_TIMEOUT_MS)))
TRANSFORM_MAX_LENGTH = int(os.getenv("SUBSYNC_TRANSFORM_MAX_LENGTH", str(DEFAULT_MAX_SCRIPT_LENGTH)))
MAX_CHILD = int(os.getenv("SUBSYNC_MAX_CHILD_REQUESTS", str(MAX_CHILD_REQUESTS)))

_ERROR_STATUS = {
    ENOIDP: 400,
    EREQRECUR: 400,
    EFORMLOAD: 400,
    ESUBLOAD: 400,
    ENOHANDLER: 500,
    FORM_NOT_FOUND: 404,
    SUBMISSION_NOT_FOUND: 404,
}


def build_handlers(forms=None, submissions=None, max_child_requests: int | None = None) -> SubmissionHandlers:
    if forms is None or submissions is None:
        if USE_DB:
            from app.stores_db import DbFormStore, DbSubmissionStore, ensure_schema

            ensure_schema()
            forms, submissions = DbFormStore(), DbSubmissionStore()
        else:
            forms, submissions = MemoryFormStore(), MemorySubmissionStore()
    handlers = SubmissionHandlers(
        forms,
        submissions,
        evaluator=TransformEvaluator(timeout_ms=VM_TIMEOUT_MS, max_script_length=TRANSFORM_MAX_LENGTH),
        max_child_requests=MAX_CHILD if max_child_requests is None else max_child_requests,
        timeout_ms=VM_TIMEOUT_MS,
    )
    handlers.register()
    return handlers


handlers = build_handlers()
logger.info("subsync_ready use_db=%s max_child_requests=%s vm_timeout_ms=%s", USE_DB, MAX_CHILD, VM_TIMEOUT_MS)


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400, warnings: list | None = None) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": warnings or [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


@app.exception_handler(ActionError)
async def action_error_handler(request: Request, exc: ActionError):
    status = _ERROR_STATUS.get(exc.code, 400)
    logger.warning("request_failed path=%s code=%s message=%s", request.url.path, exc.code, exc.message)
    return _error_response(exc.code, exc.message, exc.path, exc.detail, status=status)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("request_crashed path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


async def _safe_json(request: Request) -> dict:
    try:
        body = await request.json()
    except Exception:
        return {}
    return body if isinstance(body, dict) else {}


def _query(request: Request) -> dict:
    return {key: value for key, value in request.query_params.items()}


def _dryrun(query: dict) -> bool:
    return str(query.get("dryrun", "")).strip().lower() in ("1", "true", "yes")


def _submission_request(request: Request, method: str, form_id: str, body: dict, submission_id: str | None = None) -> SubmissionRequest:
    query = _query(request)
    params = {"formId": form_id}
    url = SUBMISSION_URL
    if submission_id is not None:
        params["submissionId"] = submission_id
        url = SUBMISSION_ITEM_URL
    return SubmissionRequest(
        method=method,
        url=url,
        form_id=form_id,
        params=params,
        body=body,
        sub_id=submission_id,
        query=query,
        skip_save=_dryrun(query),
    )


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.post("/form")
async def create_form(request: Request):
    body = await _safe_json(request)
    if not body.get("title") and not body.get("name"):
        return _error_response("FORM_INVALID", "Form requires a title or name", "title")
    try:
        form = handlers.forms.create(body)
    except StoreError as exc:
        return _error_response("FORM_INVALID", str(exc), "type")
    logger.info("form_created form_id=%s type=%s", form["_id"], form["type"])
    return _ok_response({"form": form}, status=201)


@app.get("/form/{form_id}")
async def get_form(form_id: str):
    form = handlers.forms.get(form_id)
    if not form:
        return _error_response(FORM_NOT_FOUND, "Form not found", "formId", {"form": form_id}, status=404)
    return _ok_response({"form": form})


@app.get("/form/{form_id}/submission")
async def list_submissions(form_id: str):
    if not handlers.forms.get(form_id):
        return _error_response(FORM_NOT_FOUND, "Form not found", "formId", {"form": form_id}, status=404)
    return _ok_response({"submissions": handlers.submissions.list(form_id)})


@app.post("/form/{form_id}/submission")
async def create_submission(request: Request, form_id: str):
    body = await _safe_json(request)
    req = _submission_request(request, "POST", form_id, body)
    res = ResponseSink()
    await handlers.create(req, res)
    return _ok_response({"submission": res.item}, warnings=res.warnings, status=res.status or 200)


@app.put("/form/{form_id}/submission/{submission_id}")
async def update_submission(request: Request, form_id: str, submission_id: str):
    body = await _safe_json(request)
    req = _submission_request(request, "PUT", form_id, body, submission_id)
    res = ResponseSink()
    await handlers.update(req, res)
    return _ok_response({"submission": res.item}, warnings=res.warnings, status=res.status or 200)


@app.get("/form/{form_id}/submission/{submission_id}")
async def get_submission(request: Request, form_id: str, submission_id: str):
    req = _submission_request(request, "GET", form_id, {}, submission_id)
    res = ResponseSink()
    await handlers.read(req, res)
    return _ok_response({"submission": res.item})
