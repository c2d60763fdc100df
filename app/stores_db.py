"""DB-backed form and submission stores (jsonb documents)."""

from __future__ import annotations

import copy
import logging

from subsync.canonical_json import canonical_dumps

from app.db import execute, fetch_all, fetch_one, get_conn
from app.stores import _new_id, _now, normalize_form, normalize_submission


logger = logging.getLogger("subsync.stores")

_SCHEMA = (
    """
    create table if not exists subsync_forms (
        id text primary key,
        doc jsonb not null,
        created_at timestamptz not null default now(),
        updated_at timestamptz not null default now()
    )
    """,
    """
    create table if not exists subsync_submissions (
        id text primary key,
        form_id text not null,
        doc jsonb not null,
        created_at timestamptz not null default now(),
        updated_at timestamptz not null default now()
    )
    """,
    "create index if not exists subsync_submissions_form_idx on subsync_submissions (form_id, id)",
)


def ensure_schema() -> None:
    with get_conn() as conn:
        for statement in _SCHEMA:
            execute(conn, statement, query_name="schema.ensure")
    logger.info("db_schema_ready")


def _doc(row: dict | None) -> dict | None:
    if not row:
        return None
    doc = row.get("doc")
    return copy.deepcopy(doc) if isinstance(doc, dict) else None


class DbFormStore:
    def create(self, values: dict) -> dict:
        form = normalize_form(values)
        form_id = str(form.get("_id") or _new_id())
        now = _now()
        form["_id"] = form_id
        form["created"] = now
        form["modified"] = now
        with get_conn() as conn:
            execute(
                conn,
                "insert into subsync_forms (id, doc) values (%s, %s::jsonb)",
                [form_id, canonical_dumps(form)],
                query_name="forms.insert",
            )
        return form

    def get(self, form_id: str) -> dict | None:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                "select doc from subsync_forms where id=%s",
                [str(form_id)],
                query_name="forms.get",
            )
        return _doc(row)

    def list(self) -> list[dict]:
        with get_conn() as conn:
            rows = fetch_all(conn, "select doc from subsync_forms order by created_at", query_name="forms.list")
        return [doc for doc in (_doc(r) for r in rows) if doc is not None]


class DbSubmissionStore:
    def create(self, form_id: str, values: dict) -> dict:
        submission = normalize_submission(form_id, values)
        submission_id = _new_id()
        now = _now()
        submission["_id"] = submission_id
        submission["created"] = now
        submission["modified"] = now
        with get_conn() as conn:
            execute(
                conn,
                "insert into subsync_submissions (id, form_id, doc) values (%s, %s, %s::jsonb)",
                [submission_id, str(form_id), canonical_dumps(submission)],
                query_name="submissions.insert",
            )
        return submission

    def update(self, form_id: str, submission_id: str, values: dict) -> dict:
        with get_conn() as conn:
            existing = _doc(
                fetch_one(
                    conn,
                    "select doc from subsync_submissions where id=%s and form_id=%s for update",
                    [str(submission_id), str(form_id)],
                    query_name="submissions.get_for_update",
                )
            )
            if existing is None:
                raise KeyError("submission not found")
            submission = normalize_submission(form_id, values)
            submission["_id"] = str(submission_id)
            submission["created"] = existing.get("created")
            submission["modified"] = _now()
            execute(
                conn,
                "update subsync_submissions set doc=%s::jsonb, updated_at=now() where id=%s and form_id=%s",
                [canonical_dumps(submission), str(submission_id), str(form_id)],
                query_name="submissions.update",
            )
        return submission

    def get(self, form_id: str, submission_id: str) -> dict | None:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                "select doc from subsync_submissions where id=%s and form_id=%s",
                [str(submission_id), str(form_id)],
                query_name="submissions.get",
            )
        return _doc(row)

    def list(self, form_id: str) -> list[dict]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                "select doc from subsync_submissions where form_id=%s order by created_at",
                [str(form_id)],
                query_name="submissions.list",
            )
        return [doc for doc in (_doc(r) for r in rows) if doc is not None]
