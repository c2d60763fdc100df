"""In-memory form and submission stores."""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone
from typing import Dict


FORM_TYPES = ("form", "resource")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _new_id() -> str:
    return uuid.uuid4().hex[:24]


class StoreError(RuntimeError):
    pass


def normalize_form(values: dict) -> dict:
    form = copy.deepcopy(values)
    form_type = form.get("type") or "form"
    if form_type not in FORM_TYPES:
        raise StoreError(f"Unsupported form type: {form_type}")
    form["type"] = form_type
    actions = form.get("actions")
    form["actions"] = actions if isinstance(actions, list) else []
    return form


def normalize_submission(form_id: str, values: dict) -> dict:
    submission = copy.deepcopy(values) if isinstance(values, dict) else {}
    submission["form"] = str(form_id)
    if not isinstance(submission.get("data"), dict):
        submission["data"] = {}
    if not isinstance(submission.get("roles"), list):
        submission["roles"] = []
    if not isinstance(submission.get("externalIds"), list):
        submission["externalIds"] = []
    return submission


class MemoryFormStore:
    def __init__(self) -> None:
        self._forms: Dict[str, dict] = {}

    def create(self, values: dict) -> dict:
        form = normalize_form(values)
        form_id = str(form.get("_id") or _new_id())
        now = _now()
        form["_id"] = form_id
        form["created"] = now
        form["modified"] = now
        self._forms[form_id] = form
        return copy.deepcopy(form)

    def get(self, form_id: str) -> dict | None:
        form = self._forms.get(str(form_id))
        return copy.deepcopy(form) if form else None

    def list(self) -> list[dict]:
        return [copy.deepcopy(v) for v in self._forms.values()]


class MemorySubmissionStore:
    def __init__(self) -> None:
        self._submissions: Dict[str, Dict[str, dict]] = {}

    def create(self, form_id: str, values: dict) -> dict:
        submission = normalize_submission(form_id, values)
        submission_id = _new_id()
        now = _now()
        submission["_id"] = submission_id
        submission["created"] = now
        submission["modified"] = now
        self._submissions.setdefault(str(form_id), {})[submission_id] = submission
        return copy.deepcopy(submission)

    def update(self, form_id: str, submission_id: str, values: dict) -> dict:
        bucket = self._submissions.get(str(form_id), {})
        existing = bucket.get(str(submission_id))
        if existing is None:
            raise KeyError("submission not found")
        submission = normalize_submission(form_id, values)
        submission["_id"] = str(submission_id)
        submission["created"] = existing.get("created")
        submission["modified"] = _now()
        bucket[str(submission_id)] = submission
        return copy.deepcopy(submission)

    def get(self, form_id: str, submission_id: str) -> dict | None:
        submission = self._submissions.get(str(form_id), {}).get(str(submission_id))
        return copy.deepcopy(submission) if submission else None

    def list(self, form_id: str) -> list[dict]:
        return [copy.deepcopy(v) for v in self._submissions.get(str(form_id), {}).values()]
