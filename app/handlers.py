"""Generic submission handlers; every save runs the form's before-actions first."""

from __future__ import annotations

import copy
import logging
from typing import Any

from action_errors import ActionError
from app.cache import FormNotFoundError, ResourceCache
from save_submission import SaveSubmission
from sub_request import (
    MAX_CHILD_REQUESTS,
    HandlerRegistry,
    Operation,
    ResourceKind,
    ResponseSink,
    SubmissionRequest,
)
from transform_eval import TransformEvaluator


logger = logging.getLogger("subsync.handlers")

FORM_NOT_FOUND = "FORM_NOT_FOUND"
SUBMISSION_NOT_FOUND = "SUBMISSION_NOT_FOUND"

_ACTION_METHODS = {"POST": "create", "PUT": "update", "PATCH": "update"}


class SubmissionHandlers:
    def __init__(
        self,
        forms: Any,
        submissions: Any,
        registry: HandlerRegistry | None = None,
        evaluator: TransformEvaluator | None = None,
        max_child_requests: int = MAX_CHILD_REQUESTS,
        timeout_ms: int | None = None,
    ) -> None:
        self.forms = forms
        self.submissions = submissions
        self.cache = ResourceCache(forms, submissions)
        self.registry = registry or HandlerRegistry()
        self.evaluator = evaluator or TransformEvaluator()
        self.max_child_requests = max_child_requests
        self.timeout_ms = timeout_ms

    def register(self) -> HandlerRegistry:
        self.registry.register(ResourceKind.SUBMISSION, Operation.CREATE, self.create)
        self.registry.register(ResourceKind.SUBMISSION, Operation.UPDATE, self.update)
        self.registry.register(ResourceKind.SUBMISSION, Operation.READ, self.read)
        return self.registry

    def action_deps(self) -> dict:
        return {
            "cache": self.cache,
            "handlers": self.registry,
            "evaluator": self.evaluator,
            "max_child_requests": self.max_child_requests,
            "timeout_ms": self.timeout_ms,
        }

    async def _form(self, req: SubmissionRequest) -> dict:
        try:
            return await self.cache.load_form(req, None, str(req.form_id))
        except FormNotFoundError as exc:
            raise ActionError(FORM_NOT_FOUND, "Form not found", "formId", {"form": req.form_id}) from exc

    async def run_before_actions(self, form: dict, req: SubmissionRequest, res: ResponseSink) -> None:
        method = _ACTION_METHODS.get(str(req.method).upper())
        if method is None:
            return
        defaults = SaveSubmission.info["defaults"]
        for action in form.get("actions") or []:
            if not isinstance(action, dict) or action.get("name") != SaveSubmission.info["name"]:
                continue
            handlers = action.get("handler") or defaults["handler"]
            methods = action.get("method") or defaults["method"]
            if "before" not in handlers or method not in methods:
                continue
            result = await SaveSubmission(action.get("settings"), self.action_deps()).resolve(
                "before", method, req, res
            )
            res.warnings.extend(result["warnings"])
            if not result["ok"]:
                error = result["errors"][0]
                raise ActionError(error["code"], error["message"], error.get("path"), error.get("detail"))

    async def create(self, req: SubmissionRequest, res: ResponseSink) -> None:
        form = await self._form(req)
        body = req.body if isinstance(req.body, dict) else {}
        body["form"] = form["_id"]
        req.body = body

        await self.run_before_actions(form, req, res)

        if req.skip_save or req.skip_resource:
            logger.info(
                "submission_not_persisted form_id=%s dryrun=%s redirected=%s",
                form["_id"],
                req.skip_save,
                req.skip_resource,
            )
            res.status = 200
            res.item = copy.deepcopy(req.body)
            return
        res.status = 201
        res.item = self.submissions.create(form["_id"], req.body)
        logger.info("submission_created form_id=%s id=%s child=%s", form["_id"], res.item.get("_id"), req.child_requests > 0)

    async def update(self, req: SubmissionRequest, res: ResponseSink) -> None:
        form = await self._form(req)
        existing = self.submissions.get(form["_id"], str(req.sub_id))
        if not existing:
            raise ActionError(
                SUBMISSION_NOT_FOUND,
                "Submission not found",
                "submissionId",
                {"form": form["_id"], "id": req.sub_id},
            )
        body = req.body if isinstance(req.body, dict) else {}
        body["_id"] = str(req.sub_id)
        body["form"] = form["_id"]
        req.body = body

        await self.run_before_actions(form, req, res)

        merged = copy.deepcopy(existing)
        merged.update(req.body)
        if req.skip_save or req.skip_resource:
            logger.info(
                "submission_not_persisted form_id=%s id=%s dryrun=%s redirected=%s",
                form["_id"],
                req.sub_id,
                req.skip_save,
                req.skip_resource,
            )
            res.status = 200
            res.item = merged
            return
        res.status = 200
        res.item = self.submissions.update(form["_id"], str(req.sub_id), merged)
        logger.info("submission_updated form_id=%s id=%s child=%s", form["_id"], req.sub_id, req.child_requests > 0)

    async def read(self, req: SubmissionRequest, res: ResponseSink) -> None:
        form = await self._form(req)
        item = self.submissions.get(form["_id"], str(req.sub_id))
        if not item:
            raise ActionError(
                SUBMISSION_NOT_FOUND,
                "Submission not found",
                "submissionId",
                {"form": form["_id"], "id": req.sub_id},
            )
        res.status = 200
        res.item = item
