"""Save Submission action (mirror a submission into another resource)."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Tuple

from action_errors import ActionError, Issue, _issue
from field_merge import merge_fields
from resource_link import assign_resource
from sub_request import (
    MAX_CHILD_REQUESTS,
    ResponseSink,
    SubmissionRequest,
    build_child_save_request,
    dispatch,
)
from submission_loader import load_linked_submission, load_target_resource
from transform_eval import TransformEvaluator


logger = logging.getLogger("subsync.actions.save")

ACTION_INFO = {
    "name": "save",
    "title": "Save Submission",
    "description": "Saves the submission into the database.",
    "priority": 10,
    "defaults": {
        "handler": ["before"],
        "method": ["create", "update"],
    },
    "access": {
        "handler": False,
        "method": False,
    },
}

SAVE_METHODS = ("POST", "PUT", "PATCH")


def _clean_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


@dataclass(frozen=True)
class ActionSettings:
    resource: str | None = None
    property: str | None = None
    fields: Mapping[str, str] = field(default_factory=dict)
    transform: str | None = None

    @classmethod
    def from_dict(cls, settings: dict | None) -> "ActionSettings":
        settings = settings if isinstance(settings, dict) else {}
        raw_fields = settings.get("fields")
        fields: Dict[str, str] = {}
        if isinstance(raw_fields, dict):
            for target, source in raw_fields.items():
                if isinstance(target, str) and target and isinstance(source, str) and source:
                    fields[target] = source
        transform = settings.get("transform")
        return cls(
            resource=_clean_str(settings.get("resource")),
            property=_clean_str(settings.get("property")),
            fields=fields,
            transform=transform if isinstance(transform, str) and transform.strip() else None,
        )


@dataclass(frozen=True)
class PipelineContext:
    resource: dict | None = None
    submission: dict | None = None
    saved: dict | None = None
    warnings: Tuple[Issue, ...] = ()
    halted: bool = False


def _result(
    ok: bool = True,
    errors: List[Issue] | None = None,
    warnings: List[Issue] | None = None,
    skipped: bool = False,
    child: dict | None = None,
) -> Dict[str, Any]:
    return {
        "ok": ok,
        "errors": errors or [],
        "warnings": warnings or [],
        "skipped": skipped,
        "child": child,
    }


class SaveSubmission:
    info = ACTION_INFO

    def __init__(self, settings: dict | ActionSettings | None, deps: dict) -> None:
        if isinstance(settings, ActionSettings):
            self.settings = settings
        else:
            self.settings = ActionSettings.from_dict(settings)
        self.cache = deps.get("cache")
        self.handlers = deps.get("handlers")
        self.evaluator = deps.get("evaluator") or TransformEvaluator()
        self.max_child_requests = deps.get("max_child_requests", MAX_CHILD_REQUESTS)
        self.timeout_ms = deps.get("timeout_ms")

    @classmethod
    def applies_to(cls, handler: str, method: str) -> bool:
        defaults = cls.info["defaults"]
        return handler in defaults["handler"] and method in defaults["method"]

    async def resolve(
        self,
        handler: str,
        method: str,
        req: SubmissionRequest,
        res: ResponseSink | None = None,
    ) -> Dict[str, Any]:
        if req.skip_save or not isinstance(req.body, dict) or str(req.method).upper() not in SAVE_METHODS:
            return _result(skipped=True)

        # Make sure we do not skip the resource.
        req.skip_resource = False

        if not self.settings.resource:
            return _result(skipped=True)

        if self.cache is None or self.handlers is None:
            return _result(ok=False, errors=[_issue("ACTION_DEPS_MISSING", "cache and handlers deps required", "$")])

        # The primary is redirected into the configured resource.
        req.skip_resource = True

        ctx = PipelineContext()
        stages = (
            self._load_resource,
            self._load_submission,
            self._save_to_resource,
            self._assign_resource,
        )
        try:
            for stage in stages:
                ctx = await stage(ctx, req, res)
                if ctx.halted:
                    break
        except ActionError as exc:
            logger.warning(
                "save_submission_failed code=%s form_id=%s resource=%s method=%s error=%s",
                exc.code,
                req.form_id,
                self.settings.resource,
                req.method,
                exc.message,
            )
            return _result(ok=False, errors=[exc.as_issue()], warnings=list(ctx.warnings))

        return _result(warnings=list(ctx.warnings), child=ctx.saved or ctx.submission)

    async def _load_resource(self, ctx: PipelineContext, req: SubmissionRequest, res: ResponseSink | None) -> PipelineContext:
        resource = await load_target_resource(self.cache, req, self.settings.resource)
        return replace(ctx, resource=resource)

    async def _load_submission(self, ctx: PipelineContext, req: SubmissionRequest, res: ResponseSink | None) -> PipelineContext:
        if str(req.method).upper() != "PUT":
            submission, issues = await self._update_submission({"data": {}, "roles": []}, req, res)
        else:
            linked = await load_linked_submission(self.cache, req, self.settings.resource)
            if linked is None:
                return replace(ctx, halted=True)
            submission, issues = await self._update_submission(linked, req, res)
        warnings = ctx.warnings + tuple(issues)
        return replace(ctx, submission=submission, warnings=warnings)

    async def _update_submission(
        self,
        submission: dict,
        req: SubmissionRequest,
        res: ResponseSink | None,
    ) -> Tuple[dict, List[Issue]]:
        submission = copy.deepcopy(submission)
        data = submission.get("data")
        if not isinstance(data, dict):
            data = {}
        primary_data = req.body.get("data") if isinstance(req.body, dict) else None
        issues: List[Issue] = []
        merge_fields(data, primary_data if primary_data is not None else {}, self.settings.fields, issues)
        submission["data"] = data

        if not self.settings.transform:
            return submission, issues

        origin = res.item if res is not None and res.item else req.body
        outcome = await self.evaluator.evaluate(
            self.settings.transform,
            {"submission": origin, "data": data},
            self.timeout_ms,
        )
        if outcome["ok"]:
            submission["data"] = outcome["value"]
            req.is_transformed_data = True
            return submission, issues

        error = outcome["error"]
        logger.warning(
            "save_submission_transform_failed code=%s form_id=%s resource=%s error=%s",
            error.get("code"),
            req.form_id,
            self.settings.resource,
            error.get("message"),
        )
        issues.append(error)
        return submission, issues

    async def _save_to_resource(self, ctx: PipelineContext, req: SubmissionRequest, res: ResponseSink | None) -> PipelineContext:
        resource_id = (ctx.resource or {}).get("_id") or self.settings.resource
        child = build_child_save_request(
            req,
            str(resource_id),
            req.method,
            ctx.submission,
            self.max_child_requests,
        )
        sink = ResponseSink()
        await dispatch(self.handlers, child, sink)
        warnings = ctx.warnings + tuple(sink.warnings)
        return replace(ctx, saved=sink.item, warnings=warnings)

    async def _assign_resource(self, ctx: PipelineContext, req: SubmissionRequest, res: ResponseSink | None) -> PipelineContext:
        resource = ctx.saved if ctx.saved else ctx.submission
        link_id = None
        if str(req.method).upper() == "POST" and ctx.saved and ctx.saved.get("_id"):
            link_id = str(ctx.saved["_id"])
        assign_resource(req.body, resource, self.settings, link_id)
        logger.info(
            "save_submission_linked form_id=%s resource=%s child_id=%s method=%s linked=%s",
            req.form_id,
            self.settings.resource,
            (resource or {}).get("_id"),
            req.method,
            link_id is not None,
        )
        return ctx
