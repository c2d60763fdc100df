"""Load the target resource and the mirrored submission linked to a primary."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from action_errors import EFORMLOAD, ESUBLOAD, FormLoadError, SubmissionLoadError
from resource_link import LINK_TYPE


logger = logging.getLogger("subsync.actions.save")


class FormCache(Protocol):
    async def load_form(self, req: Any, kind: str, form_id: str) -> dict:
        ...

    async def load_submission(self, req: Any, form_id: str, submission_id: str) -> dict | None:
        ...


def _error_detail(exc: BaseException) -> dict:
    return {"error": str(exc) or type(exc).__name__, "type": type(exc).__name__}


async def load_target_resource(cache: FormCache, req: Any, resource_id: str) -> dict:
    try:
        resource = await cache.load_form(req, "resource", resource_id)
    except Exception as exc:
        logger.warning("save_submission_error code=%s resource=%s error=%s", EFORMLOAD, resource_id, exc)
        raise FormLoadError("Target resource could not be loaded", "resource", _error_detail(exc)) from exc
    if not resource:
        logger.warning("save_submission_error code=%s resource=%s error=not_found", EFORMLOAD, resource_id)
        raise FormLoadError("Target resource not found", "resource", {"resource": resource_id})
    return resource


def find_external_id(submission: dict, resource_id: str) -> dict | None:
    for record in submission.get("externalIds") or []:
        if not isinstance(record, dict):
            continue
        if record.get("type") == LINK_TYPE and str(record.get("resource")) == str(resource_id):
            return record
    return None


async def load_linked_submission(cache: FormCache, req: Any, resource_id: str) -> dict | None:
    """Return the mirrored submission already linked to the primary being updated.

    ``None`` means there is nothing to update: the body has no identity, the
    primary has no link for this resource, or the linked submission is gone.
    """
    body = req.body if isinstance(req.body, dict) else {}
    form_id = body.get("form")
    submission_id = body.get("_id")
    if not submission_id or not form_id:
        return None

    try:
        current = await cache.load_submission(req, str(form_id), str(submission_id))
    except Exception as exc:
        logger.warning("save_submission_error code=%s form_id=%s id=%s error=%s", ESUBLOAD, form_id, submission_id, exc)
        raise SubmissionLoadError("Submission could not be loaded", "_id", _error_detail(exc)) from exc
    if not current:
        logger.warning("save_submission_error code=%s form_id=%s id=%s error=not_found", ESUBLOAD, form_id, submission_id)
        raise SubmissionLoadError("Submission not found", "_id", {"form": str(form_id), "id": str(submission_id)})

    external = find_external_id(current, resource_id)
    if external is None:
        return None

    try:
        linked = await cache.load_submission(req, str(resource_id), str(external.get("id")))
    except Exception as exc:
        logger.warning("save_submission_error code=%s form_id=%s id=%s error=%s", ESUBLOAD, resource_id, external.get("id"), exc)
        raise SubmissionLoadError("Linked submission could not be loaded", "externalIds", _error_detail(exc)) from exc
    return linked or None
