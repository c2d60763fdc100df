"""Link a primary submission to its mirrored resource submission."""

from __future__ import annotations

import copy
from typing import Any


LINK_TYPE = "resource"


def external_id_record(resource_id: str, submission_id: str) -> dict:
    return {"type": LINK_TYPE, "resource": str(resource_id), "id": str(submission_id)}


def has_external_id(body: dict, record: dict) -> bool:
    for existing in body.get("externalIds") or []:
        if not isinstance(existing, dict):
            continue
        if (
            existing.get("type") == record["type"]
            and str(existing.get("resource")) == record["resource"]
            and str(existing.get("id")) == record["id"]
        ):
            return True
    return False


def assign_resource(body: dict, resource: Any, settings: Any, link_id: str | None = None) -> dict:
    """Write the mirrored resource into ``body`` and record the link.

    ``resource`` is the saved child submission, or the loaded one when nothing was
    saved. ``link_id`` is only passed for create-style saves that produced a child;
    the same link is never appended twice.
    """
    if settings.property:
        data = body.get("data")
        if not isinstance(data, dict):
            data = {}
            body["data"] = data
        data[settings.property] = copy.deepcopy(resource)

    if link_id is not None:
        record = external_id_record(settings.resource, link_id)
        if not has_external_id(body, record):
            links = body.get("externalIds")
            if not isinstance(links, list):
                links = []
                body["externalIds"] = links
            links.append(record)
    return body
