"""Internal child requests and the resource handler registry."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Tuple

from action_errors import MissingIdError, NoHandlerError, RecursiveRequestError


logger = logging.getLogger("subsync.subrequest")

MAX_CHILD_REQUESTS = 5

SUBMISSION_URL = "/form/:formId/submission"
SUBMISSION_ITEM_URL = "/form/:formId/submission/:submissionId"


class ResourceKind(str, Enum):
    SUBMISSION = "submission"


class Operation(str, Enum):
    CREATE = "post"
    UPDATE = "put"
    PATCH = "patch"
    READ = "get"

    @classmethod
    def from_method(cls, method: str) -> "Operation":
        return cls(str(method).lower())


@dataclass
class SubmissionRequest:
    method: str
    url: str = SUBMISSION_URL
    form_id: str | None = None
    params: Dict[str, Any] = field(default_factory=dict)
    body: Any = None
    sub_id: str | None = None
    user: dict | None = None
    query: Dict[str, Any] = field(default_factory=dict)
    # Shared by reference with every child request of the same chain.
    cache: Dict[str, Any] = field(default_factory=dict)
    child_requests: int = 0
    ancestry: Tuple[str, ...] = ()
    permissions_checked: bool = False
    no_response: bool = False
    skip_save: bool = False
    skip_resource: bool = False
    is_transformed_data: bool = False

    def chain(self) -> Tuple[str, ...]:
        if self.ancestry:
            return self.ancestry
        return (str(self.form_id),) if self.form_id else ()


@dataclass
class ResponseSink:
    """Collects a handler's outcome instead of writing an HTTP response."""

    status: int | None = None
    item: dict | None = None
    warnings: list = field(default_factory=list)


Handler = Callable[[SubmissionRequest, ResponseSink], Awaitable[None]]


class HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: Dict[Tuple[ResourceKind, Operation], Handler] = {}

    def register(self, kind: ResourceKind, operation: Operation, handler: Handler) -> None:
        self._handlers[(kind, operation)] = handler

    def get(self, kind: ResourceKind, operation: Operation) -> Handler | None:
        return self._handlers.get((kind, operation))


def create_sub_request(
    req: SubmissionRequest,
    target_resource_id: str,
    max_child_requests: int = MAX_CHILD_REQUESTS,
) -> SubmissionRequest:
    """Clone ``req`` for a save into ``target_resource_id``.

    Fails with EREQRECUR once the chain holds ``max_child_requests`` children or
    when the target is already being processed further up the chain.
    """
    target = str(target_resource_id)
    chain = req.chain()
    if req.child_requests >= max_child_requests:
        raise RecursiveRequestError(
            "Too many nested child requests",
            "resource",
            {"child_requests": req.child_requests, "max": max_child_requests, "chain": list(chain)},
        )
    if target in chain:
        raise RecursiveRequestError(
            "Child request would recurse into a resource already in this chain",
            "resource",
            {"resource": target, "chain": list(chain)},
        )

    child = copy.copy(req)
    child.params = dict(req.params)
    child.query = dict(req.query)
    child.body = None
    child.sub_id = None
    child.child_requests = req.child_requests + 1
    child.ancestry = chain + (target,)
    child.permissions_checked = False
    child.no_response = False
    child.skip_resource = False
    child.is_transformed_data = False
    return child


def build_child_save_request(
    parent: SubmissionRequest,
    resource_id: str,
    method: str,
    body: dict,
    max_child_requests: int = MAX_CHILD_REQUESTS,
) -> SubmissionRequest:
    child = create_sub_request(parent, resource_id, max_child_requests)

    # The parent's authorization covers this write.
    child.permissions_checked = True
    child.no_response = True
    child.body = body
    child.form_id = child.params["formId"] = str(resource_id)
    child.params.pop("submissionId", None)

    url = SUBMISSION_URL
    method = str(method).lower()
    if method == Operation.UPDATE.value:
        sub_id = body.get("_id") if isinstance(body, dict) else None
        if not sub_id:
            raise MissingIdError(
                "Cannot update a resource submission without an _id",
                "body._id",
                {"resource": str(resource_id)},
            )
        child.sub_id = child.params["submissionId"] = str(sub_id)
        url = SUBMISSION_ITEM_URL

    child.url = url
    child.method = method.upper()
    return child


async def dispatch(registry: HandlerRegistry, child: SubmissionRequest, sink: ResponseSink) -> ResponseSink:
    try:
        operation = Operation.from_method(child.method)
    except ValueError:
        operation = None
    handler = registry.get(ResourceKind.SUBMISSION, operation) if operation else None
    if handler is None:
        raise NoHandlerError(
            "No handler registered for child save",
            "method",
            {"url": child.url, "method": child.method.lower()},
        )
    logger.info(
        "child_save_dispatch form_id=%s method=%s depth=%s",
        child.form_id,
        child.method,
        child.child_requests,
    )
    await handler(child, sink)
    return sink
