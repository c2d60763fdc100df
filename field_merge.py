"""Project primary submission fields into a mirrored submission's data."""

from __future__ import annotations

import copy
import logging
from typing import Any, List, Mapping

from action_errors import EFIELDPATH, Issue, _issue
from subsync.field_path import FieldPathError, get_path, has_path, set_path


logger = logging.getLogger("subsync.actions.save")

WHOLE_DATA = "data"


def merge_fields(
    child_data: dict,
    primary_data: Any,
    fields: Mapping[str, str] | None,
    issues: List[Issue] | None = None,
) -> dict:
    """Copy configured source fields of ``primary_data`` into ``child_data`` in place.

    ``fields`` maps a target path in the child to a source path in the primary.
    The source ``"data"`` stands for the whole primary data tree. Sources that are
    not set are skipped; nothing is ever written as null on their behalf. A mapping
    whose path cannot be parsed or walked is skipped and reported in ``issues``.
    """
    if not fields:
        return child_data
    for target, source in fields.items():
        try:
            if source == WHOLE_DATA:
                set_path(child_data, target, copy.deepcopy(primary_data))
            elif isinstance(source, str) and source and has_path(primary_data, source):
                set_path(child_data, target, copy.deepcopy(get_path(primary_data, source)))
        except FieldPathError as exc:
            logger.warning("field_merge_skipped target=%s source=%s error=%s", target, source, exc.message)
            if issues is not None:
                issues.append(
                    _issue(
                        EFIELDPATH,
                        "Field mapping skipped",
                        f"fields.{target}",
                        {"target": target, "source": source, "segment": exc.segment, "error": exc.message},
                    )
                )
    return child_data
