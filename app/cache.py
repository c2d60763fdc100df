"""Request-scoped form and submission loading."""

from __future__ import annotations

import copy
import logging
from typing import Any


logger = logging.getLogger("subsync.cache")

_FORMS_KEY = "forms"


class FormNotFoundError(LookupError):
    pass


class ResourceCache:
    """Loads forms (memoized per request chain) and submissions (always fresh)."""

    def __init__(self, forms: Any, submissions: Any) -> None:
        self.forms = forms
        self.submissions = submissions

    async def load_form(self, req: Any, kind: str | None, form_id: str) -> dict:
        memo = req.cache.setdefault(_FORMS_KEY, {}) if req is not None else {}
        form = memo.get(str(form_id))
        if form is None:
            form = self.forms.get(str(form_id))
            if form is None:
                raise FormNotFoundError(f"Form not found: {form_id}")
            memo[str(form_id)] = form
            logger.debug("cache_miss=form form_id=%s", form_id)
        if kind and form.get("type") != kind:
            raise FormNotFoundError(f"{kind.capitalize()} not found: {form_id}")
        return copy.deepcopy(form)

    async def load_submission(self, req: Any, form_id: str, submission_id: str) -> dict | None:
        return self.submissions.get(str(form_id), str(submission_id))
