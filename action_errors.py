"""Error codes raised by the save-submission pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


Issue = Dict[str, Any]

EREQRECUR = "EREQRECUR"
ENOIDP = "ENOIDP"
ENOHANDLER = "ENOHANDLER"
EFORMLOAD = "EFORMLOAD"
ESUBLOAD = "ESUBLOAD"
EFIELDPATH = "EFIELDPATH"


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


@dataclass
class ActionError(Exception):
    code: str
    message: str
    path: str | None = None
    detail: dict | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base

    def as_issue(self) -> Issue:
        return _issue(self.code, self.message, self.path, self.detail)


class RecursiveRequestError(ActionError):
    def __init__(self, message: str, path: str | None = None, detail: dict | None = None) -> None:
        super().__init__(EREQRECUR, message, path, detail)


class MissingIdError(ActionError):
    def __init__(self, message: str, path: str | None = None, detail: dict | None = None) -> None:
        super().__init__(ENOIDP, message, path, detail)


class NoHandlerError(ActionError):
    def __init__(self, message: str, path: str | None = None, detail: dict | None = None) -> None:
        super().__init__(ENOHANDLER, message, path, detail)


class FormLoadError(ActionError):
    def __init__(self, message: str, path: str | None = None, detail: dict | None = None) -> None:
        super().__init__(EFORMLOAD, message, path, detail)


class SubmissionLoadError(ActionError):
    def __init__(self, message: str, path: str | None = None, detail: dict | None = None) -> None:
        super().__init__(ESUBLOAD, message, path, detail)
