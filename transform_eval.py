"""Sandboxed transform scripts over mirrored submission data.

Scripts are Python statements interpreted by asteval. Each call builds a fresh
interpreter with exactly two bindings, ``submission`` and ``data``. The script
first rebinds ``data`` to ``submission["data"]``; the value of ``data`` after
the script ran is the result. Calls are time boxed and never raise:
failures come back as ``{"ok": False, "error": {...}}``.
"""

from __future__ import annotations

import copy
import io
import logging
import time
from typing import Any, Dict

import anyio
from asteval import Interpreter

from subsync.canonical_json import CanonicalJsonTypeError, json_clone


logger = logging.getLogger("subsync.transform")

ETRANSFORM = "ETRANSFORM"
ETIMEOUT = "ETIMEOUT"

DEFAULT_TIMEOUT_MS = 500
DEFAULT_MAX_SCRIPT_LENGTH = 50_000
_GRACE_S = 0.25
_MAX_LOGGED_OUTPUT = 2_000

_BLOCKED_SYMBOLS = ("open",)
_BLOCKED_NODES = ("import", "importfrom")


def _failed(code: str, message: str, detail: dict | None = None) -> Dict[str, Any]:
    return {
        "ok": False,
        "value": None,
        "error": {"code": code, "message": message, "path": "transform", "detail": detail},
    }


def build_transform_script(transform: str) -> str:
    """Start ``data`` from the submission being saved and end on it so the interpreter yields it."""
    return f"data = submission['data']\n{transform}\ndata"


_WRAPPER_LENGTH = len(build_transform_script(""))


class _DeadlineInterpreter(Interpreter):
    """Refuses to evaluate any further node once the deadline has passed."""

    _deadline: float | None = None
    timed_out = False

    def run(self, node, *args, **kwargs):
        if self._deadline is not None and time.monotonic() > self._deadline:
            self.timed_out = True
            raise TimeoutError("Transform time budget exhausted")
        return super().run(node, *args, **kwargs)


class TransformEvaluator:
    def __init__(
        self,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_script_length: int = DEFAULT_MAX_SCRIPT_LENGTH,
    ) -> None:
        self.timeout_ms = timeout_ms
        self.max_script_length = max_script_length

    async def evaluate(self, script: str, bindings: dict, timeout_ms: int | None = None) -> Dict[str, Any]:
        budget_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        if not isinstance(script, str) or not script.strip():
            return _failed(ETRANSFORM, "Transform script must be a non-empty string")
        if len(script) > self.max_script_length:
            return _failed(
                ETRANSFORM,
                "Transform script too long",
                {"length": len(script), "max": self.max_script_length},
            )

        symbols = {
            "submission": copy.deepcopy(bindings.get("submission")),
            "data": copy.deepcopy(bindings.get("data")),
        }
        source = build_transform_script(script)
        budget_s = max(budget_ms, 0) / 1000.0

        # A single builtin call can outlive the node deadline; the worker is then abandoned.
        outcome = None
        with anyio.move_on_after(budget_s + _GRACE_S):
            outcome = await anyio.to_thread.run_sync(
                self._run, source, symbols, budget_s, abandon_on_cancel=True
            )
        if outcome is None:
            return _failed(ETIMEOUT, f"Transform exceeded {budget_ms} ms", {"timeout_ms": budget_ms})
        if not outcome["ok"] and outcome["error"]["code"] == ETIMEOUT:
            outcome["error"]["detail"] = {"timeout_ms": budget_ms}
        return outcome

    def _interpreter(self, symbols: dict, output: io.StringIO) -> _DeadlineInterpreter:
        interpreter = _DeadlineInterpreter(
            use_numpy=False,
            writer=output,
            err_writer=output,
            max_statement_length=self.max_script_length + _WRAPPER_LENGTH,
        )
        for name in _BLOCKED_SYMBOLS:
            interpreter.symtable.pop(name, None)
        for name in _BLOCKED_NODES:
            interpreter.node_handlers.pop(name, None)
        for name, value in symbols.items():
            interpreter.symtable[name] = value
        return interpreter

    def _run(self, source: str, symbols: dict, budget_s: float) -> Dict[str, Any]:
        output = io.StringIO()
        interpreter = self._interpreter(symbols, output)
        start = time.perf_counter()
        interpreter._deadline = time.monotonic() + budget_s

        value = None
        raised: BaseException | None = None
        try:
            value = interpreter.eval(source, show_errors=False)
        except Exception as exc:
            raised = exc

        elapsed_ms = (time.perf_counter() - start) * 1000
        printed = output.getvalue()
        if printed:
            logger.debug("transform_output=%s", printed[:_MAX_LOGGED_OUTPUT])

        if interpreter.timed_out:
            return _failed(ETIMEOUT, "Transform exceeded its time budget")
        if raised is not None:
            return _failed(ETRANSFORM, str(raised) or type(raised).__name__)
        if interpreter.error:
            exc_name, message = interpreter.error[0].get_error()
            return _failed(ETRANSFORM, f"{exc_name}: {message}")
        if not isinstance(value, dict):
            return _failed(
                ETRANSFORM,
                "Transform must leave data as an object",
                {"type": type(value).__name__},
            )
        try:
            value = json_clone(value)
        except (CanonicalJsonTypeError, ValueError) as exc:
            return _failed(ETRANSFORM, str(exc))
        logger.debug("transform_ok ms=%.1f", elapsed_ms)
        return {"ok": True, "value": value, "error": None}
