"""
Client-side draft of a multi-step application.

Edits land in the local draft immediately. submit_step sends the step to the
ApplicationStateStore; if the server write fails the local edits stay in place
and last_error is set, so the user keeps their typing and can retry.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Optional

from services.application_state import FINAL_STEP, FIRST_STEP, ApplicationStateStore, StepCommitResult, progress_for
from utils.exceptions import AppError

logger = logging.getLogger(__name__)

STEP_KEYS = tuple(f"step{n}" for n in range(FIRST_STEP, FINAL_STEP + 1))


def _merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class FormSession:
    def __init__(self, store: ApplicationStateStore, application_id: Optional[str] = None):
        self.store = store
        self.application_id = application_id
        self.current_step = FIRST_STEP
        self.furthest_step = FIRST_STEP
        self.data: dict[str, dict[str, Any]] = {key: {} for key in STEP_KEYS}
        self.last_error: Optional[str] = None
        self.last_warning: Optional[str] = None
        self.is_submitting = False

    @property
    def progress_percentage(self) -> int:
        return progress_for(self.current_step)

    def update_step(self, step_number: int, values: dict[str, Any]) -> dict[str, Any]:
        key = f"step{step_number}"
        if key not in self.data:
            raise ValueError(f"Unknown step {step_number}")
        self.data[key] = _merge(self.data[key], values)
        return self.data[key]

    def go_to(self, step_number: int) -> None:
        """Move to any step already reached; local data is untouched."""
        if not FIRST_STEP <= step_number <= self.furthest_step:
            raise ValueError(f"Step {step_number} has not been reached")
        self.current_step = step_number

    def previous(self) -> None:
        if self.current_step > FIRST_STEP:
            self.current_step -= 1

    async def start(self) -> str:
        if self.application_id is None:
            self.application_id = await self.store.start_application()
        return self.application_id

    async def load(self, application_id: str) -> None:
        view = await self.store.load_application(application_id)
        self.application_id = application_id
        for key in STEP_KEYS:
            self.data[key] = copy.deepcopy(view.get(key) or {})
        self.furthest_step = view["current_step"]
        self.current_step = view["current_step"]
        self.last_error = None

    async def submit_step(self, step_number: Optional[int] = None) -> Optional[StepCommitResult]:
        """Send a step to the server; advance locally only when it was saved."""
        step_number = step_number or self.current_step
        await self.start()
        self.is_submitting = True
        try:
            result = await self.store.commit_step(self.application_id, step_number, self.data[f"step{step_number}"])
        except AppError as e:
            self.last_error = e.message
            logger.info("Step %s submit rejected: %s", step_number, e.message)
            return None
        finally:
            self.is_submitting = False

        if not result.saved:
            self.last_error = result.error
            return result
        self.last_error = None
        self.last_warning = result.warning
        self.furthest_step = max(self.furthest_step, result.current_step)
        if step_number < FINAL_STEP:
            self.current_step = step_number + 1
        return result
