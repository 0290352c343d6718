"""
training_service.py — Quiz submission and training progress.

Entry point for the training surface:

    submit_quiz_attempt(user, module, answers) → QuizResult
    start_module(user, module)                 → UserProgress
    overview(user)                             → modules + progress + certification

A graded quiz always returns its score. If the follow-up certification
write fails, the failure is logged for reconciliation and the caller
still gets the result: the grade is already recorded on the progress row
and the next passing submission retries issuance.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from backend.app.certification.engine import CertificationEngine
from backend.app.certification.grading import PASS_THRESHOLD, apply_attempt, grade_quiz
from backend.app.certification.models import QuizResult, UserProgress
from backend.app.core.errors import NotFoundError, ValidationError
from backend.app.storage.base import Directory, Store

logger = logging.getLogger(__name__)


class TrainingService:

    def __init__(
        self,
        store: Store,
        directory: Directory,
        engine: CertificationEngine,
        *,
        pass_threshold: int = PASS_THRESHOLD,
    ) -> None:
        self.store = store
        self.directory = directory
        self.engine = engine
        self.pass_threshold = pass_threshold

    async def _require_user(self, user_id: str) -> None:
        if await self.directory.get_user(user_id) is None:
            raise NotFoundError("User", id=user_id)

    async def start_module(self, user_id: str, module_id: str) -> UserProgress:
        """Create the progress row for a module; returns the existing one if present."""
        await self._require_user(user_id)
        if await self.store.load_module(module_id) is None:
            raise NotFoundError("TrainingModule", id=module_id)

        existing = await self.store.load_progress(user_id, module_id)
        if existing is not None:
            return existing

        progress = UserProgress(
            user_id=user_id, module_id=module_id, started_at=self.engine.clock(),
        )
        return await self.store.save_progress(progress)

    async def submit_quiz_attempt(
        self,
        user_id: str,
        module_id: str,
        answers: Mapping[str, Any],
    ) -> QuizResult:
        if not isinstance(answers, Mapping):
            raise ValidationError("Answers must be an object keyed by question id", field="answers")

        await self._require_user(user_id)
        if await self.store.load_module(module_id) is None:
            raise NotFoundError("TrainingModule", id=module_id)

        questions = await self.store.questions_for_module(module_id)
        if not questions:
            raise NotFoundError("QuizQuestions", module_id=module_id)

        result = grade_quiz(questions, answers, pass_threshold=self.pass_threshold)

        now = self.engine.clock()
        progress = await self.store.load_progress(user_id, module_id)
        if progress is None:
            progress = UserProgress(user_id=user_id, module_id=module_id, started_at=now)
        apply_attempt(progress, result, now)
        await self.store.save_progress(progress)

        logger.info(
            "Quiz graded: user=%s module=%s score=%d passed=%s attempt=%d",
            user_id, module_id, result.score, result.passed, progress.quiz_attempts,
            extra={"user_id": user_id},
        )

        if result.passed:
            try:
                await self.engine.on_module_completion(user_id)
            except Exception:
                logger.exception(
                    "Certification update after quiz failed for user %s (module %s); "
                    "needs reconciliation",
                    user_id, module_id,
                    extra={"user_id": user_id},
                )

        return result

    async def overview(self, user_id: str) -> Dict[str, Any]:
        """Modules, the user's progress on each, and the certification view."""
        await self._require_user(user_id)
        modules = await self.store.list_modules()
        progress = {p.module_id: p for p in await self.store.progress_for_user(user_id)}
        view = await self.engine.current_view(user_id)

        return {
            "certification": view.to_dict(),
            "modules": [
                {
                    **m.to_dict(),
                    "progress": progress[m.id].to_dict() if m.id in progress else None,
                }
                for m in modules
            ],
        }
