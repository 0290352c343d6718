"""
FastAPI routes: training modules and quizzes.

    GET  /api/v1/training                               — modules + progress + certification
    POST /api/v1/training/modules/{module_id}/start     — start a module
    GET  /api/v1/training/modules/{module_id}/questions — quiz questions (no answers)
    POST /api/v1/training/modules/{module_id}/quiz      — submit answers
    POST /api/v1/training/seed                          — load the standard curriculum (development only)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.app.api.deps import acting_user_id, get_services
from backend.app.api.schemas import QuizSubmissionRequest
from backend.app.certification.catalogue import seed_catalogue
from backend.app.core.errors import NotFoundError
from backend.app.services import ComplianceServices

router = APIRouter(prefix="/api/v1/training", tags=["training"])
seed_router = APIRouter(prefix="/api/v1/training", tags=["training"])


@router.get("", summary="Training overview for the acting user")
async def training_overview(
    user_id: str = Depends(acting_user_id),
    services: ComplianceServices = Depends(get_services),
):
    return await services.training.overview(user_id)


@router.post("/modules/{module_id}/start", summary="Start a training module")
async def start_module(
    module_id: str,
    user_id: str = Depends(acting_user_id),
    services: ComplianceServices = Depends(get_services),
):
    progress = await services.training.start_module(user_id, module_id)
    return progress.to_dict()


@router.get("/modules/{module_id}/questions", summary="Quiz questions for a module")
async def module_questions(
    module_id: str,
    user_id: str = Depends(acting_user_id),
    services: ComplianceServices = Depends(get_services),
):
    if await services.store.load_module(module_id) is None:
        raise NotFoundError("TrainingModule", id=module_id)
    questions = await services.store.questions_for_module(module_id)
    return {"module_id": module_id, "questions": [q.to_dict() for q in questions]}


@router.post("/modules/{module_id}/quiz", summary="Submit quiz answers")
async def submit_quiz(
    module_id: str,
    request: QuizSubmissionRequest,
    user_id: str = Depends(acting_user_id),
    services: ComplianceServices = Depends(get_services),
):
    """Grade the attempt; a pass may complete the user's certification."""
    result = await services.training.submit_quiz_attempt(user_id, module_id, request.answers)
    view = await services.engine.current_view(user_id)
    return {**result.to_dict(), "certification": view.to_dict()}


@seed_router.post("/seed", summary="Seed the standard training modules (development only)")
async def seed_training(services: ComplianceServices = Depends(get_services)):
    created = await seed_catalogue(services.store)
    if created:
        return {"message": "Seed data created", "module_count": created}
    modules = await services.store.list_modules()
    return {"message": "Modules already exist", "module_count": len(modules)}
