from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request

from smart_context.application.api.schema.requests import (
    GitAnalyzeRequest,
    OptimalContextRequest,
    OptimalContextResponse,
    OutcomeRequest,
    OutcomeResponse,
    OverrideRequest,
    OverrideResponse,
    RelationshipResponse,
)
from smart_context.application.engine import ContextEngine
from smart_context.domain.errors import ValidationError
from smart_context.domain.models.context_models import TaskMode
from smart_context.infrastructure.observability.logging import bind_request_context

router = APIRouter(prefix="/api/v1/context", tags=["context"])


def get_engine(request: Request) -> ContextEngine:
    return request.app.state.engine


def _parse_task_mode(value: Optional[str]) -> Optional[TaskMode]:
    if value is None:
        return None
    try:
        return TaskMode(value)
    except ValueError as e:
        raise ValidationError(f"Unknown task mode '{value}'", field="task_mode") from e


@router.post("/optimal", response_model=OptimalContextResponse)
async def optimal_context(body: OptimalContextRequest, engine: ContextEngine = Depends(get_engine)):
    bind_request_context(conversation_id=body.conversation_id)

    engine.register_files(body.project_files)
    context = await engine.context_manager.get_optimal_context(
        task=body.task,
        current_file=body.current_file,
        target_tokens=body.target_tokens,
        project_files=body.project_files,
        conversation_id=body.conversation_id,
        progressive_level=body.progressive_level,
        min_relevance_score=body.min_relevance_score,
        model=body.model,
    )
    return OptimalContextResponse.from_context(context)


@router.post("/sessions/{session_id}/outcome", response_model=OutcomeResponse)
async def record_outcome(session_id: int, body: OutcomeRequest, engine: ContextEngine = Depends(get_engine)):
    bind_request_context(session_id=session_id)

    result = await engine.context_manager.record_session_outcome(
        session_id, body.was_successful, body.files_actually_used,
    )
    return OutcomeResponse(**result)


@router.post("/sessions/{session_id}/overrides", response_model=OverrideResponse)
async def record_overrides(session_id: int, body: OverrideRequest, engine: ContextEngine = Depends(get_engine)):
    bind_request_context(session_id=session_id)

    override = await engine.feedback.apply_user_overrides(session_id, body.added, body.removed, body.kept)
    return OverrideResponse(
        session_id=override.session_id,
        added=override.added,
        removed=override.removed,
        kept=override.kept,
    )


@router.get("/relationships", response_model=List[RelationshipResponse])
async def file_relationships(
    file_path: str,
    relationship_type: str = "all",
    limit: int = Query(20, ge=1, le=200),
    engine: ContextEngine = Depends(get_engine),
):
    return await engine.feedback.get_file_relationships(file_path, relationship_type, limit)


@router.get("/insights")
async def insights(task_mode: Optional[str] = None, engine: ContextEngine = Depends(get_engine)) -> Dict[str, Any]:
    return await engine.feedback.get_insights(_parse_task_mode(task_mode))


@router.post("/git/analyze")
async def analyze_git(body: Optional[GitAnalyzeRequest] = None, engine: ContextEngine = Depends(get_engine)) -> Dict[str, Any]:
    return await engine.analyze_git_history(body.commit_limit if body else None)
