"""Business context routes."""

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from ecp.db.dependencies import get_db
from ecp.schemas.business_context import BusinessContextRead, ConversationStateRead
from ecp.schemas.common import ApiResponse
from ecp.services.business_context import clear_business_context, get_business_context


router = APIRouter(prefix="/projects/{project_id}")


@router.get("/business-context", response_model=ApiResponse[BusinessContextRead])
def read_business_context(
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[BusinessContextRead]:
    """Return what onboarding has learned about the business so far."""

    context = get_business_context(db, project_id)
    if context is None:
        raise HTTPException(status_code=404, detail=f"No business context for project {project_id}")
    return ApiResponse(data=BusinessContextRead.model_validate(context))


@router.delete("/business-context", response_model=ApiResponse[ConversationStateRead])
def reset_business_context(
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[ConversationStateRead]:
    """Clear gathered context and return to the gathering phase."""

    state = clear_business_context(db, project_id)
    return ApiResponse(
        data=ConversationStateRead(
            phase=state.phase.value,
            confidence=state.confidence,
            context_ready=state.context_ready,
        )
    )
