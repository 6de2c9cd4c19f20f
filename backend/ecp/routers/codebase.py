"""Repository indexing routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from ecp.db.dependencies import get_db
from ecp.schemas.common import ApiResponse
from ecp.schemas.indexing import (
    CodebaseIndexRequest,
    CodebaseIndexResult,
    RepositoryContextRead,
    RepositoryContextRequest,
    TrackingSnippetRead,
)
from ecp.services.codebase_index import run_codebase_index
from ecp.services.event_classifier import EventClassificationError, get_default_event_classifier
from ecp.services.github import RepositoryAccessError, get_github_reader, parse_repo_url
from ecp.services.repo_context import build_repository_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects/{project_id}")


@router.post("/codebase/index", response_model=ApiResponse[CodebaseIndexResult])
def index_codebase(
    payload: CodebaseIndexRequest,
    project_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[CodebaseIndexResult]:
    """Scan a GitHub repository for tracking calls and record discovered events."""

    if parse_repo_url(payload.github_url) is None:
        raise HTTPException(status_code=422, detail="Invalid GitHub URL")

    classifier = None
    if payload.classify:
        try:
            classifier = get_default_event_classifier()
        except EventClassificationError:
            logger.warning("codebase_index.classifier_unavailable project_id=%s", project_id)

    try:
        reader = get_github_reader(payload.github_url, payload.github_token)
        result = run_codebase_index(db, project_id, reader, classifier)
    except RepositoryAccessError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return ApiResponse(data=result)


@router.post("/codebase/context", response_model=ApiResponse[RepositoryContextRead])
def read_repository_context(
    payload: RepositoryContextRequest,
    project_id: str = Path(..., min_length=1),
) -> ApiResponse[RepositoryContextRead]:
    """Summarize a GitHub repository for the onboarding chat."""

    if parse_repo_url(payload.github_url) is None:
        raise HTTPException(status_code=422, detail="Invalid GitHub URL")

    try:
        context = build_repository_context(get_github_reader(payload.github_url, payload.github_token))
    except RepositoryAccessError as exc:
        logger.warning("repo_context.failed project_id=%s error=%s", project_id, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return ApiResponse(
        data=RepositoryContextRead(
            repo=context.info.full_name,
            description=context.info.description,
            language=context.info.language,
            topics=list(context.info.topics),
            default_branch=context.info.default_branch,
            file_tree=context.file_tree,
            key_files=context.key_files,
            tracking_snippets=[
                TrackingSnippetRead(
                    event_name=call.event_name,
                    file_path=call.file_path,
                    line=call.line,
                    snippet=call.snippet,
                )
                for call in context.tracking_calls
            ],
            rendered=context.render(),
        )
    )
