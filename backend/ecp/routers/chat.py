"""Business-context onboarding chat routes."""

import logging
from collections.abc import Callable, Iterator

from fastapi import APIRouter, Depends, HTTPException, Path
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ecp.db.dependencies import get_session_factory
from ecp.schemas.chat import ChatErrorFrame, ChatTurnFrame, ChatTurnRequest
from ecp.services.business_chat import (
    BusinessChatError,
    ChatTurnInProgressError,
    ChatTurnStream,
    run_business_chat_turn,
)
from ecp.services.business_context import make_partial_context_sink
from ecp.services.chat_client import (
    ChatQuotaExceededError,
    ChatRateLimitedError,
    ChatStreamClient,
    ChatStreamError,
    get_default_chat_client,
)
from ecp.services.conversations import ConversationVersionConflict
from ecp.services.github import RepositoryAccessError, RepositoryReader, get_github_reader
from ecp.streaming.sse_decoder import StreamDecodeError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects/{project_id}")


def get_chat_client_factory() -> Callable[[], ChatStreamClient]:
    """Factory resolved inside the handler so configuration errors map to 503."""

    return get_default_chat_client


def get_repository_reader_factory() -> Callable[[str, str | None], RepositoryReader]:
    return get_github_reader


@router.post("/conversations/{conversation_id}/chat/stream")
def stream_chat_turn(
    payload: ChatTurnRequest,
    project_id: str = Path(..., min_length=1),
    conversation_id: str = Path(..., min_length=1),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    client_factory: Callable[[], ChatStreamClient] = Depends(get_chat_client_factory),
    reader_factory: Callable[[str, str | None], RepositoryReader] = Depends(get_repository_reader_factory),
) -> StreamingResponse:
    """Stream one assistant reply as server-sent ``ChatTurnFrame`` events."""

    repo_reader = None
    if payload.github_url and not (payload.repo_context and payload.repo_context.strip()):
        try:
            repo_reader = reader_factory(payload.github_url, payload.github_token)
        except RepositoryAccessError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    db = session_factory()
    try:
        turn = run_business_chat_turn(
            db,
            project_id,
            conversation_id,
            user_content=payload.content,
            repo_context=payload.repo_context,
            client=client_factory(),
            partial_context_sink=make_partial_context_sink(project_id, session_factory),
            repo_reader=repo_reader,
        )
    except ChatRateLimitedError as exc:
        db.close()
        raise HTTPException(status_code=429, detail=str(exc)) from exc
    except ChatQuotaExceededError as exc:
        db.close()
        raise HTTPException(status_code=402, detail=str(exc)) from exc
    except ChatStreamError as exc:
        db.close()
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ChatTurnInProgressError as exc:
        db.close()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except BusinessChatError as exc:
        db.close()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except BaseException:
        db.close()
        raise

    return StreamingResponse(
        _encode_frames(turn, db),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def _encode_frames(turn: ChatTurnStream, db: Session) -> Iterator[str]:
    try:
        for update in turn:
            frame = ChatTurnFrame(
                display_text=update.display_text,
                confidence=update.state.confidence,
                context_ready=update.state.context_ready,
                done=update.done,
            )
            yield f"data: {frame.model_dump_json()}\n\n"
        yield "data: [DONE]\n\n"
    except (StreamDecodeError, ChatStreamError, ConversationVersionConflict, SQLAlchemyError) as exc:
        logger.exception("chat.stream_failed error=%s", type(exc).__name__)
        yield f"data: {_error_frame(exc)}\n\n"
    finally:
        turn.close()
        db.close()


def _error_frame(exc: Exception) -> str:
    if isinstance(exc, ConversationVersionConflict):
        message = "The conversation changed in another session. Reload and try again."
    elif isinstance(exc, SQLAlchemyError):
        message = "Failed to save the conversation."
    else:
        message = str(exc) or "The assistant stream ended unexpectedly."
    return ChatErrorFrame(error=message).model_dump_json()
