"""
API Routes
"""
import json
import logging
from fastapi import APIRouter, HTTPException, Depends
from fastapi.responses import StreamingResponse
from typing import AsyncIterator, List

from backend.core.token_channel import StreamEvent
from backend.dependencies import (
    get_chat_service,
    get_chat_stream_service,
    get_quiz_service,
    get_source_service,
)
from backend.schemas.chat import (
    Conversation,
    ConversationDetail,
    SendMessageRequest,
    SendMessageResponse,
    StartConversationRequest,
    StartConversationResponse,
    UpdateConversationRequest,
)
from backend.schemas.quiz import (
    AttemptSummaryResponse,
    CreateAttemptResponse,
    GenerateQuizRequest,
    GenerateQuizResponse,
    QuizSummary,
    SubmitAnswerRequest,
    SubmitAnswerResponse,
)
from backend.schemas.source import CreateSourceRequest, Source
from backend.services.chat_service import ChatService
from backend.services.chat_stream_service import ChatStreamService
from backend.services.errors import ServiceError
from backend.services.quiz_service import QuizService
from backend.services.source_service import SourceService

router = APIRouter()
logger = logging.getLogger(__name__)


# ====== Helper Functions ======

def _http_error(error: ServiceError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=str(error))


def format_sse(event: StreamEvent) -> str:
    """Server-sent event frame: event name = StreamEvent.type, data = JSON payload"""
    return f"event: {event.type}\ndata: {json.dumps(event.data, ensure_ascii=False)}\n\n"


async def _sse_frames(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield format_sse(event)


# ====== Conversation Endpoints ======

@router.post("/conversations", response_model=StartConversationResponse)
async def create_conversation(
    request: StartConversationRequest,
    service: ChatService = Depends(get_chat_service)
):
    """
    Start a conversation over a set of sources.

    With initial_message, the first turn runs immediately and both messages
    are returned.
    """
    try:
        conversation, messages = await service.create_conversation(
            request.source_ids, title=request.title, initial_message=request.initial_message
        )
    except ServiceError as e:
        raise _http_error(e)
    return StartConversationResponse(conversation=conversation, messages=messages)


@router.get("/conversations", response_model=List[Conversation])
def list_conversations(service: ChatService = Depends(get_chat_service)):
    return service.list_conversations()


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
def get_conversation(conversation_id: str, service: ChatService = Depends(get_chat_service)):
    try:
        conversation = service.get_conversation(conversation_id)
    except ServiceError as e:
        raise _http_error(e)
    return ConversationDetail(conversation=conversation, messages=service.get_messages(conversation_id))


@router.patch("/conversations/{conversation_id}", response_model=Conversation)
def update_conversation(
    conversation_id: str,
    request: UpdateConversationRequest,
    service: ChatService = Depends(get_chat_service)
):
    try:
        return service.update_title(conversation_id, request.title)
    except ServiceError as e:
        raise _http_error(e)


@router.delete("/conversations/{conversation_id}")
def delete_conversation(conversation_id: str, service: ChatService = Depends(get_chat_service)):
    try:
        service.delete_conversation(conversation_id)
    except ServiceError as e:
        raise _http_error(e)
    return {"deleted": True, "conversation_id": conversation_id}


@router.post("/conversations/{conversation_id}/messages", response_model=SendMessageResponse)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    service: ChatService = Depends(get_chat_service)
):
    try:
        logger.info("Message for %s: %s", conversation_id, request.message[:100])
        user_message, assistant_message = await service.send_message(conversation_id, request.message)
    except ServiceError as e:
        raise _http_error(e)
    return SendMessageResponse(user_message=user_message, assistant_message=assistant_message)


@router.post("/conversations/{conversation_id}/messages/stream")
async def stream_message(
    conversation_id: str,
    request: SendMessageRequest,
    chat_service: ChatService = Depends(get_chat_service),
    stream_service: ChatStreamService = Depends(get_chat_stream_service)
):
    """
    Streaming variant of send_message (text/event-stream).

    Events: stage {stage, message, attempt}, token {token[, replace]},
    message_end {message}, error {error}.
    """
    try:
        chat_service.get_conversation(conversation_id)
    except ServiceError as e:
        raise _http_error(e)

    events = stream_service.stream_message(conversation_id, request.message)
    return StreamingResponse(
        _sse_frames(events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ====== Source Endpoints ======

@router.post("/sources", response_model=Source)
def create_source(request: CreateSourceRequest, service: SourceService = Depends(get_source_service)):
    """Chunk, embed and store a text source (runs in the threadpool)"""
    try:
        return service.create_text_source(request.name, request.text, request.file_type)
    except ServiceError as e:
        raise _http_error(e)


@router.get("/sources", response_model=List[Source])
def list_sources(service: SourceService = Depends(get_source_service)):
    return service.list_sources()


@router.get("/sources/{source_id}", response_model=Source)
def get_source(source_id: str, service: SourceService = Depends(get_source_service)):
    try:
        return service.get_source(source_id)
    except ServiceError as e:
        raise _http_error(e)


@router.get("/sources/{source_id}/conversations", response_model=List[Conversation])
def list_source_conversations(source_id: str, service: ChatService = Depends(get_chat_service)):
    try:
        return service.get_conversations_by_source(source_id)
    except ServiceError as e:
        raise _http_error(e)


# ====== Quiz Endpoints ======

@router.post("/quiz/generate", response_model=GenerateQuizResponse)
async def generate_quiz(request: GenerateQuizRequest, service: QuizService = Depends(get_quiz_service)):
    """Generate and validate a quiz from the conversation's sources"""
    try:
        quiz_id = await service.generate_quiz(request.conversation_id, request.num_questions)
    except ServiceError as e:
        logger.warning("Quiz generation rejected: %s", e)
        raise _http_error(e)
    return GenerateQuizResponse(quiz_id=quiz_id)


@router.get("/quiz/conversation/{conversation_id}", response_model=List[QuizSummary])
def list_quizzes(conversation_id: str, service: QuizService = Depends(get_quiz_service)):
    return service.get_quizzes_for_conversation(conversation_id)


@router.post("/quiz/{quiz_id}/attempts", response_model=CreateAttemptResponse)
def create_attempt(quiz_id: str, service: QuizService = Depends(get_quiz_service)):
    try:
        return service.create_attempt(quiz_id)
    except ServiceError as e:
        raise _http_error(e)


@router.post("/quiz/attempts/{attempt_id}/answer", response_model=SubmitAnswerResponse, response_model_exclude_none=True)
def submit_answer(
    attempt_id: str,
    request: SubmitAnswerRequest,
    service: QuizService = Depends(get_quiz_service)
):
    try:
        return service.submit_answer(attempt_id, request.question_id, request.selected_index)
    except ServiceError as e:
        raise _http_error(e)


@router.get("/quiz/attempts/{attempt_id}", response_model=AttemptSummaryResponse)
def get_attempt(attempt_id: str, service: QuizService = Depends(get_quiz_service)):
    try:
        return service.get_attempt_summary(attempt_id)
    except ServiceError as e:
        raise _http_error(e)
