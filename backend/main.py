import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

import config
from auth import require_identity
from conversation import ConversationManager
from errors import AuthFailed, HelpemError, QuotaExceeded
from models import (
    ChatRequest,
    ChatResponse,
    ClassifyRequest,
    CommitmentSnapshot,
    ConfirmRequest,
    ConversationState,
    Decision,
    Routine,
    RoutineCompletionRequest,
    SpeechRequest,
    Task,
    TaskCompletionRequest,
)
from oracle import AnthropicOracle
from usage import UsageTracker
from voice import VoiceService

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

usage_tracker = UsageTracker()
conversation_manager = ConversationManager(AnthropicOracle(), usage_tracker)
voice_service = VoiceService(usage_tracker)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Startup
    if not config.api_key_configured(config.ANTHROPIC_API_KEY):
        logger.warning("ANTHROPIC_API_KEY not configured, chat requests will fail")
    yield
    # Shutdown (nothing to do)

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_manager() -> ConversationManager:
    return conversation_manager


def get_usage() -> UsageTracker:
    return usage_tracker


def get_voice() -> VoiceService:
    return voice_service


@app.exception_handler(HelpemError)
async def helpem_error_handler(_request: Request, exc: HelpemError) -> JSONResponse:
    content = {"error": exc.message}
    headers = None
    if isinstance(exc, QuotaExceeded):
        content["stats"] = exc.stats
    if isinstance(exc, AuthFailed):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.post("/chat")
async def chat(
    chat_request: ChatRequest,
    identity: str = Depends(require_identity),
    manager: ConversationManager = Depends(get_manager),
) -> ChatResponse:
    """Classify a user message. Add and priority changes come back pending."""
    session = manager.session(identity)
    decision = await manager.submit(session, chat_request.message, chat_request.current_datetime)
    return ChatResponse(decision=decision, state=session.state, commitments=session.store.snapshot())


@app.post("/chat/confirm")
def confirm(
    overrides: ConfirmRequest | None = None,
    identity: str = Depends(require_identity),
    manager: ConversationManager = Depends(get_manager),
) -> ChatResponse:
    session = manager.session(identity)
    decision = manager.confirm(session, overrides)
    return ChatResponse(decision=decision, state=session.state, commitments=session.store.snapshot())


@app.post("/chat/cancel")
def cancel(
    identity: str = Depends(require_identity),
    manager: ConversationManager = Depends(get_manager),
) -> ChatResponse:
    session = manager.session(identity)
    decision = manager.cancel(session)
    return ChatResponse(decision=decision, state=session.state, commitments=session.store.snapshot())


@app.get("/conversation")
def get_conversation(
    identity: str = Depends(require_identity),
    manager: ConversationManager = Depends(get_manager),
) -> ConversationState:
    """Get the session's conversation history and any pending action."""
    return manager.session(identity).to_state()


@app.post("/classify")
async def classify(
    classify_request: ClassifyRequest,
    _identity: str = Depends(require_identity),
    manager: ConversationManager = Depends(get_manager),
) -> Decision:
    """Stateless classification against a client-supplied snapshot."""
    return await manager.decide(
        classify_request.utterance,
        classify_request.conversation_history,
        classify_request.commitment_snapshot,
        manager.now(classify_request.current_datetime),
    )


@app.get("/commitments")
def get_commitments(
    identity: str = Depends(require_identity),
    manager: ConversationManager = Depends(get_manager),
) -> CommitmentSnapshot:
    return manager.session(identity).store.snapshot()


@app.post("/tasks/{task_id}/complete")
def complete_task(
    task_id: str,
    completion: TaskCompletionRequest | None = None,
    identity: str = Depends(require_identity),
    manager: ConversationManager = Depends(get_manager),
) -> Task:
    completion = completion or TaskCompletionRequest()
    try:
        return manager.session(identity).store.set_completed(task_id, manager.now(completion.current_datetime))
    except KeyError:
        raise HTTPException(status_code=404, detail="Task not found")


@app.post("/routines/{routine_id}/completions")
def log_routine(
    routine_id: str,
    completion: RoutineCompletionRequest | None = None,
    identity: str = Depends(require_identity),
    manager: ConversationManager = Depends(get_manager),
) -> Routine:
    completion = completion or RoutineCompletionRequest()
    date = completion.date or manager.now(completion.current_datetime)
    try:
        return manager.session(identity).store.append_completion(routine_id, date)
    except KeyError:
        raise HTTPException(status_code=404, detail="Routine not found")


@app.post("/transcribe")
async def transcribe(
    request: Request,
    _identity: str = Depends(require_identity),
    voice: VoiceService = Depends(get_voice),
) -> dict:
    """Raw audio body in, transcription out."""
    audio = await request.body()
    if not audio:
        raise HTTPException(status_code=400, detail="No audio data provided")
    text = await voice.transcribe(audio, request.headers.get("content-type", "audio/m4a"))
    return {"success": True, "text": text}


@app.post("/tts")
async def tts(
    speech_request: SpeechRequest,
    _identity: str = Depends(require_identity),
    voice: VoiceService = Depends(get_voice),
) -> Response:
    audio = await voice.speak(speech_request.text, speech_request.voice)
    return Response(content=audio, media_type="audio/mpeg")


@app.get("/usage")
def get_usage_stats(usage: UsageTracker = Depends(get_usage)) -> dict:
    stats = usage.stats()
    return {
        "success": True,
        **stats,
        "message": f"${stats['total_cost_usd']} of ${stats['limit_usd']} used ({stats['percent_used']}%)",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
