import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from .config import configure_logging, settings
from .answer import (
    AnswerOrchestrator, ChatAnswer, ChatBadInput, ChatNotReady, ChatUpstreamError,
    KbFound, get_orchestrator,
)

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    message: Optional[str] = None


def orchestrator_dependency() -> AnswerOrchestrator:
    return get_orchestrator(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level)
    provider = app.dependency_overrides.get(orchestrator_dependency, orchestrator_dependency)
    orchestrator = provider()
    if orchestrator.cache.started:
        logger.info("KB embedding build already started (ready=%s)", orchestrator.is_ready())
        yield
        return
    if settings.wait_for_embeddings:
        await orchestrator.initialize()
        yield
        return
    task = asyncio.create_task(orchestrator.initialize())
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        logger.info("KB embedding build cancelled at shutdown")
    except Exception:
        logger.exception("KB embedding build task failed")


app = FastAPI(title="Visa Chat API", version="1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _chat_response(result) -> JSONResponse:
    if isinstance(result, ChatNotReady):
        return _error(503, "Service initializing embeddings. Try again shortly.")
    if isinstance(result, ChatBadInput):
        return _error(400, "Missing 'message' in request body.")
    if isinstance(result, ChatUpstreamError):
        return _error(502, "Upstream API error", details=result.detail)
    return JSONResponse(content={"answer": result.text})


@app.get("/", response_class=PlainTextResponse)
def root():
    return "Visa chatbot backend is running. Use POST /api/chat"


@app.get("/health")
def health(orchestrator: AnswerOrchestrator = Depends(orchestrator_dependency)):
    return {"status":"ok", "ready": orchestrator.is_ready()}


@app.get("/api/kb/search")
def kb_search(q: Optional[str] = None,
              orchestrator: AnswerOrchestrator = Depends(orchestrator_dependency)):
    if not q or not q.strip():
        return _error(400, "Missing 'q' query parameter.")
    result = orchestrator.resolve_kb(q)
    if not isinstance(result, KbFound):
        return _error(404, "No matching knowledge base entry.")
    return {"id": result.entry.id, "text": result.entry.text}


@app.post("/api/chat")
async def chat(payload: Optional[ChatRequest] = None,
               orchestrator: AnswerOrchestrator = Depends(orchestrator_dependency)):
    message = payload.message if payload else None
    return _chat_response(await orchestrator.resolve_chat(message))


@app.post("/api/ask")
async def ask(payload: Optional[ChatRequest] = None,
              orchestrator: AnswerOrchestrator = Depends(orchestrator_dependency)):
    message = payload.message if payload else None
    result = await orchestrator.answer(message)
    if isinstance(result, KbFound):
        return {"source": "kb", "id": result.entry.id, "answer": result.entry.text}
    if isinstance(result, ChatAnswer):
        return {"source": "llm", "answer": result.text}
    return _chat_response(result)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
