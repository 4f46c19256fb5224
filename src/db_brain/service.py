from __future__ import annotations

import contextlib
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .brain import Brain
from .code_markers import extract_code_metadata, limit_words, post_process_reply
from .errors import BrainError, Closed

from log_helpers import log, log_error, log_verbose


class PredictRequest(BaseModel):
    text: str
    max_words: Optional[int] = Field(default=None, ge=0)
    precision: Optional[float] = None
    use_cache: bool = False
    context: Optional[str] = None


class PredictResponse(BaseModel):
    reply: str


class LearnRequest(BaseModel):
    text: str
    context: Optional[str] = None


class LearnResponse(BaseModel):
    status: str = "ok"
    learned_tokens: int = 0
    remembered: bool = False


class HealthResponse(BaseModel):
    status: str
    order: int
    tokens: int
    nodes: int
    edges: int


def _status_for(exc: BrainError) -> int:
    if isinstance(exc, Closed):
        return 503
    return 500


def create_app(brain: Brain, *, close_on_shutdown: bool = False) -> FastAPI:
    """Expose predict/learn over HTTP+JSON for editor clients."""

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        if close_on_shutdown and not brain.closed:
            log("[serve] Closing brain on shutdown.")
            brain.close()

    app = FastAPI(
        title="db-brain",
        description="Self-learning n-gram completion service backed by SQLite.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.brain = brain

    @app.exception_handler(BrainError)
    async def brain_error_handler(request: Request, exc: BrainError) -> JSONResponse:
        log_error(f"[serve] {request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
        return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})

    @app.post("/predict", response_model=PredictResponse)
    def predict(req: PredictRequest) -> PredictResponse:
        log_verbose(
            2,
            f"[serve] predict text_length={len(req.text)} max_words={req.max_words} "
            f"precision={req.precision} use_cache={req.use_cache}",
        )
        filetype, cleaned = extract_code_metadata(req.text)
        reply = brain.predict(cleaned, precision=req.precision, use_cache=req.use_cache)
        reply = post_process_reply(reply, filetype)
        reply = limit_words(reply, req.max_words)
        log_verbose(2, f"[serve] predict ok response_length={len(reply)}")
        return PredictResponse(reply=reply)

    @app.post("/learn", response_model=LearnResponse)
    def learn(req: LearnRequest) -> LearnResponse:
        log_verbose(2, f"[serve] learn text_length={len(req.text)}")
        _, cleaned = extract_code_metadata(req.text)
        learned = brain.learn_and_remember(cleaned, req.context)
        remembered = bool(req.context and req.context.strip() and cleaned)
        if remembered:
            log_verbose(2, f"[serve] remembered completion for context_length={len(req.context or '')}")
        return LearnResponse(learned_tokens=learned, remembered=remembered)

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        stats = brain.stats()
        return HealthResponse(
            status="ok",
            order=stats.order,
            tokens=stats.tokens,
            nodes=stats.nodes,
            edges=stats.edges,
        )

    return app


__all__ = ["create_app", "PredictRequest", "PredictResponse", "LearnRequest", "LearnResponse"]
