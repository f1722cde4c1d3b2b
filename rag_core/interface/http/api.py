"""HTTP API for plain and agentic retrieval.

Why: Consumable API without business logic; pure delegation to the
RetrievalService built by the composition root.
"""

from __future__ import annotations

import dataclasses
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from rag_core.application.use_cases.retrieval_service import (
    RetrievalService,
    retrieve_with_timeout,
)
from rag_core.domain.errors import ConfigurationError, RetrievalError, ValidationError
from rag_core.domain.models import ConversationContext, ConversationStage, Document


class DocumentModel(BaseModel):
    doc_id: str
    text: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class RetrieveRequestModel(BaseModel):
    """Request model for /v1/retrieve."""

    query: str
    top_k: int | None = None
    stage: str | None = None
    timeout_ms: int | None = None  # overall deadline for the whole call


class RetrieveResponseModel(BaseModel):
    status: str
    partial: bool
    documents: list[DocumentModel]


class AgenticRequestModel(BaseModel):
    """Request model for /v1/retrieve/agentic."""

    query: str
    stage: str = ConversationStage.DISCOVERY.value
    recent_turns: list[str] = Field(default_factory=list)
    slots: dict[str, str] = Field(default_factory=dict)
    max_iterations: int | None = None
    sufficiency_threshold: float | None = None
    query_rewriting_enabled: bool | None = None
    timeout_ms: int | None = None


class AssessmentModel(BaseModel):
    sufficient: bool
    coverage: float
    missing_information: str | None = None
    source: str


class AgenticResponseModel(BaseModel):
    status: str
    documents: list[DocumentModel]
    iterations: int
    query_rewritten: bool
    terminal_reason: str
    stop_cause: str
    final_query: str
    queries: list[str]
    partial: bool
    assessment: AssessmentModel | None = None


def _doc_model(doc: Document) -> DocumentModel:
    return DocumentModel(
        doc_id=doc.doc_id, text=doc.text, score=doc.score, metadata=dict(doc.metadata)
    )


def _parse_stage(stage: str) -> ConversationStage:
    try:
        return ConversationStage(stage)
    except ValueError as ex:
        allowed = ", ".join(s.value for s in ConversationStage)
        raise ValidationError(f"unknown stage '{stage}' (expected one of: {allowed})") from ex


def create_app(service: RetrievalService | None = None) -> FastAPI:
    """Build the FastAPI app; without ``service`` it is composed from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        executor = None
        if getattr(app.state, "service", None) is None:
            from rag_core.config.composition import build_executor, build_retrieval_service
            from rag_core.config.logging_setup import configure_logging
            from rag_core.config.settings import AppSettings

            settings = AppSettings()
            configure_logging(settings.log_level, settings.log_format)
            executor = build_executor(settings)
            app.state.service = build_retrieval_service(settings, executor=executor)
        try:
            yield
        finally:
            # Only the pool built here is owned by the app
            if executor is not None:
                executor.shutdown(wait=False)

    app = FastAPI(title="Agentic RAG Core API", version="1.0.0", lifespan=lifespan)
    app.state.service = service

    @app.exception_handler(RetrievalError)
    async def retrieval_error_handler(request: Request, ex: RetrievalError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"status": "error", "error": str(ex)})

    @app.exception_handler(ValidationError)
    @app.exception_handler(ConfigurationError)
    async def invalid_request_handler(request: Request, ex: Exception) -> JSONResponse:
        return JSONResponse(status_code=422, content={"status": "error", "error": str(ex)})

    def _service(request: Request) -> RetrievalService:
        svc = request.app.state.service
        if svc is None:
            raise RetrievalError("service not initialized")
        return svc

    @app.post("/v1/retrieve", response_model=RetrieveResponseModel)
    async def retrieve(req: RetrieveRequestModel, request: Request) -> RetrieveResponseModel:
        """Hybrid retrieval + rerank (+ stage budget when ``stage`` is set).

        Example:
            POST /v1/retrieve
            {"query": "gold loan interest rate", "top_k": 5, "stage": "presentation"}
        """
        svc = _service(request)
        options = svc.agentic_config.retrieval
        if req.top_k is not None:
            options = dataclasses.replace(options, top_k=req.top_k)
        stage = _parse_stage(req.stage) if req.stage is not None else None
        response = await retrieve_with_timeout(
            svc.retrieve(req.query, options, stage=stage), req.timeout_ms
        )
        return RetrieveResponseModel(
            status="success",
            partial=response.partial,
            documents=[_doc_model(d) for d in response.documents],
        )

    @app.post("/v1/retrieve/agentic", response_model=AgenticResponseModel)
    async def retrieve_agentic(
        req: AgenticRequestModel, request: Request
    ) -> AgenticResponseModel:
        """Bounded retrieve-assess-rewrite loop.

        Example:
            POST /v1/retrieve/agentic
            {"query": "is my gold safe", "stage": "objection_handling", "max_iterations": 2}
        """
        svc = _service(request)
        overrides = {
            k: v
            for k, v in (
                ("max_iterations", req.max_iterations),
                ("sufficiency_threshold", req.sufficiency_threshold),
                ("query_rewriting_enabled", req.query_rewriting_enabled),
            )
            if v is not None
        }
        config = dataclasses.replace(svc.agentic_config, **overrides)
        context = ConversationContext(
            stage=_parse_stage(req.stage),
            recent_turns=tuple(req.recent_turns),
            slots=dict(req.slots),
        )
        result = await retrieve_with_timeout(
            svc.retrieve_agentic(req.query, context, config), req.timeout_ms
        )
        assessment = None
        if result.assessment is not None:
            assessment = AssessmentModel(**dataclasses.asdict(result.assessment))
        return AgenticResponseModel(
            status="success",
            documents=[_doc_model(d) for d in result.documents],
            iterations=result.iterations,
            query_rewritten=result.query_rewritten,
            terminal_reason=result.terminal_reason.value,
            stop_cause=result.stop_cause.value,
            final_query=result.final_query,
            queries=list(result.queries),
            partial=result.partial,
            assessment=assessment,
        )

    @app.get("/v1/health")
    async def health(request: Request) -> dict[str, Any]:
        svc = request.app.state.service
        stats = svc.retriever.embeddings.stats() if svc is not None else None
        return {
            "status": "healthy" if svc is not None else "starting",
            "service": "rag-core",
            "embedding_cache": dataclasses.asdict(stats) if stats is not None else None,
        }

    return app


# uvicorn rag_core.interface.http.api:app
app = create_app()
