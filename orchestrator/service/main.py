"""
Turn Orchestrator Service - Main FastAPI Application.

Provides API endpoints for:
- Sending user messages and reading or resetting the conversation
- Managing the tool catalog (add, edit, delete, enable/disable)
- Previewing the tool declarations sent to the model
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from adapters.llm.base import ConfigurationError
from code_exec.service.defaults import new_tool_template
from code_exec.service.models import Tool, ToolEnabledRequest, ToolRequest
from code_exec.service.registry import ToolRegistryError, UnknownToolError

from .config import OrchestratorConfig, config
from .models import (
    ConversationResponse,
    DeclarationListResponse,
    ErrorResponse,
    HealthCheckResponse,
    MessageRequest,
    MessageResponse,
    ToolListResponse,
)
from .turn_orchestrator import ConversationBusyError, TurnOrchestrator

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level),
    format=config.log_format,
)
logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, message=message).model_dump(),
    )


def create_app(
    orchestrator: Optional[TurnOrchestrator] = None,
    settings: Optional[OrchestratorConfig] = None,
) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        orchestrator: Orchestrator to serve (built from settings at startup
            when omitted)
        settings: Configuration (defaults to the global config)

    Returns:
        FastAPI application
    """
    settings = settings or config
    started_at = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Lifespan context manager for FastAPI application.

        Handles startup and shutdown tasks.
        """
        logger.info("Starting turn orchestrator service...")
        if getattr(app.state, "orchestrator", None) is None:
            app.state.orchestrator = TurnOrchestrator.from_config(settings)
        logger.info(f"Configuration: LLM Provider={settings.llm_provider}")

        yield

        logger.info("Shutting down turn orchestrator service...")
        await app.state.orchestrator.gateway.aclose()
        logger.info("Turn orchestrator service shutdown complete")

    app = FastAPI(
        title="Turn Orchestrator Service",
        description="Tool-calling chat agent - model/tool orchestration and tool catalog",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    def get_orchestrator() -> TurnOrchestrator:
        return app.state.orchestrator

    # ========================================================================
    # Exception Handlers
    # ========================================================================

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        """Handle Pydantic validation errors."""
        errors = [f"{err['loc']}: {err['msg']}" for err in exc.errors()]
        logger.warning(f"Validation error: {errors}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse(
                error="ValidationError",
                message="Invalid request data",
                details={"errors": errors},
            ).model_dump(),
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_exception_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        logger.warning(f"Configuration error: {exc}")
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "ConfigurationError", str(exc))

    @app.exception_handler(UnknownToolError)
    async def unknown_tool_exception_handler(
        request: Request, exc: UnknownToolError
    ) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, "UnknownToolError", str(exc))

    @app.exception_handler(ToolRegistryError)
    async def registry_exception_handler(
        request: Request, exc: ToolRegistryError
    ) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, "ToolRegistryError", str(exc))

    @app.exception_handler(ConversationBusyError)
    async def busy_exception_handler(
        request: Request, exc: ConversationBusyError
    ) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, "ConversationBusyError", str(exc))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Handle HTTP exceptions."""
        logger.warning(f"HTTP exception: {exc.status_code} - {exc.detail}")
        return _error(exc.status_code, "HTTPException", exc.detail or "An error occurred")

    # ========================================================================
    # Service Endpoints
    # ========================================================================

    @app.get("/", response_model=Dict[str, str])
    async def root() -> Dict[str, str]:
        """Root endpoint with service information."""
        return {
            "service": "Turn Orchestrator",
            "version": SERVICE_VERSION,
            "status": "running",
            "docs": "/docs",
        }

    @app.get("/health", response_model=HealthCheckResponse)
    async def health_check() -> HealthCheckResponse:
        """Health check endpoint with credential status."""
        orchestrator = get_orchestrator()
        try:
            orchestrator.gateway.check_credentials()
            credentials = True
        except ConfigurationError:
            credentials = False

        return HealthCheckResponse(
            status="healthy" if credentials else "degraded",
            version=SERVICE_VERSION,
            provider=orchestrator.gateway.provider,
            credentials=credentials,
            uptime_seconds=time.time() - started_at,
        )

    # ========================================================================
    # Conversation Endpoints
    # ========================================================================

    @app.get("/conversation", response_model=ConversationResponse)
    async def get_conversation() -> ConversationResponse:
        orchestrator = get_orchestrator()
        return ConversationResponse(
            turns=list(orchestrator.log.snapshot()), state=orchestrator.state
        )

    @app.delete("/conversation", response_model=ConversationResponse)
    async def reset_conversation() -> ConversationResponse:
        orchestrator = get_orchestrator()
        orchestrator.reset()
        return ConversationResponse(turns=[], state=orchestrator.state)

    @app.post("/conversation/messages", response_model=MessageResponse)
    async def send_message(request: MessageRequest) -> MessageResponse:
        """
        Resolve a user message into a final model answer.

        Tool calls requested by the model are executed and fed back until
        the model answers or the round limit is reached.

        Args:
            request: Message request

        Returns:
            Turn outcome and the full conversation

        Raises:
            HTTPException: 400 if the provider credential is missing
        """
        orchestrator = get_orchestrator()
        logger.info(f"Received message ({len(request.text)} chars)")

        try:
            outcome = await orchestrator.handle_user_message(request.text)
        except ConfigurationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        return MessageResponse(outcome=outcome, turns=list(orchestrator.log.snapshot()))

    # ========================================================================
    # Tool Catalog Endpoints
    # ========================================================================

    @app.get("/tools", response_model=ToolListResponse)
    async def list_tools() -> ToolListResponse:
        tools = get_orchestrator().registry.list_tools()
        return ToolListResponse(tools=tools, total=len(tools))

    @app.get("/tools/declarations", response_model=DeclarationListResponse)
    async def list_declarations() -> DeclarationListResponse:
        """Declarations for enabled tools whose schema parses."""
        return DeclarationListResponse(declarations=get_orchestrator().registry.declarations())

    @app.post("/tools", response_model=Tool, status_code=status.HTTP_201_CREATED)
    async def create_tool(request: ToolRequest, draft: bool = False) -> Tool:
        """
        Register a tool.

        Args:
            request: Tool definition
            draft: Store without validation

        Returns:
            The stored tool
        """
        return get_orchestrator().registry.register(request.to_tool(), validate=not draft)

    @app.post("/tools/template", response_model=Tool, status_code=status.HTTP_201_CREATED)
    async def create_tool_from_template() -> Tool:
        """Register a placeholder tool to be edited afterwards."""
        return get_orchestrator().registry.register(new_tool_template(), validate=False)

    @app.get("/tools/{tool_id}", response_model=Tool)
    async def get_tool(tool_id: str) -> Tool:
        return get_orchestrator().registry.get(tool_id)

    @app.put("/tools/{tool_id}", response_model=Tool)
    async def update_tool(tool_id: str, request: ToolRequest, draft: bool = False) -> Tool:
        return get_orchestrator().registry.update(request.to_tool(tool_id), validate=not draft)

    @app.delete("/tools/{tool_id}", response_model=Tool)
    async def delete_tool(tool_id: str) -> Tool:
        return get_orchestrator().registry.delete(tool_id)

    @app.put("/tools/{tool_id}/enabled", response_model=Tool)
    async def set_tool_enabled(tool_id: str, request: ToolEnabledRequest) -> Tool:
        return get_orchestrator().registry.set_enabled(tool_id, request.enabled)

    return app


app = create_app()


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for running the service."""
    import uvicorn

    logger.info("Starting turn orchestrator service with uvicorn...")

    uvicorn.run(
        "orchestrator.service.main:app",
        host=config.host,
        port=config.port,
        reload=config.reload,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
