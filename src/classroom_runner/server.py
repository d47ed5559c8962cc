from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from .execution.errors import CapacityError, ValidationError
from .policy import ServerSettings
from .runner import CodeRunner

logger = logging.getLogger(__name__)


class RunRequest(BaseModel):
    code: str = ""
    language: str = Field(default="", validation_alias=AliasChoices("language", "languageId"))


class RunResponse(BaseModel):
    output: str


def create_app(runner: CodeRunner, settings: ServerSettings | None = None) -> FastAPI:
    """Build the HTTP app exposing code execution and a health check.

    Example:
        ```python
        app = create_app(CodeRunner(DockerLauncher()))
        ```
    """
    settings = settings or ServerSettings()
    app = FastAPI(title="classroom-code-runner")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError):
        logger.info("Rejected malformed run request: %s", exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid code or language"},
        )

    @app.post("/api/run", response_model=RunResponse)
    async def run(body: RunRequest):
        """Execute submitted code and return its console output."""
        try:
            outcome = await runner.run(body.code, body.language)
        except ValidationError as exc:
            logger.info("Rejected run request: %s", exc)
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "Invalid code or language"},
            )
        except CapacityError as exc:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"error": str(exc)},
            )
        return RunResponse(output=outcome.output)

    @app.get("/health")
    async def health():
        return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app
