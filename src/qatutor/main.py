import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import SessionNotFoundError
from .schemas import AnswerResponse, QARequest, StartResponse
from .services.session_store import close_session_store, get_session_store_async
from .settings import get_settings
from .tutor import QATutorService, get_tutor_service, set_tutor_service


def setup_server_logging(level: str = "INFO") -> logging.Logger:
    """Configure the package logger and return the server logger."""
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("qatutor")
    if not package_logger.handlers:
        package_logger.setLevel(level)
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

        ch = logging.StreamHandler()
        ch.setFormatter(fmt)
        package_logger.addHandler(ch)

        fh = RotatingFileHandler(logs_dir / "server.log", maxBytes=5_000_000, backupCount=3)
        fh.setFormatter(fmt)
        package_logger.addHandler(fh)

    return logging.getLogger("qatutor.server")


def _cors_origins_list(origins: str) -> list[str]:
    """Parse CORS_ORIGINS into a list."""
    if not origins or origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in origins.split(",") if o.strip()]


settings = get_settings()
LOGGER = setup_server_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the session store (Redis when configured) and build the tutor service."""
    store = await get_session_store_async()
    LOGGER.info("Session store ready: %s", type(store).__name__)
    set_tutor_service(QATutorService(store))

    yield

    LOGGER.info("Shutting down...")
    set_tutor_service(None)
    await close_session_store()


app = FastAPI(
    title="QA Tutor",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    LOGGER.info("Rejected malformed request to %s", request.url.path)
    return _error(400, "Invalid request format", details=jsonable_encoder(exc.errors()))


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check for load balancers and monitoring.

    Returns:
        dict[str, Any]: JSON response with status field.
    """
    return {"status": "ok"}


@app.post("/api/qa")
async def qa(
    payload: QARequest,
    service: QATutorService = Depends(get_tutor_service),
) -> JSONResponse:
    """Question/answer endpoint: start a session or submit an answer.

    Expected Input (JSON):
        {"action": "start", "context": str}
        {"action": "answer", "sessionId": str, "answer": str}

    Response Format:
        start:  {"success", "sessionId", "question", "attemptCount", "maxAttempts"}
        answer: {"success", "status", "feedback", "nextQuestion"?, "attemptCount", "maxAttempts"}
        errors: {"error": str}
    """
    try:
        if payload.action == "start":
            context = (payload.context or "").strip()
            if not context:
                return _error(400, "Context is required to start a session")
            start_result = await service.start(context)
            body = StartResponse.from_result(start_result)
        else:
            answer = (payload.answer or "").strip()
            if not payload.session_id or not answer:
                return _error(400, "Session ID and answer are required")
            answer_result = await service.answer(payload.session_id, answer)
            body = AnswerResponse.from_result(answer_result)
    except SessionNotFoundError as e:
        LOGGER.info("Unknown or expired session: %s", e.session_id)
        return _error(404, "Session not found or expired")
    except Exception as e:
        LOGGER.exception("QA API error: %s", e)
        return _error(500, "Internal server error")

    return JSONResponse(content=body.model_dump(by_alias=True, exclude_none=True))


def run() -> None:
    """Serve the app with uvicorn using host/port from settings."""
    uvicorn.run("qatutor.main:app", host=settings.host, port=settings.port)
