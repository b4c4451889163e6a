from dotenv import load_dotenv
load_dotenv()

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.dependencies import close_driver
from api.knowledge_router import router as knowledge_router
from api.research_router import router as research_router
from api.synthesis_router import router as synthesis_router
from core.config import settings
from core.errors import (
    DomainNotFoundError,
    InvalidTransitionError,
    KnowledgeCoreError,
    NodeNotFoundError,
    NodeValidationError,
    PromptNotFoundError,
    PromptValidationError,
    RunNotFoundError,
)
from core.logger import get_logger

logger = get_logger(__name__)

ERROR_STATUS_CODES = (
    (DomainNotFoundError, 404),
    (PromptNotFoundError, 404),
    (RunNotFoundError, 404),
    (NodeNotFoundError, 404),
    (InvalidTransitionError, 409),
    (PromptValidationError, 422),
    (NodeValidationError, 422),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # The shared Neo4j driver is created lazily on first use and closed on shutdown.
    yield
    close_driver()


app = FastAPI(
    title="Knowledge Synthesis API",
    description="Turns research text into a typed knowledge graph and serves graph-augmented retrieval.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def status_code_for(error: KnowledgeCoreError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


@app.exception_handler(KnowledgeCoreError)
async def knowledge_core_error_handler(request: Request, exc: KnowledgeCoreError):
    status_code = status_code_for(exc)
    body = {"error": exc.message}
    if getattr(exc, "run_id", None):
        body["run_id"] = exc.run_id
    if status_code >= 500:
        logger.error("Request failed", exc_info=exc, extra={"path": request.url.path})
    else:
        logger.warning(exc.message, extra={"path": request.url.path, "status_code": status_code})
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc, extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --- Include all the Routers ---
app.include_router(synthesis_router)
app.include_router(knowledge_router)
app.include_router(research_router)


@app.get("/")
def read_root():
    return {"message": "Knowledge Synthesis API is running."}
