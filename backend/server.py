"""
FastAPI server for Prompt Forge - generate / validate / refine system instructions
"""
import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from contextlib import asynccontextmanager

# Load .env from root directory (parent of backend/)
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from typing import Dict, Optional

from models import (
    EditInstructionRequest,
    GenerateRequest,
    GenerationParams,
    HistoryEntry,
    ModelCatalog,
    RegenerateRequest,
    SessionState,
    SettingsUpdate,
    TestPromptRequest,
    ValidateRequest,
)
from completion_client import CompletionClient, CompletionError, get_completion_client
from refinement_loop import RefinementSession, InvalidTransitionError, BatchValidationError
from history_storage import HistoryStore, StorageError
from security import CredentialError, mask_api_key, validate_api_key_format
from shared_settings import get_settings, update_settings
from export_utils import build_export_data, generate_markdown, generate_api_code
from logging_config import setup_logging, generate_request_id, set_request_id

setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_format=os.getenv("LOG_JSON", "false").lower() == "true"
)
logger = logging.getLogger(__name__)

completion_client: CompletionClient = get_completion_client()
history_store = HistoryStore(get_settings()["history_dir"])

# One refinement session per session_id, in memory
sessions: Dict[str, RefinementSession] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the shared HTTP client on shutdown"""
    logger.info(f"Prompt Forge started (history dir: {history_store.storage_path})")
    yield
    await completion_client.close()
    logger.info("Prompt Forge stopped")


app = FastAPI(title="Prompt Forge - System Instruction Builder", lifespan=lifespan)

# CORS middleware - load origins from env
cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Tag every request with a correlation id for the logs"""
    request_id = request.headers.get("X-Request-ID") or generate_request_id()
    set_request_id(request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def get_session(session_id: str) -> RefinementSession:
    """Get or create the session for an id"""
    session = sessions.get(session_id)
    if session is None:
        session = RefinementSession(completion_client, history_store=history_store)
        sessions[session_id] = session
        logger.info(f"Created session {session_id}")
    return session


def resolve_credential(api_key: Optional[str]) -> str:
    """Request key, then configured key, then the stored key"""
    if api_key and api_key.strip():
        return api_key
    configured = get_settings()["api_key"]
    if configured:
        return configured
    try:
        return history_store.get_credential() or ""
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))


def http_error(error: Exception) -> HTTPException:
    """Map core exceptions to HTTP errors with a single user-facing message"""
    if isinstance(error, CredentialError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, BatchValidationError):
        return HTTPException(status_code=502, detail=error.message)
    if isinstance(error, CompletionError):
        return HTTPException(status_code=502, detail=error.message)
    return HTTPException(status_code=400, detail=str(error))


@app.get("/")
async def root():
    return {"message": "Prompt Forge API"}


# ============================================================================
# MODEL CATALOG
# ============================================================================

@app.get("/api/models", response_model=ModelCatalog)
async def list_models():
    """Available models, or the built-in fallback list with the reason"""
    api_key = get_settings()["api_key"] or None
    return await completion_client.fetch_model_catalog(api_key)


# ============================================================================
# GENERATE / VALIDATE / REFINE
# ============================================================================

@app.post("/api/generate", response_model=SessionState)
async def generate(request: GenerateRequest):
    """Generate a new system instruction"""
    session = get_session(request.session_id)
    if request.generator_model:
        session.generator_model = request.generator_model

    params = GenerationParams(desired_output=request.desired_output, context=request.context)
    try:
        await session.generate(params, resolve_credential(request.api_key))
    except (CompletionError, CredentialError) as e:
        raise http_error(e)
    return session.snapshot()


@app.post("/api/validate", response_model=SessionState)
async def validate(request: ValidateRequest):
    """Validate the current instruction with test cases"""
    session = get_session(request.session_id)
    if request.validator_model:
        session.validator_model = request.validator_model

    try:
        await session.validate(request.test_cases, resolve_credential(request.api_key))
    except (InvalidTransitionError, BatchValidationError, CredentialError, ValueError) as e:
        raise http_error(e)
    return session.snapshot()


@app.post("/api/regenerate", response_model=SessionState)
async def regenerate(request: RegenerateRequest):
    """Regenerate from the last validation's critique (or custom feedback)"""
    session = get_session(request.session_id)
    try:
        await session.regenerate_with_feedback(resolve_credential(request.api_key), request.feedback)
    except (InvalidTransitionError, CompletionError, CredentialError) as e:
        raise http_error(e)
    return session.snapshot()


@app.put("/api/instruction", response_model=SessionState)
async def edit_instruction(request: EditInstructionRequest):
    """Manually edit the working instruction; clears stale results"""
    session = get_session(request.session_id)
    await session.edit_instruction(request.instruction)
    return session.snapshot()


@app.post("/api/test-prompt")
async def test_prompt(request: TestPromptRequest):
    """Run the working instruction against one input"""
    session = get_session(request.session_id)
    try:
        response = await session.test_prompt(
            request.user_input, resolve_credential(request.api_key), request.model
        )
    except (InvalidTransitionError, CompletionError, CredentialError) as e:
        raise http_error(e)

    model = request.model or session.generator_model
    return {
        "response": response,
        "model": model,
        "api_code": generate_api_code(session.instruction, model)
    }


@app.get("/api/session", response_model=SessionState)
async def get_session_state(session_id: str = "default"):
    """Current session state"""
    return get_session(session_id).snapshot()


# ============================================================================
# HISTORY
# ============================================================================

@app.get("/api/history")
async def get_history():
    """Generation history, newest first"""
    return [entry.model_dump(mode="json") for entry in history_store.get_history()]


@app.delete("/api/history")
async def clear_history():
    """Clear generation history"""
    try:
        history_store.clear_history()
    except StorageError as e:
        logger.warning(f"Failed to clear history: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return {"message": "History cleared"}


@app.post("/api/history/{entry_id}/select", response_model=SessionState)
async def select_history_entry(entry_id: str, session_id: str = "default"):
    """Load a past instruction into the session"""
    entry: Optional[HistoryEntry] = history_store.get_entry(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="History entry not found")

    session = get_session(session_id)
    await session.select_history_entry(entry)
    return session.snapshot()


# ============================================================================
# EXPORT
# ============================================================================

@app.get("/api/export/json")
async def export_json(session_id: str = "default"):
    """Export instruction and validation results as JSON"""
    session = get_session(session_id)
    if not session.instruction and not session.outcomes:
        raise HTTPException(status_code=404, detail="Nothing to export")
    return build_export_data(session.snapshot(), session.last_params)


@app.get("/api/export/markdown", response_class=PlainTextResponse)
async def export_markdown(session_id: str = "default"):
    """Export instruction and validation results as Markdown"""
    session = get_session(session_id)
    if not session.instruction and not session.outcomes:
        raise HTTPException(status_code=404, detail="Nothing to export")

    markdown = generate_markdown(build_export_data(session.snapshot(), session.last_params))
    return PlainTextResponse(
        markdown,
        media_type="text/markdown",
        headers={"Content-Disposition": 'attachment; filename="prompt-export.md"'}
    )


# ============================================================================
# SETTINGS MANAGEMENT
# ============================================================================

@app.get("/api/settings")
async def get_settings_endpoint():
    """Model selection and a masked view of the credential"""
    settings = get_settings()
    try:
        api_key = settings["api_key"] or history_store.get_credential() or ""
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "generator_model": settings["generator_model"],
        "validator_model": settings["validator_model"],
        "api_key": mask_api_key(api_key) if api_key else "",
        "has_api_key": bool(api_key)
    }


@app.post("/api/settings")
async def save_settings(settings: SettingsUpdate):
    """Save model selection and (encrypted) credential"""
    if settings.api_key:
        is_valid, message = validate_api_key_format(settings.api_key)
        if not is_valid:
            raise HTTPException(status_code=400, detail=message)
        try:
            history_store.save_credential(settings.api_key.strip())
        except StorageError as e:
            raise HTTPException(status_code=500, detail=str(e))

    update_settings(
        generator_model=settings.generator_model,
        validator_model=settings.validator_model,
        api_key=settings.api_key.strip()
    )

    current = get_settings()
    for session in sessions.values():
        session.generator_model = current["generator_model"]
        session.validator_model = current["validator_model"]

    return {
        "message": "Settings saved successfully",
        "settings": {
            "generator_model": current["generator_model"],
            "validator_model": current["validator_model"],
            "api_key": mask_api_key(current["api_key"]) if current["api_key"] else ""
        }
    }


if __name__ == "__main__":
    import uvicorn
    host = os.getenv("BACKEND_HOST", "0.0.0.0")
    port = int(os.getenv("BACKEND_PORT", "8000"))
    uvicorn.run(app, host=host, port=port)
