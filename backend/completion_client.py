"""
OpenRouter chat-completion client for Prompt Forge.

Issues a single completion request per call and classifies failures into
RequestFailed / EmptyCompletion. No retries are performed; callers surface
the error to the user.
"""
import httpx
import logging
from typing import Optional, Dict, Any, List, Sequence, Union

from models import Message, ModelInfo, ModelCatalog
from shared_settings import get_settings
from logging_config import log_performance

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 2048
GENERATION_MAX_TOKENS = 3000
TEMPERATURE = 0.7

STATUS_MESSAGES = {
    401: "Invalid API key. Please check your OpenRouter API key.",
    429: "Rate limit exceeded. Please try again later.",
    500: "Server error. Please try again later.",
}

DATA_POLICY_HINT = (
    "\n\nPlease configure your data policy settings at "
    "https://openrouter.ai/settings/privacy to allow the selected model, "
    "or try a different model."
)

# Used when the model list cannot be fetched
FALLBACK_MODELS = [
    ModelInfo(id="google/gemini-2.0-flash-001", name="Gemini 2.0 Flash"),
    ModelInfo(id="google/gemini-pro-1.5", name="Gemini 1.5 Pro"),
    ModelInfo(id="openai/gpt-4o", name="GPT-4o"),
    ModelInfo(id="openai/gpt-4o-mini", name="GPT-4o Mini"),
    ModelInfo(id="anthropic/claude-3.5-sonnet", name="Claude 3.5 Sonnet"),
    ModelInfo(id="anthropic/claude-3-haiku", name="Claude 3 Haiku"),
    ModelInfo(id="meta-llama/llama-3.3-70b-instruct", name="Llama 3.3 70B Instruct"),
    ModelInfo(id="mistralai/mistral-large", name="Mistral Large"),
    ModelInfo(id="deepseek/deepseek-chat", name="DeepSeek V3"),
]


class CompletionError(Exception):
    """Base exception for completion failures"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RequestFailed(CompletionError):
    """Non-success HTTP status (or transport failure, status 0)"""
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status


class EmptyCompletion(CompletionError):
    """Success status but no usable assistant text"""
    def __init__(self, message: str = "No response from AI model. Please try again."):
        super().__init__(message)


MessageLike = Union[Message, Dict[str, str]]


def normalize_messages(messages: Sequence[MessageLike]) -> List[Dict[str, str]]:
    """Convert Message models or plain dicts to the wire format"""
    normalized = []
    for message in messages:
        if isinstance(message, Message):
            normalized.append(message.model_dump())
        else:
            normalized.append(Message(**message).model_dump())
    return normalized


def build_request_body(model_id: str, messages: List[Dict[str, str]], max_tokens: int) -> Dict[str, Any]:
    """JSON body for POST /chat/completions"""
    body = {
        "model": model_id,
        "messages": messages,
        "temperature": TEMPERATURE,
        "max_tokens": max_tokens,
    }

    # Free models require explicit data collection consent
    if ":free" in model_id:
        body["provider"] = {"data_collection": "allow", "allow_fallbacks": True}

    return body


def extract_error_message(response: httpx.Response) -> str:
    """
    Human-readable message for a failed response.
    Prefers the backend's error.message, then a status-specific message.
    """
    message = None
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message")
        elif isinstance(error, str):
            message = error

    if not isinstance(message, str) or not message.strip():
        message = STATUS_MESSAGES.get(
            response.status_code,
            f"API request failed: {response.reason_phrase}"
        )

    if "data policy" in message.lower():
        message = f"{message}{DATA_POLICY_HINT}"

    return message


def extract_completion_text(response: httpx.Response) -> str:
    """Assistant text from a success body, EmptyCompletion if there is none"""
    try:
        data = response.json()
        content = data["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError):
        raise EmptyCompletion()

    if not isinstance(content, str) or not content:
        raise EmptyCompletion()
    return content


class CompletionClient:
    """
    Thin async wrapper over the OpenRouter REST API.

    The underlying httpx client is created lazily and shared by all calls made
    through this instance; pass `transport` to swap the network layer.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        app_referer: Optional[str] = None,
        app_title: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        settings = get_settings()
        self.base_url = (base_url or settings["base_url"]).rstrip("/")
        self.app_referer = app_referer or settings["app_referer"]
        self.app_title = app_title or settings["app_title"]
        self.timeout = timeout or settings["request_timeout"]
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Content-Type": "application/json",
                    "HTTP-Referer": self.app_referer,
                    "X-Title": self.app_title,
                },
                timeout=self.timeout,
                transport=self._transport
            )
        return self.client

    async def close(self):
        """Close HTTP client"""
        if self.client:
            await self.client.aclose()
            self.client = None

    @log_performance(logger, "chat_completion")
    async def complete(
        self,
        model_id: str,
        messages: Sequence[MessageLike],
        credential: str,
        max_tokens: int = DEFAULT_MAX_TOKENS
    ) -> str:
        """
        Send one chat completion request and return the assistant text.

        Raises:
            ValueError: empty messages or credential
            RequestFailed: non-2xx status or transport failure
            EmptyCompletion: 2xx without assistant content
        """
        if not messages:
            raise ValueError("messages must not be empty")
        if not credential:
            raise ValueError("credential is required")

        body = build_request_body(model_id, normalize_messages(messages), max_tokens)

        try:
            response = await self._get_client().post(
                "/chat/completions",
                json=body,
                headers={"Authorization": f"Bearer {credential}"}
            )
        except httpx.HTTPError as e:
            raise RequestFailed(0, f"Network error contacting OpenRouter: {type(e).__name__}")

        if not response.is_success:
            message = extract_error_message(response)
            logger.warning(f"Completion request for {model_id} failed with HTTP {response.status_code}")
            raise RequestFailed(response.status_code, message)

        return extract_completion_text(response)

    async def fetch_model_catalog(self, credential: Optional[str] = None) -> ModelCatalog:
        """
        Fetch the available models. Never raises: any failure yields the
        fallback catalog with the reason attached.
        """
        headers = {"Authorization": f"Bearer {credential}"} if credential else None

        try:
            response = await self._get_client().get("/models", headers=headers)
            response.raise_for_status()
            entries = response.json().get("data") or []
            models = [
                ModelInfo(id=entry["id"], name=entry.get("name") or entry["id"])
                for entry in entries
            ]
        except httpx.HTTPStatusError as e:
            return self._fallback_catalog(f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            return self._fallback_catalog(f"{type(e).__name__}")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            return self._fallback_catalog(f"Unexpected model list format: {type(e).__name__}")

        if not models:
            return self._fallback_catalog("Model list was empty")

        return ModelCatalog(models=models)

    @staticmethod
    def _fallback_catalog(reason: str) -> ModelCatalog:
        logger.warning(f"Using fallback models: {reason}")
        return ModelCatalog(models=list(FALLBACK_MODELS), fallback=True, reason=reason)


def get_completion_client() -> CompletionClient:
    """Get completion client instance"""
    return CompletionClient()
