"""
Shared settings store - allows settings to be shared between server.py and the refinement sessions
"""

import os

DEFAULT_GENERATOR_MODEL = "google/gemini-2.0-flash-001"
DEFAULT_VALIDATOR_MODEL = "google/gemini-2.0-flash-001"
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"

# Global settings store
settings_store = {}


def get_settings():
    """Get current settings with environment variable fallback"""
    # 1. Determine API Key
    api_key = settings_store.get("api_key") or os.getenv("OPENROUTER_API_KEY", "")

    # 2. Determine Models
    generator_model = settings_store.get("generator_model") or os.getenv(
        "GENERATOR_MODEL", DEFAULT_GENERATOR_MODEL
    )
    validator_model = settings_store.get("validator_model") or os.getenv(
        "VALIDATOR_MODEL", DEFAULT_VALIDATOR_MODEL
    )

    # 3. Transport settings
    return {
        "api_key": api_key,
        "generator_model": generator_model,
        "validator_model": validator_model,
        "base_url": os.getenv("OPENROUTER_BASE_URL", DEFAULT_BASE_URL),
        "app_referer": os.getenv("APP_REFERER", "http://localhost:3000"),
        "app_title": os.getenv("APP_TITLE", "AI Prompt Builder"),
        "request_timeout": float(os.getenv("REQUEST_TIMEOUT", "120")),
        "history_dir": os.getenv("HISTORY_DIR", "prompt_history"),
    }


def update_settings(generator_model: str = "", validator_model: str = "", api_key: str = ""):
    """Update settings, keeping previous values for anything left blank"""
    if generator_model:
        settings_store["generator_model"] = generator_model
    if validator_model:
        settings_store["validator_model"] = validator_model
    if api_key:
        settings_store["api_key"] = api_key
    return settings_store.copy()


def reset_settings():
    """Drop all in-memory overrides"""
    settings_store.clear()
