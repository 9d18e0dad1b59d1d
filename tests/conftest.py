"""
Pytest configuration and shared fixtures
"""
import pytest
import sys
import os
import shutil
import tempfile
from cryptography.fernet import Fernet

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

# Set test environment before any backend module reads it
os.environ["TESTING"] = "true"
os.environ["PROMPT_FORGE_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["HISTORY_DIR"] = tempfile.mkdtemp(prefix="prompt_forge_history_")
os.environ.pop("OPENROUTER_API_KEY", None)
os.environ.pop("GENERATOR_MODEL", None)
os.environ.pop("VALIDATOR_MODEL", None)

from fakes import ScriptedBackend, VALID_KEY
from history_storage import HistoryStore
from shared_settings import reset_settings


@pytest.fixture(autouse=True)
def clean_settings():
    """Drop in-memory setting overrides between tests"""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def backend():
    """Scripted OpenRouter stand-in"""
    return ScriptedBackend()


@pytest.fixture
def history_store():
    """History store in a throwaway directory"""
    path = tempfile.mkdtemp(prefix="prompt_forge_store_")
    yield HistoryStore(path)
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def api_key():
    return VALID_KEY
