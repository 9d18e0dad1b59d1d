"""
End-to-end tests for the FastAPI endpoints
"""
import pytest
from fastapi.testclient import TestClient

import server
from fakes import VALID_KEY

CASES = [
    {"test_prompt": "Cats", "expected_behavior": "A 5-7-5 haiku about cats"},
    {"test_prompt": "Rain", "expected_behavior": "A 5-7-5 haiku about rain"},
]


@pytest.fixture
def client(backend, history_store, monkeypatch):
    """TestClient wired to the scripted backend and a temporary store"""
    monkeypatch.setattr(server, "completion_client", backend.client())
    monkeypatch.setattr(server, "history_store", history_store)
    monkeypatch.setattr(server, "sessions", {})
    with TestClient(server.app) as test_client:
        yield test_client


def generate(client, **extra):
    body = {"desired_output": "A haiku about the given topic", "api_key": VALID_KEY}
    body.update(extra)
    return client.post("/api/generate", json=body)


class TestBasics:
    """Tests for root, models and request ids"""

    def test_root(self, client):
        """Positive: API is up"""
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"message": "Prompt Forge API"}

    def test_request_id_header(self, client):
        """Positive: Every response carries a request id"""
        response = client.get("/", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"
        assert client.get("/").headers["X-Request-ID"]

    def test_models(self, client):
        """Positive: Catalog from the backend"""
        response = client.get("/api/models")

        assert response.status_code == 200
        data = response.json()
        assert data["fallback"] is False
        assert data["models"][0]["id"] == "openai/gpt-4o"


class TestGenerateEndpoint:
    """Tests for POST /api/generate"""

    def test_generate(self, client, backend):
        """Positive: Instruction generated with the request's key"""
        response = generate(client)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "has_instruction"
        assert data["instruction"] == backend.instructions[0]
        assert backend.headers[0]["authorization"] == f"Bearer {VALID_KEY}"

    def test_generator_model_override(self, client, backend):
        """Positive: Request model is used for the session"""
        response = generate(client, generator_model="anthropic/claude-3.5-sonnet")

        assert response.json()["generator_model"] == "anthropic/claude-3.5-sonnet"
        assert backend.calls[0]["model"] == "anthropic/claude-3.5-sonnet"

    def test_missing_key(self, client, backend):
        """Negative: No key anywhere -> 400 and no request"""
        response = client.post("/api/generate", json={"desired_output": "x"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Please enter your OpenRouter API key"
        assert backend.calls == []

    def test_backend_failure(self, client, backend):
        """Negative: Completion failure -> 502 with the user-facing message"""
        backend.generation_failure = (401, {})

        response = generate(client)

        assert response.status_code == 502
        assert response.json()["detail"] == "Invalid API key. Please check your OpenRouter API key."

    def test_empty_desired_output(self, client):
        """Negative: Desired output is required"""
        response = client.post("/api/generate", json={"desired_output": "", "api_key": VALID_KEY})
        assert response.status_code == 422

    def test_stored_key_is_used(self, client, backend):
        """Positive: Saved settings key is used when the request has none"""
        client.post("/api/settings", json={"api_key": VALID_KEY})

        response = client.post("/api/generate", json={"desired_output": "x"})

        assert response.status_code == 200
        assert backend.headers[0]["authorization"] == f"Bearer {VALID_KEY}"


class TestValidateEndpoint:
    """Tests for POST /api/validate and POST /api/regenerate"""

    def test_validate_before_generate(self, client):
        """Negative: Nothing to validate -> 409"""
        response = client.post("/api/validate", json={"test_cases": CASES, "api_key": VALID_KEY})
        assert response.status_code == 409

    def test_validate_requires_cases(self, client):
        """Negative: Empty batch rejected by request validation"""
        generate(client)
        response = client.post("/api/validate", json={"test_cases": [], "api_key": VALID_KEY})
        assert response.status_code == 422

    def test_validate_and_regenerate(self, client, backend):
        """Positive: Full refine loop over HTTP"""
        backend.instructions = ["v1", "v2"]
        backend.critiques = {"Cats": "SCORE: 8", "Rain": "SCORE: 6"}
        generate(client)

        response = client.post("/api/validate", json={"test_cases": CASES, "api_key": VALID_KEY})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "has_results"
        assert data["aggregate"]["average_score"] == 7.0
        assert data["summary"] == "2 of 2 test cases succeeded"
        assert data["outcomes"][0]["result"]["analysis"] == "SCORE: 8"

        response = client.post("/api/regenerate", json={"api_key": VALID_KEY})
        assert response.status_code == 200
        data = response.json()
        assert data["instruction"] == "v2"
        assert data["previous_score"] == 7.0

        backend.critiques = {"Cats": "SCORE: 9", "Rain": "SCORE: 9"}
        data = client.post("/api/validate", json={"test_cases": CASES, "api_key": VALID_KEY}).json()
        assert data["score_delta"] == 2.0
        assert data["score_trend"] == "up"

    def test_partial_failure(self, client, backend):
        """Positive: Partial batch succeeds and reports errors per case"""
        backend.failures["Rain"] = (429, {})
        generate(client)

        data = client.post("/api/validate", json={"test_cases": CASES, "api_key": VALID_KEY}).json()

        assert data["summary"] == "1 of 2 test cases succeeded"
        assert data["outcomes"][1]["result"] is None
        assert data["outcomes"][1]["error"] == "Rate limit exceeded. Please try again later."

    def test_all_cases_fail(self, client, backend):
        """Negative: Whole batch failing -> 502, state unchanged"""
        backend.failures = {"Cats": (500, {}), "Rain": (500, {})}
        generate(client)

        response = client.post("/api/validate", json={"test_cases": CASES, "api_key": VALID_KEY})

        assert response.status_code == 502
        assert response.json()["detail"] == "Server error. Please try again later."
        assert client.get("/api/session").json()["status"] == "has_instruction"

    def test_regenerate_without_results(self, client):
        """Negative: Regenerating before validating -> 409"""
        generate(client)
        response = client.post("/api/regenerate", json={"api_key": VALID_KEY})
        assert response.status_code == 409

    def test_sessions_are_isolated(self, client):
        """Positive: Session ids keep separate state"""
        generate(client, session_id="alice")

        assert client.get("/api/session", params={"session_id": "alice"}).json()["status"] == "has_instruction"
        assert client.get("/api/session", params={"session_id": "bob"}).json()["status"] == "idle"


class TestInstructionEndpoints:
    """Tests for PUT /api/instruction and POST /api/test-prompt"""

    def test_edit(self, client):
        """Positive: Manual edit replaces the instruction"""
        response = client.put("/api/instruction", json={"instruction": "Be terse."})

        assert response.status_code == 200
        assert response.json()["instruction"] == "Be terse."
        assert response.json()["status"] == "has_instruction"

    def test_test_prompt(self, client, backend):
        """Positive: Ad-hoc run returns the response and a code snippet"""
        backend.trial_responses["Owls"] = "Night eyes"
        client.put("/api/instruction", json={"instruction": "Be terse."})

        response = client.post("/api/test-prompt", json={"user_input": "Owls", "api_key": VALID_KEY})

        assert response.status_code == 200
        data = response.json()
        assert data["response"] == "Night eyes"
        assert "SYSTEM_INSTRUCTION = 'Be terse.'" in data["api_code"]

    def test_test_prompt_without_instruction(self, client):
        """Negative: Nothing to run -> 409"""
        response = client.post("/api/test-prompt", json={"user_input": "Owls", "api_key": VALID_KEY})
        assert response.status_code == 409


class TestHistoryEndpoints:
    """Tests for the history endpoints"""

    def test_history_and_select(self, client):
        """Positive: Generations are listed and can be reloaded"""
        generate(client)
        client.put("/api/instruction", json={"instruction": "Something else"})

        history = client.get("/api/history").json()
        assert len(history) == 1

        response = client.post(f"/api/history/{history[0]['id']}/select")
        assert response.status_code == 200
        assert response.json()["instruction"] == history[0]["instruction"]

    def test_select_unknown(self, client):
        """Negative: Unknown entry -> 404"""
        assert client.post("/api/history/nope/select").status_code == 404

    def test_clear(self, client):
        """Positive: History can be cleared"""
        generate(client)
        assert client.delete("/api/history").status_code == 200
        assert client.get("/api/history").json() == []


class TestExportEndpoints:
    """Tests for the export endpoints"""

    def test_nothing_to_export(self, client):
        """Negative: Empty session -> 404"""
        assert client.get("/api/export/json").status_code == 404
        assert client.get("/api/export/markdown").status_code == 404

    def test_export(self, client):
        """Positive: JSON and Markdown exports"""
        generate(client)
        client.post("/api/validate", json={"test_cases": CASES, "api_key": VALID_KEY})

        data = client.get("/api/export/json").json()
        assert data["desired_output"] == "A haiku about the given topic"
        assert len(data["validation_results"]) == 2

        response = client.get("/api/export/markdown")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/markdown")
        assert "## Validation Results" in response.text


class TestSettingsEndpoints:
    """Tests for the settings endpoints"""

    def test_save_and_read(self, client, history_store):
        """Positive: Key is stored encrypted and only shown masked"""
        response = client.post("/api/settings", json={
            "api_key": VALID_KEY, "generator_model": "openai/gpt-4o"
        })
        assert response.status_code == 200
        assert VALID_KEY not in response.text

        data = client.get("/api/settings").json()
        assert data["has_api_key"] is True
        assert data["api_key"] == f"sk-or-v1...{VALID_KEY[-4:]}"
        assert data["generator_model"] == "openai/gpt-4o"
        assert history_store.get_credential() == VALID_KEY

    def test_invalid_key(self, client):
        """Negative: Wrong key format -> 400"""
        response = client.post("/api/settings", json={"api_key": "sk-ant-123"})
        assert response.status_code == 400

    def test_no_key(self, client):
        """Negative: Nothing configured"""
        data = client.get("/api/settings").json()
        assert data["has_api_key"] is False
        assert data["api_key"] == ""
