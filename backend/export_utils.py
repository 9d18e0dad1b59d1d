"""
Export helpers: session data as JSON or Markdown, plus an integration snippet
"""
from datetime import datetime
from typing import Any, Dict, Optional

from models import GenerationParams, SessionState


def build_export_data(state: SessionState, params: Optional[GenerationParams]) -> Dict[str, Any]:
    """Everything worth keeping from a session, JSON-serializable"""
    return {
        "system_instruction": state.instruction,
        "desired_output": params.desired_output if params else "",
        "context": params.context if params else "",
        "generator_model": state.generator_model,
        "validator_model": state.validator_model,
        "aggregate": state.aggregate.model_dump() if state.aggregate else None,
        "validation_results": [
            outcome.model_dump(mode="json") for outcome in state.outcomes
        ],
        "exported_at": datetime.now().isoformat(),
    }


def generate_markdown(data: Dict[str, Any]) -> str:
    """Render export data as a Markdown document"""
    md = "# AI Prompt Builder Export\n\n"
    md += f"**Exported at:** {data.get('exported_at', datetime.now().isoformat())}\n\n"

    if data.get("system_instruction"):
        md += "## System Instruction\n\n"
        md += f"```\n{data['system_instruction']}\n```\n\n"

    if data.get("desired_output"):
        md += f"## Desired Output\n\n{data['desired_output']}\n\n"

    if data.get("context"):
        md += f"## Additional Context\n\n{data['context']}\n\n"

    if data.get("generator_model"):
        md += f"## Model Used\n\n{data['generator_model']}\n\n"

    results = data.get("validation_results") or []
    if results:
        md += "## Validation Results\n\n"

        aggregate = data.get("aggregate")
        if aggregate:
            md += f"**Average Score:** {aggregate['average_score']:.1f}/10\n\n"
            md += f"**Pass Rate:** {aggregate['pass_rate']:.1f}%\n\n"
            md += f"**Consistency:** {aggregate['consistency']:.1f}/10\n\n"

        for index, outcome in enumerate(results, 1):
            test_case = outcome.get("test_case", {})
            result = outcome.get("result")
            md += f"### Test {index}\n\n"
            md += f"**Test Prompt:**\n{test_case.get('test_prompt', '')}\n\n"
            md += f"**Expected Behavior:**\n{test_case.get('expected_behavior', '')}\n\n"

            if result:
                md += f"**AI Response:**\n```\n{result['response']}\n```\n\n"
                md += f"**Analysis:**\n```\n{result['analysis']}\n```\n\n"
            else:
                md += f"**Error:** {outcome.get('error') or 'Unknown error'}\n\n"

            md += "---\n\n"

    return md


def generate_api_code(instruction: str, model: str) -> str:
    """Python snippet that calls OpenRouter with the given instruction"""
    literal = repr(instruction or "Your system instruction here")
    return f'''# OpenRouter API Integration Example
import httpx

SYSTEM_INSTRUCTION = {literal}

response = httpx.post(
    "https://openrouter.ai/api/v1/chat/completions",
    headers={{
        "Authorization": "Bearer YOUR_API_KEY",
        "HTTP-Referer": "https://your-app.example",
        "X-Title": "Your App Name",
    }},
    json={{
        "model": "{model}",
        "messages": [
            {{"role": "system", "content": SYSTEM_INSTRUCTION}},
            {{"role": "user", "content": user_message}},
        ],
        "temperature": 0.7,
        "max_tokens": 2048,
    }},
    timeout=120,
)
ai_response = response.json()["choices"][0]["message"]["content"]
'''
