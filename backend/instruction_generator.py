"""
Instruction Generator
Builds the generation prompt for a desired output / context pair and asks the
generator model for a system instruction.

Three mutually exclusive modes, picked from GenerationParams:
1. feedback + seed instruction -> revise the seed using the feedback
2. feedback only -> produce an improved instruction incorporating the feedback
3. neither -> generate a comprehensive instruction from scratch
"""
import logging
from typing import List

from models import GenerationParams, Message
from completion_client import CompletionClient, GENERATION_MAX_TOKENS

logger = logging.getLogger(__name__)


GENERATOR_SYSTEM_PROMPT = """You are an expert prompt engineer. Your task is to create clear, effective system instructions that will guide an AI to consistently produce the desired output.

Structure every system instruction using this framework:

## 1. ROLE & CONTEXT
- Define who the AI is, its expertise, and the situation it operates in

## 2. CORE DIRECTIVES
- State the primary task and the specific behaviors expected
- Be explicit and unambiguous; prefer concrete rules over vague guidance

## 3. OUTPUT FORMAT
- Specify structure, length, tone, and any required sections or markup

## 4. CONSTRAINTS
- List what the AI must never do, scope boundaries, and how to handle edge cases

## 5. QUALITY STANDARDS
- Describe what an excellent response looks like and how to self-check before answering

Return ONLY the system instruction text. Do not include any preamble, explanation, commentary, or metadata before or after it."""


def _has_text(value: str) -> bool:
    return bool(value and value.strip())


def build_user_prompt(params: GenerationParams) -> str:
    """User message for one of the three generation modes"""
    sections = [
        "Create a system instruction for an AI assistant that will produce the following output:",
        f"Desired Output: {params.desired_output}",
    ]

    if _has_text(params.context):
        sections.append(f"Additional Context: {params.context}")

    has_feedback = _has_text(params.feedback)
    has_seed = _has_text(params.seed_instruction)

    if has_feedback and has_seed:
        sections.append(f"""CURRENT SYSTEM PROMPT (revise this, do not start over):
```
{params.seed_instruction}
```""")
        sections.append(f"""FEEDBACK FROM TESTING:
{params.feedback}""")
        sections.append(
            "Revise the current system prompt to address every point in the feedback. "
            "Preserve the parts that already work well, keep its overall structure where it is sound, "
            "and make targeted changes where the feedback shows gaps. "
            "Return the complete revised system instruction."
        )
    elif has_feedback:
        sections.append(f"""FEEDBACK TO INCORPORATE:
{params.feedback}""")
        sections.append(
            "Generate an improved, comprehensive system instruction that incorporates this feedback "
            "and avoids the problems it describes."
        )
    else:
        sections.append(
            "Generate a comprehensive system instruction that will guide the AI to consistently "
            "produce this type of output."
        )

    return "\n\n".join(sections)


def build_generation_messages(params: GenerationParams) -> List[Message]:
    """System + user messages for a generation call"""
    return [
        Message(role="system", content=GENERATOR_SYSTEM_PROMPT),
        Message(role="user", content=build_user_prompt(params)),
    ]


def generation_mode(params: GenerationParams) -> str:
    """Name of the mode build_user_prompt will use, for logging"""
    if _has_text(params.feedback):
        return "revise" if _has_text(params.seed_instruction) else "feedback"
    return "fresh"


async def generate_instruction(
    params: GenerationParams,
    model_id: str,
    credential: str,
    client: CompletionClient
) -> str:
    """
    Generate a system instruction.
    The model output is returned verbatim; completion errors propagate unchanged.
    """
    logger.info(f"Generating instruction with {model_id} (mode: {generation_mode(params)})")

    return await client.complete(
        model_id,
        build_generation_messages(params),
        credential,
        max_tokens=GENERATION_MAX_TOKENS
    )
