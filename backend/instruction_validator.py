"""
Instruction Validator
Runs a candidate system instruction against a test prompt, then asks the
validator model to critique the trial response against the expected behavior.
"""
import asyncio
import logging
from typing import List

from models import Message, TestCase, TestCaseOutcome, ValidationResult
from completion_client import CompletionClient, CompletionError
from score_parser import extract_score

logger = logging.getLogger(__name__)


EVALUATOR_SYSTEM_PROMPT = """You are an expert evaluator of AI system instructions. You judge how well a system instruction made an AI produce the expected behavior, and you give concrete, actionable feedback for improving the instruction.

## Scoring Rubric (weighted)
- **Instruction Following (35%)**: Did the response obey every directive in the system instruction?
- **Expected Behavior Match (35%)**: Does the response deliver what the expected behavior describes?
- **Quality & Usability (20%)**: Is the response accurate, clear, and useful as-is?
- **Format Compliance (10%)**: Does the response follow the required structure, length, and style?

## Score Guidelines
- 9-10: Fully meets expectations, production-ready
- 7-8: Meets expectations with minor issues
- 5-6: Partially meets expectations, noticeable gaps
- 3-4: Mostly misses expectations
- 1-2: Fails the expected behavior

Return your analysis in EXACTLY this format:

SCORE: [1-10]

COMPLIANCE ANALYSIS:
[How the response did and did not follow the instruction and match the expected behavior]

INSTRUCTION GAPS:
[What is missing or ambiguous in the system instruction that allowed any deviation]

CONCRETE IMPROVEMENTS:
[Numbered list of specific changes to make to the system instruction]

ROOT CAUSE:
[The single most important reason for any shortfall]

REVISED INSTRUCTION SNIPPET:
[Exact text to add to or replace in the system instruction]

PRIORITY: [HIGH | MEDIUM | LOW]

TESTING RECOMMENDATION:
[What to test next to confirm the fix]"""


def build_trial_messages(instruction: str, test_case: TestCase) -> List[Message]:
    """Candidate instruction as system message, test prompt as user message"""
    return [
        Message(role="system", content=instruction),
        Message(role="user", content=test_case.test_prompt),
    ]


def build_critique_messages(instruction: str, test_case: TestCase, trial_response: str) -> List[Message]:
    """Evaluator prompt embedding the instruction, test case and trial response verbatim"""
    user_message = f"""Evaluate the following AI response:

SYSTEM INSTRUCTION USED:
{instruction}

TEST PROMPT:
{test_case.test_prompt}

EXPECTED BEHAVIOR:
{test_case.expected_behavior}

ACTUAL RESPONSE:
{trial_response}

Analyze how well the response matches the expected behavior and how the system instruction should change."""

    return [
        Message(role="system", content=EVALUATOR_SYSTEM_PROMPT),
        Message(role="user", content=user_message),
    ]


async def validate_instruction(
    instruction: str,
    test_case: TestCase,
    model_id: str,
    credential: str,
    client: CompletionClient
) -> ValidationResult:
    """Trial run followed by critique. Completion errors propagate unchanged."""
    trial_response = await client.complete(
        model_id, build_trial_messages(instruction, test_case), credential
    )
    analysis = await client.complete(
        model_id, build_critique_messages(instruction, test_case, trial_response), credential
    )

    score = extract_score(analysis)
    if score is None:
        logger.warning("Validator response had no SCORE: marker; treating as unscored")

    return ValidationResult(
        response=trial_response,
        analysis=analysis,
        test_prompt=test_case.test_prompt,
        expected_behavior=test_case.expected_behavior,
        score=score
    )


async def _validate_one(
    instruction: str,
    test_case: TestCase,
    model_id: str,
    credential: str,
    client: CompletionClient
) -> TestCaseOutcome:
    try:
        result = await validate_instruction(instruction, test_case, model_id, credential, client)
    except CompletionError as e:
        return TestCaseOutcome(test_case=test_case, error=e.message)
    return TestCaseOutcome(test_case=test_case, result=result)


async def validate_batch(
    instruction: str,
    test_cases: List[TestCase],
    model_id: str,
    credential: str,
    client: CompletionClient
) -> List[TestCaseOutcome]:
    """
    Validate all test cases concurrently.

    Outcomes come back in the order of `test_cases`. A completion failure is
    recorded on its own outcome and does not affect the other cases.
    """
    outcomes = await asyncio.gather(*[
        _validate_one(instruction, test_case, model_id, credential, client)
        for test_case in test_cases
    ])

    failed = len([o for o in outcomes if not o.succeeded])
    if failed:
        logger.warning(f"{failed} of {len(outcomes)} test cases failed validation")

    return list(outcomes)


async def run_test_prompt(
    instruction: str,
    user_input: str,
    model_id: str,
    credential: str,
    client: CompletionClient
) -> str:
    """Run the instruction against a single ad-hoc input and return the response"""
    return await client.complete(
        model_id,
        [
            Message(role="system", content=instruction),
            Message(role="user", content=user_input),
        ],
        credential
    )
