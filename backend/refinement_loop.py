"""
Refinement Loop
Owns the working instruction and its validation results for one user session.

States:
    idle -> generate() -> has_instruction
    has_instruction -> validate() -> has_results (at least one test case succeeded)
    has_results -> regenerate_with_feedback() -> has_instruction
    any -> edit_instruction() / select_history_entry() -> has_instruction, results cleared

Every dispatch takes a new sequence number. A response only mutates the
session if its number is still the latest when it arrives; otherwise it is
dropped and the call returns None. Manual edits also advance the sequence, so
an in-flight validation of the old text can never overwrite the edit.
"""
import asyncio
import logging
from typing import List, Optional

from models import (
    AggregateScore,
    GenerationParams,
    HistoryEntry,
    SessionState,
    SessionStatus,
    TestCase,
    TestCaseOutcome,
)
from completion_client import CompletionClient, CompletionError
from instruction_generator import generate_instruction
from instruction_validator import validate_batch, run_test_prompt
from score_aggregator import aggregate_results, score_trend, round_half_up
from history_storage import HistoryStore, StorageError, create_history_entry
from security import require_credential
from shared_settings import get_settings

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """The requested action is not allowed in the session's current state"""


class BatchValidationError(Exception):
    """Every test case in a validation batch failed"""

    def __init__(self, outcomes: List[TestCaseOutcome]):
        self.outcomes = outcomes
        errors = [o.error for o in outcomes if o.error]
        self.message = errors[0] if errors else "Failed to validate system instructions"
        super().__init__(self.message)


def summarize_outcomes(outcomes: List[TestCaseOutcome]) -> Optional[str]:
    """'2 of 3 test cases succeeded'"""
    if not outcomes:
        return None
    succeeded = len([o for o in outcomes if o.succeeded])
    return f"{succeeded} of {len(outcomes)} test cases succeeded"


def build_feedback(outcomes: List[TestCaseOutcome], aggregate: Optional[AggregateScore]) -> str:
    """Aggregated critique from a validation round, used as generation feedback"""
    lines = [f"Validation summary: {summarize_outcomes(outcomes)}."]

    if aggregate:
        lines.append(
            f"Average score {aggregate.average_score}/10 "
            f"(min {aggregate.min_score:g}, max {aggregate.max_score:g}), "
            f"pass rate {aggregate.pass_rate:.0f}%, consistency {aggregate.consistency}/10."
        )
    else:
        lines.append("No test case produced a parseable score.")

    for index, outcome in enumerate(outcomes, 1):
        if not outcome.succeeded:
            continue
        result = outcome.result
        score = f"{result.score:g}/10" if result.score is not None else "no score"
        lines.append("")
        lines.append(f"### Test {index} ({score})")
        lines.append(f"Test prompt: {result.test_prompt}")
        lines.append(f"Expected behavior: {result.expected_behavior}")
        lines.append("Evaluator critique:")
        lines.append(result.analysis)

    return "\n".join(lines)


class RefinementSession:
    """
    Single authority over the current instruction and results.
    Commits are serialized through an asyncio.Lock.
    """

    def __init__(
        self,
        client: CompletionClient,
        generator_model: Optional[str] = None,
        validator_model: Optional[str] = None,
        history_store: Optional[HistoryStore] = None
    ):
        settings = get_settings()
        self.client = client
        self.generator_model = generator_model or settings["generator_model"]
        self.validator_model = validator_model or settings["validator_model"]
        self.history_store = history_store

        self.status = SessionStatus.IDLE
        self.instruction = ""
        self.outcomes: List[TestCaseOutcome] = []
        self.aggregate: Optional[AggregateScore] = None
        self.last_params: Optional[GenerationParams] = None
        self.previous_score: Optional[float] = None
        self.error: Optional[str] = None

        self._seq = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Sequence guard
    # ------------------------------------------------------------------

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _is_current(self, seq: int) -> bool:
        return seq == self._seq

    def _clear_results(self) -> None:
        self.outcomes = []
        self.aggregate = None

    async def _check_credential(self, credential: Optional[str]) -> str:
        """Credential check before dispatch; a rejection does not take a sequence number"""
        try:
            return require_credential(credential)
        except ValueError as e:
            async with self._lock:
                self.error = str(e)
            raise

    async def _fail(self, seq: int, message: str) -> bool:
        """Record a failure if it belongs to the latest request"""
        async with self._lock:
            if not self._is_current(seq):
                logger.info(f"Ignoring failure of stale request {seq} (latest {self._seq})")
                return False
            self.error = message
            return True

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def generate(self, params: GenerationParams, credential: Optional[str]) -> Optional[str]:
        """Fresh generation from desired output and context"""
        base = GenerationParams(desired_output=params.desired_output, context=params.context)
        return await self._run_generation(params, base, credential, previous_score=None)

    async def regenerate_with_feedback(
        self,
        credential: Optional[str],
        feedback: Optional[str] = None
    ) -> Optional[str]:
        """
        Regenerate seeded with the current instruction.
        Feedback defaults to the aggregated critique of the last validation.
        """
        if self.status != SessionStatus.HAS_RESULTS:
            raise InvalidTransitionError("Validate the instruction before regenerating with feedback")
        if self.last_params is None:
            raise InvalidTransitionError("No previous generation found. Please generate instructions first.")

        if not feedback or not feedback.strip():
            feedback = build_feedback(self.outcomes, self.aggregate)

        params = GenerationParams(
            desired_output=self.last_params.desired_output,
            context=self.last_params.context,
            feedback=feedback,
            seed_instruction=self.instruction
        )
        # Unscored rounds leave nothing to compare the next round against
        snapshot = self.aggregate.average_score if self.aggregate else None
        return await self._run_generation(params, self.last_params, credential, previous_score=snapshot)

    async def _run_generation(
        self,
        params: GenerationParams,
        base_params: GenerationParams,
        credential: Optional[str],
        previous_score: Optional[float]
    ) -> Optional[str]:
        credential = await self._check_credential(credential)
        seq = self._next_seq()
        try:
            instruction = await generate_instruction(params, self.generator_model, credential, self.client)
        except CompletionError as e:
            if await self._fail(seq, str(e)):
                raise
            return None

        async with self._lock:
            if not self._is_current(seq):
                logger.info(f"Discarding stale generation {seq} (latest {self._seq})")
                return None
            self.instruction = instruction
            self.last_params = base_params
            self.previous_score = previous_score
            self._clear_results()
            self.status = SessionStatus.HAS_INSTRUCTION
            self.error = None

        self._record_history(params, instruction)
        return instruction

    async def validate(self, test_cases: List[TestCase], credential: Optional[str]) -> Optional[List[TestCaseOutcome]]:
        """Validate the current instruction against all test cases concurrently"""
        if not self.instruction.strip():
            raise InvalidTransitionError("Please generate or enter a system instruction first")
        if not test_cases:
            raise ValueError("At least one test case is required")

        credential = await self._check_credential(credential)
        seq = self._next_seq()
        instruction = self.instruction

        outcomes = await validate_batch(instruction, test_cases, self.validator_model, credential, self.client)

        async with self._lock:
            if not self._is_current(seq):
                logger.info(f"Discarding stale validation {seq} (latest {self._seq})")
                return None
            if not any(o.succeeded for o in outcomes):
                error = BatchValidationError(outcomes)
                self.error = error.message
                raise error
            self.outcomes = outcomes
            self.aggregate = aggregate_results([o.result for o in outcomes if o.succeeded])
            self.status = SessionStatus.HAS_RESULTS
            self.error = None

        logger.info(f"Validation complete: {summarize_outcomes(outcomes)}")
        return outcomes

    async def edit_instruction(self, instruction: str) -> None:
        """Manual edit; invalidates results and any in-flight request"""
        async with self._lock:
            self._next_seq()
            self.instruction = instruction
            self._clear_results()
            self.status = SessionStatus.HAS_INSTRUCTION if instruction.strip() else SessionStatus.IDLE
            self.error = None

    async def select_history_entry(self, entry: HistoryEntry) -> None:
        """Load a past instruction together with the parameters that produced it"""
        async with self._lock:
            self._next_seq()
            self.instruction = entry.instruction
            self.last_params = GenerationParams(desired_output=entry.desired_output, context=entry.context)
            self.previous_score = None
            self._clear_results()
            self.status = SessionStatus.HAS_INSTRUCTION
            self.error = None

    async def test_prompt(self, user_input: str, credential: Optional[str], model_id: Optional[str] = None) -> str:
        """Ad-hoc run of the current instruction; does not change session state"""
        if not self.instruction.strip():
            raise InvalidTransitionError("Please generate or enter a system instruction first")
        credential = require_credential(credential)
        return await run_test_prompt(
            self.instruction, user_input, model_id or self.generator_model, credential, self.client
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionState:
        current = self.aggregate.average_score if self.aggregate else None
        delta = None
        if current is not None and self.previous_score:
            delta = round_half_up(current - self.previous_score)

        return SessionState(
            status=self.status,
            instruction=self.instruction,
            outcomes=list(self.outcomes),
            aggregate=self.aggregate,
            previous_score=self.previous_score,
            score_delta=delta,
            score_trend=score_trend(current, self.previous_score),
            summary=summarize_outcomes(self.outcomes),
            error=self.error,
            generator_model=self.generator_model,
            validator_model=self.validator_model
        )

    def _record_history(self, params: GenerationParams, instruction: str) -> None:
        if self.history_store is None:
            return
        try:
            self.history_store.save_history_entry(
                create_history_entry(params, instruction, self.generator_model)
            )
        except StorageError as e:
            logger.warning(f"Could not save history entry: {e}")
