"""
Data models for the generate / validate / refine workflow
"""
from pydantic import BaseModel, Field
from typing import List, Optional, Literal
from datetime import datetime
from enum import Enum


# ============= Conversation =============

class Message(BaseModel):
    """One chat turn sent to the completion endpoint"""
    role: Literal["system", "user", "assistant"]
    content: str


# ============= Generation =============

class GenerationParams(BaseModel):
    """Inputs for one instruction generation call"""
    desired_output: str = Field(..., min_length=1)
    context: str = ""
    feedback: str = ""  # Critique carried forward from a validation round
    seed_instruction: str = ""  # Prior instruction to revise instead of starting fresh


# ============= Validation =============

class TestCase(BaseModel):
    """A test prompt and the behavior the instruction should produce for it"""
    __test__ = False  # not a pytest class

    test_prompt: str = Field(..., min_length=1)
    expected_behavior: str = Field(..., min_length=1)


class ValidationResult(BaseModel):
    """Trial response and critique for a single test case"""
    response: str
    analysis: str  # Raw critique text, verbatim
    test_prompt: str
    expected_behavior: str
    score: Optional[float] = None  # Parsed from the SCORE: marker, None when absent


class TestCaseOutcome(BaseModel):
    """Either a validation result or the error that prevented it"""
    __test__ = False

    test_case: TestCase
    result: Optional[ValidationResult] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None


class AggregateScore(BaseModel):
    """Summary statistics over the scored validation results"""
    average_score: float
    min_score: float
    max_score: float
    consistency: float  # 0-10, penalizes spread across test cases
    pass_rate: float  # Percentage of scores >= 7
    scored_count: int


# ============= Model catalog =============

class ModelInfo(BaseModel):
    """A selectable backend model"""
    id: str
    name: str


class ModelCatalog(BaseModel):
    """Model list, possibly the built-in fallback"""
    models: List[ModelInfo]
    fallback: bool = False
    reason: Optional[str] = None


# ============= History =============

class HistoryEntry(BaseModel):
    """One successful generation"""
    id: str
    timestamp: datetime
    desired_output: str
    context: str = ""
    instruction: str
    feedback: Optional[str] = None
    model: str


# ============= Session =============

class SessionStatus(str, Enum):
    IDLE = "idle"
    HAS_INSTRUCTION = "has_instruction"
    HAS_RESULTS = "has_results"


class SessionState(BaseModel):
    """Read-only view of a refinement session"""
    status: SessionStatus
    instruction: str = ""
    outcomes: List[TestCaseOutcome] = []
    aggregate: Optional[AggregateScore] = None
    previous_score: Optional[float] = None
    score_delta: Optional[float] = None
    score_trend: str = "same"
    summary: Optional[str] = None  # e.g. "2 of 3 test cases succeeded"
    error: Optional[str] = None
    generator_model: str
    validator_model: str


# ============= Request Models =============

class GenerateRequest(BaseModel):
    """Start a fresh generation"""
    session_id: str = "default"
    desired_output: str = Field(..., min_length=1)
    context: str = ""
    generator_model: Optional[str] = None
    api_key: Optional[str] = None


class ValidateRequest(BaseModel):
    """Validate the current instruction against test cases"""
    session_id: str = "default"
    test_cases: List[TestCase] = Field(..., min_length=1)
    validator_model: Optional[str] = None
    api_key: Optional[str] = None


class RegenerateRequest(BaseModel):
    """Regenerate using critique from the last validation"""
    session_id: str = "default"
    feedback: Optional[str] = None  # Custom feedback, defaults to the aggregated critique
    api_key: Optional[str] = None


class EditInstructionRequest(BaseModel):
    """Manual edit of the working instruction"""
    session_id: str = "default"
    instruction: str


class TestPromptRequest(BaseModel):
    """Run the working instruction against one ad-hoc input"""
    __test__ = False

    session_id: str = "default"
    user_input: str = Field(..., min_length=1)
    model: Optional[str] = None
    api_key: Optional[str] = None


class SettingsUpdate(BaseModel):
    """Model selection and credential"""
    generator_model: str = ""
    validator_model: str = ""
    api_key: str = ""
