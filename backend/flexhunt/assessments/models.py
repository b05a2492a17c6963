"""Pydantic models for proctored assessments."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


class CandidateStatus(str, Enum):
    pending = "pending"
    invited = "invited"
    completed = "completed"
    expired = "expired"


class ViolationType(str, Enum):
    """Proctoring events the browser reports."""

    tab_switch = "tab_switch"
    full_screen_exit = "full_screen_exit"
    multiple_displays = "multiple_displays"
    copy_paste = "copy_paste"


# =============================================================================
# Questions
# =============================================================================


class QuestionOption(BaseModel):
    text: str = Field(..., min_length=1)
    isCorrect: bool = False


class QuestionCreate(BaseModel):
    """Request to create a multiple-choice question."""

    text: str = Field(..., min_length=1)
    options: list[QuestionOption] = Field(..., min_length=2)
    points: int = Field(1, ge=0)

    @field_validator("options")
    @classmethod
    def needs_correct_option(cls, v: list[QuestionOption]) -> list[QuestionOption]:
        if not any(o.isCorrect for o in v):
            raise ValueError("At least one option must be correct")
        return v


class QuestionResponse(BaseModel):
    id: str
    createdBy: str
    text: str
    options: list[QuestionOption]
    points: int
    createdAt: datetime | None = None


class CandidateQuestionOption(BaseModel):
    """An option as shown to the candidate (correctness hidden)."""

    text: str


class CandidateQuestion(BaseModel):
    id: str
    text: str
    options: list[CandidateQuestionOption]
    points: int


# =============================================================================
# Assessments
# =============================================================================


class AssessmentSettings(BaseModel):
    preventTabSwitch: bool = True
    requireFullScreen: bool = True
    preventMultipleDisplays: bool = True
    preventCopyPaste: bool = True
    randomizeQuestions: bool = True
    showResults: bool = False


class SecurityViolation(BaseModel):
    type: ViolationType
    timestamp: datetime
    details: str | None = None


class Answer(BaseModel):
    question: str
    selectedOption: int
    isCorrect: bool


class Candidate(BaseModel):
    candidate: str
    status: CandidateStatus = CandidateStatus.pending
    invitationSentAt: datetime | None = None
    startedAt: datetime | None = None
    completedAt: datetime | None = None
    score: int | None = None
    answers: list[Answer] = Field(default_factory=list)
    securityViolations: list[SecurityViolation] = Field(default_factory=list)


class AssessmentCreate(BaseModel):
    """Request to create an assessment."""

    title: str = Field(..., min_length=1, max_length=200)
    jobPosting: str = Field(..., min_length=1)
    questions: list[str] = Field(default_factory=list)
    duration: int = Field(..., gt=0, description="Minutes")
    startDate: datetime
    endDate: datetime
    passingScore: int = Field(..., ge=0)
    settings: AssessmentSettings = Field(default_factory=AssessmentSettings)

    @model_validator(mode="after")
    def window_is_ordered(self):
        if self.endDate <= self.startDate:
            raise ValueError("endDate must be after startDate")
        return self


class AssessmentResponse(BaseModel):
    id: str
    title: str
    jobPosting: str
    createdBy: str
    questions: list[str]
    duration: int
    startDate: datetime
    endDate: datetime
    passingScore: int
    eligibleCandidates: list[Candidate] = Field(default_factory=list)
    settings: AssessmentSettings = Field(default_factory=AssessmentSettings)
    createdAt: datetime | None = None


class CandidateRef(BaseModel):
    id: str = Field(..., min_length=1)


class UpdateCandidatesRequest(BaseModel):
    candidates: list[CandidateRef]


class TakeAssessmentResponse(BaseModel):
    id: str
    title: str
    duration: int
    questions: list[CandidateQuestion]
    settings: AssessmentSettings


class SubmittedAnswer(BaseModel):
    questionId: str
    selectedOption: int = Field(..., ge=0)


class SubmitAssessmentRequest(BaseModel):
    answers: list[SubmittedAnswer] = Field(default_factory=list)
    securityViolations: list[SecurityViolation] = Field(default_factory=list)


class SubmitAssessmentResponse(BaseModel):
    score: int
    passed: bool
    maxScore: int | None = None


class ViolationRequest(BaseModel):
    type: ViolationType
    details: str | None = None


class ViolationResponse(BaseModel):
    message: str = "Violation recorded"
