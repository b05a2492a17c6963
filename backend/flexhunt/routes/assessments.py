"""Assessment routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from ..assessments import AssessmentService
from ..assessments.models import (
    AssessmentCreate,
    AssessmentResponse,
    QuestionCreate,
    QuestionResponse,
    SubmitAssessmentRequest,
    SubmitAssessmentResponse,
    TakeAssessmentResponse,
    UpdateCandidatesRequest,
    ViolationRequest,
    ViolationResponse,
)
from ..auth import CurrentUser
from ..clock import Clock
from ..database import Database
from ..logging_config import get_logger
from ..rate_limit import (
    AUTHORING_LIMIT,
    LISTING_LIMIT,
    SUBMIT_LIMIT,
    TAKE_LIMIT,
    VIOLATION_LIMIT,
    limiter,
)

logger = get_logger("flexhunt.routes.assessments")
router = APIRouter(prefix="/api/assessments", tags=["assessments"])


def get_assessment_service(db: Database, clock: Clock) -> AssessmentService:
    return AssessmentService(db=db, now=clock)


Assessments = Annotated[AssessmentService, Depends(get_assessment_service)]


# =============================================================================
# Recruiter
# =============================================================================


@router.post("/questions", response_model=QuestionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(AUTHORING_LIMIT)
async def create_question(
    request: Request,
    question: QuestionCreate,
    auth: CurrentUser,
    service: Assessments,
):
    """Create a question in the recruiter's bank."""
    logger.info(f"POST /api/assessments/questions | user={auth.user_id}")
    return await service.create_question(auth, question)


@router.get("/questions", response_model=list[QuestionResponse])
@limiter.limit(LISTING_LIMIT)
async def list_questions(request: Request, auth: CurrentUser, service: Assessments):
    """List the recruiter's own questions."""
    return await service.list_questions(auth)


@router.post("", response_model=AssessmentResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(AUTHORING_LIMIT)
async def create_assessment(
    request: Request,
    assessment: AssessmentCreate,
    auth: CurrentUser,
    service: Assessments,
):
    """Create an assessment for a job posting."""
    logger.info(f"POST /api/assessments | user={auth.user_id} | job={assessment.jobPosting}")
    return await service.create_assessment(auth, assessment)


@router.get("", response_model=list[AssessmentResponse])
@limiter.limit(LISTING_LIMIT)
async def list_assessments(request: Request, auth: CurrentUser, service: Assessments):
    """List the recruiter's own assessments."""
    return await service.list_assessments(auth)


@router.patch("/{assessment_id}/candidates", response_model=AssessmentResponse)
@limiter.limit(AUTHORING_LIMIT)
async def update_candidates(
    request: Request,
    assessment_id: str,
    body: UpdateCandidatesRequest,
    auth: CurrentUser,
    service: Assessments,
):
    """Replace the eligible candidates; each is invited immediately."""
    logger.info(f"PATCH /api/assessments/{assessment_id}/candidates | user={auth.user_id}")
    return await service.update_candidates(auth, assessment_id, [c.id for c in body.candidates])


# =============================================================================
# Candidate
# =============================================================================


@router.get("/take/{assessment_id}", response_model=TakeAssessmentResponse)
@limiter.limit(TAKE_LIMIT)
async def take_assessment(
    request: Request,
    assessment_id: str,
    auth: CurrentUser,
    service: Assessments,
):
    """Fetch the questions for an active assessment (answers hidden)."""
    logger.info(f"GET /api/assessments/take/{assessment_id} | user={auth.user_id}")
    return await service.take(auth, assessment_id)


@router.post("/submit/{assessment_id}", response_model=SubmitAssessmentResponse)
@limiter.limit(SUBMIT_LIMIT)
async def submit_assessment(
    request: Request,
    assessment_id: str,
    submission: SubmitAssessmentRequest,
    auth: CurrentUser,
    service: Assessments,
):
    """Submit answers and receive the score."""
    logger.info(f"POST /api/assessments/submit/{assessment_id} | user={auth.user_id}")
    return await service.submit(auth, assessment_id, submission)


@router.post("/violation/{assessment_id}", response_model=ViolationResponse)
@limiter.limit(VIOLATION_LIMIT)
async def record_violation(
    request: Request,
    assessment_id: str,
    violation: ViolationRequest,
    auth: CurrentUser,
    service: Assessments,
):
    """Record a proctoring violation reported by the browser."""
    await service.record_violation(auth, assessment_id, violation)
    return ViolationResponse()
