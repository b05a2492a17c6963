"""Assessment service: recruiter authoring, candidate eligibility and scoring.

Proctoring happens in the browser; the server only stores what the
browser reports (violations) and never decides to end an attempt.
"""

from __future__ import annotations

import random
from datetime import datetime
from typing import Callable

from supabase import Client

from .. import database
from ..auth import AuthContext
from ..clock import as_utc, utcnow
from ..errors import Forbidden, InvalidRequest, InvalidState, RecordNotFound
from ..logging_config import get_logger
from .models import (
    Answer,
    AssessmentCreate,
    AssessmentResponse,
    Candidate,
    CandidateQuestion,
    CandidateQuestionOption,
    CandidateStatus,
    QuestionCreate,
    QuestionResponse,
    SecurityViolation,
    SubmitAssessmentRequest,
    SubmitAssessmentResponse,
    TakeAssessmentResponse,
    ViolationRequest,
)

logger = get_logger("flexhunt.assessments")


def to_question_response(row: dict) -> QuestionResponse:
    """Convert DB question row to response model."""
    return QuestionResponse(
        id=row["id"],
        createdBy=row["created_by"],
        text=row["text"],
        options=row.get("options") or [],
        points=row.get("points", 1),
        createdAt=row.get("created_at"),
    )


def to_assessment_response(row: dict) -> AssessmentResponse:
    """Convert DB assessment row to response model."""
    return AssessmentResponse(
        id=row["id"],
        title=row["title"],
        jobPosting=row["job_posting"],
        createdBy=row["created_by"],
        questions=row.get("question_ids") or [],
        duration=row["duration"],
        startDate=row["start_date"],
        endDate=row["end_date"],
        passingScore=row["passing_score"],
        eligibleCandidates=row.get("eligible_candidates") or [],
        settings=row.get("settings") or {},
        createdAt=row.get("created_at"),
    )


def _dump_candidates(candidates: list[Candidate]) -> list[dict]:
    return [c.model_dump(mode="json") for c in candidates]


class AssessmentService:
    """Stateless service; one instance per request."""

    def __init__(
        self,
        db: Client,
        now: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
    ):
        self.db = db
        self._now = now
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_recruiter(caller: AuthContext) -> None:
        if not caller.is_recruiter:
            raise Forbidden("Recruiter access required")

    async def _load(self, assessment_id: str) -> AssessmentResponse:
        row = await database.get_assessment(self.db, assessment_id)
        if not row:
            raise RecordNotFound("Assessment not found", assessmentId=assessment_id)
        return to_assessment_response(row)

    @staticmethod
    def _invited_candidate(assessment: AssessmentResponse, user_id: str) -> Candidate:
        for candidate in assessment.eligibleCandidates:
            if candidate.candidate == user_id and candidate.status == CandidateStatus.invited:
                return candidate
        raise Forbidden("Not authorized to take this assessment")

    async def _save_candidates(self, assessment: AssessmentResponse) -> None:
        updated = await database.update_assessment(
            self.db,
            assessment.id,
            {"eligible_candidates": _dump_candidates(assessment.eligibleCandidates)},
        )
        if updated is None:
            raise RecordNotFound("Assessment not found", assessmentId=assessment.id)

    async def _update_candidate(self, assessment_id: str, user_id: str, **changes) -> Candidate:
        """Write one candidate's entry; the rest of the list is left alone."""
        row = await database.update_candidate(self.db, assessment_id, user_id, **changes)
        if row is None:
            # Submitted (or uninvited) since it was loaded
            raise Forbidden("Not authorized to take this assessment")
        return Candidate(**row)

    # ------------------------------------------------------------------
    # Recruiter operations
    # ------------------------------------------------------------------

    async def create_question(self, caller: AuthContext, question: QuestionCreate) -> QuestionResponse:
        self._require_recruiter(caller)
        row = await database.create_question(
            self.db,
            {
                "created_by": caller.user_id,
                "text": question.text,
                "options": [o.model_dump() for o in question.options],
                "points": question.points,
                "created_at": self._now().isoformat(),
            },
        )
        logger.info(f"Question created | id={row['id']} | by={caller.user_id}")
        return to_question_response(row)

    async def list_questions(self, caller: AuthContext) -> list[QuestionResponse]:
        self._require_recruiter(caller)
        rows = await database.list_questions_by_creator(self.db, caller.user_id)
        return [to_question_response(r) for r in rows]

    async def create_assessment(self, caller: AuthContext, assessment: AssessmentCreate) -> AssessmentResponse:
        self._require_recruiter(caller)

        if assessment.questions:
            found = await database.get_questions(self.db, assessment.questions)
            found_ids = {q["id"] for q in found}
            unknown = [qid for qid in assessment.questions if qid not in found_ids]
            if unknown:
                raise InvalidRequest("Unknown question ids", questionIds=unknown)

        row = await database.create_assessment(
            self.db,
            {
                "title": assessment.title,
                "job_posting": assessment.jobPosting,
                "created_by": caller.user_id,
                "question_ids": assessment.questions,
                "duration": assessment.duration,
                "start_date": assessment.startDate.isoformat(),
                "end_date": assessment.endDate.isoformat(),
                "passing_score": assessment.passingScore,
                "eligible_candidates": [],
                "settings": assessment.settings.model_dump(),
                "created_at": self._now().isoformat(),
            },
        )
        logger.info(f"Assessment created | id={row['id']} | by={caller.user_id}")
        return to_assessment_response(row)

    async def list_assessments(self, caller: AuthContext) -> list[AssessmentResponse]:
        self._require_recruiter(caller)
        rows = await database.list_assessments_by_creator(self.db, caller.user_id)
        return [to_assessment_response(r) for r in rows]

    async def update_candidates(
        self, caller: AuthContext, assessment_id: str, candidate_ids: list[str]
    ) -> AssessmentResponse:
        """Replace the eligible candidates; every listed candidate is invited now."""
        self._require_recruiter(caller)
        assessment = await self._load(assessment_id)
        if assessment.createdBy != caller.user_id:
            # Same answer as a missing assessment: don't leak other recruiters' ids
            raise RecordNotFound("Assessment not found", assessmentId=assessment_id)

        now = self._now()
        seen: set[str] = set()
        candidates = []
        for cid in candidate_ids:
            if cid in seen:
                continue
            seen.add(cid)
            candidates.append(
                Candidate(candidate=cid, status=CandidateStatus.invited, invitationSentAt=now)
            )

        assessment.eligibleCandidates = candidates
        await self._save_candidates(assessment)
        logger.info(f"Candidates updated | assessment={assessment_id} | count={len(candidates)}")
        return assessment

    # ------------------------------------------------------------------
    # Candidate operations
    # ------------------------------------------------------------------

    async def take(self, caller: AuthContext, assessment_id: str) -> TakeAssessmentResponse:
        """Questions for an invited candidate, with correct answers hidden."""
        assessment = await self._load(assessment_id)
        candidate = self._invited_candidate(assessment, caller.user_id)

        now = self._now()
        if now < as_utc(assessment.startDate) or now > as_utc(assessment.endDate):
            raise InvalidState("Assessment is not active")

        rows = await database.get_questions(self.db, assessment.questions)
        by_id = {r["id"]: r for r in rows}
        questions = [
            CandidateQuestion(
                id=qid,
                text=by_id[qid]["text"],
                options=[CandidateQuestionOption(text=o["text"]) for o in by_id[qid].get("options") or []],
                points=by_id[qid].get("points", 1),
            )
            for qid in assessment.questions
            if qid in by_id
        ]
        if assessment.settings.randomizeQuestions:
            self._rng.shuffle(questions)

        if candidate.startedAt is None:
            await self._update_candidate(
                assessment.id, caller.user_id, if_unset={"startedAt": now.isoformat()}
            )

        return TakeAssessmentResponse(
            id=assessment.id,
            title=assessment.title,
            duration=assessment.duration,
            questions=questions,
            settings=assessment.settings,
        )

    async def submit(
        self, caller: AuthContext, assessment_id: str, submission: SubmitAssessmentRequest
    ) -> SubmitAssessmentResponse:
        """Score a submission and close the candidate's attempt."""
        assessment = await self._load(assessment_id)
        candidate = self._invited_candidate(assessment, caller.user_id)

        rows = await database.get_questions(self.db, assessment.questions)
        by_id = {r["id"]: r for r in rows if r["id"] in assessment.questions}

        score = 0
        answers: list[Answer] = []
        answered: set[str] = set()
        for submitted in submission.answers:
            question = by_id.get(submitted.questionId)
            if question is None:
                raise InvalidRequest("Answer references an unknown question", questionId=submitted.questionId)
            if submitted.questionId in answered:
                raise InvalidRequest("Question answered more than once", questionId=submitted.questionId)
            options = question.get("options") or []
            if submitted.selectedOption >= len(options):
                raise InvalidRequest("Selected option out of range", questionId=submitted.questionId)

            answered.add(submitted.questionId)
            is_correct = bool(options[submitted.selectedOption].get("isCorrect"))
            if is_correct:
                score += question.get("points", 1)
            answers.append(
                Answer(
                    question=submitted.questionId,
                    selectedOption=submitted.selectedOption,
                    isCorrect=is_correct,
                )
            )

        candidate = await self._update_candidate(
            assessment.id,
            caller.user_id,
            fields={
                "status": CandidateStatus.completed.value,
                "completedAt": self._now().isoformat(),
                "score": score,
                "answers": [a.model_dump(mode="json") for a in answers],
            },
            violations=[v.model_dump(mode="json") for v in submission.securityViolations],
        )

        passed = score >= assessment.passingScore
        logger.info(
            f"Assessment submitted | assessment={assessment_id} | candidate={caller.user_id} | "
            f"score={score} | passed={passed} | violations={len(candidate.securityViolations)}"
        )

        max_score = None
        if assessment.settings.showResults:
            max_score = sum(q.get("points", 1) for q in by_id.values())
        return SubmitAssessmentResponse(score=score, passed=passed, maxScore=max_score)

    async def record_violation(
        self, caller: AuthContext, assessment_id: str, violation: ViolationRequest
    ) -> None:
        assessment = await self._load(assessment_id)
        self._invited_candidate(assessment, caller.user_id)
        entry = SecurityViolation(type=violation.type, timestamp=self._now(), details=violation.details)
        await self._update_candidate(
            assessment.id, caller.user_id, violations=[entry.model_dump(mode="json")]
        )
        logger.warning(
            f"Proctoring violation | assessment={assessment_id} | candidate={caller.user_id} | "
            f"type={violation.type.value}"
        )
