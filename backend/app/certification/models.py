"""
models.py — Training and certification records.

Defines:
    • CertificationStatus — stored/derived status enum
    • TrainingModule      — immutable reference data
    • QuizQuestion        — one graded question of a module
    • UserProgress        — per (user, module) quiz state
    • Certification       — one per staff user, mutated only by the engine
    • CertificationView   — read model with lazily derived status
    • QuizResult          — grading outcome returned to the caller

═══════════════════════════════════════════════════════════════════════════
STATUS LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    NOT_CERTIFIED ──all required modules passed──▶ ACTIVE
    ACTIVE ──expires_at − now ≤ 30d──▶ EXPIRING_SOON     (derived at read)
    EXPIRING_SOON ──expires_at ≤ now──▶ EXPIRED          (derived at read)
    any ──validated regulatory sting as reporter──▶ EXPIRED (stored, forced)

Only NOT_CERTIFIED, ACTIVE and EXPIRED are ever written. EXPIRING_SOON
and time-based EXPIRED are computed from ``expires_at`` on every read.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class CertificationStatus(str, Enum):
    NOT_CERTIFIED = "not_certified"
    ACTIVE = "active"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"


def _generate_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class TrainingModule:
    """A training module. Reference data; never mutated by the core."""
    id: str
    title: str
    order_index: int
    is_required: bool = True
    description: str = ""
    estimated_minutes: int = 20

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "order_index": self.order_index,
            "is_required": self.is_required,
            "description": self.description,
            "estimated_minutes": self.estimated_minutes,
        }


@dataclass(frozen=True)
class QuizQuestion:
    id: str
    module_id: str
    question_text: str
    correct_answer: str
    order_index: int = 0
    options: tuple = ()
    explanation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        # The correct answer is never sent to clients
        return {
            "id": self.id,
            "module_id": self.module_id,
            "question_text": self.question_text,
            "options": list(self.options),
            "order_index": self.order_index,
        }


@dataclass
class UserProgress:
    """
    Quiz state for one (user, module).

    ``passed`` is monotonic: once a passing attempt is recorded it stays
    true. ``quiz_score`` is the latest attempt, ``best_score`` the highest.
    ``passed_at`` is the time of the most recent passing attempt.
    """
    user_id: str
    module_id: str
    id: str = field(default_factory=_generate_id)
    started_at: datetime = field(default_factory=_now)
    passed: bool = False
    quiz_score: Optional[int] = None
    best_score: Optional[int] = None
    quiz_attempts: int = 0
    passed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "module_id": self.module_id,
            "started_at": _iso(self.started_at),
            "passed": self.passed,
            "quiz_score": self.quiz_score,
            "best_score": self.best_score,
            "quiz_attempts": self.quiz_attempts,
            "passed_at": _iso(self.passed_at),
        }


@dataclass
class Certification:
    """
    A staff member's certification record.

    Invariants
    ----------
    - status ACTIVE ⇒ expires_at set (and in the future when written)
    - requires_recertification ⇒ status was forced to EXPIRED in the same
      write, and ``recertification_requested_at`` records when
    - related_incident_count never decreases
    """
    user_id: str
    id: str = field(default_factory=_generate_id)
    status: CertificationStatus = CertificationStatus.NOT_CERTIFIED
    certified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    related_incident_count: int = 0
    requires_recertification: bool = False
    recertification_reason: Optional[str] = None
    recertification_requested_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status.value,
            "certified_at": _iso(self.certified_at),
            "expires_at": _iso(self.expires_at),
            "related_incident_count": self.related_incident_count,
            "requires_recertification": self.requires_recertification,
            "recertification_reason": self.recertification_reason,
            "recertification_requested_at": _iso(self.recertification_requested_at),
        }


@dataclass
class CertificationView:
    """Read model: a certification with its status derived at ``as_of``."""
    user_id: str
    status: CertificationStatus
    as_of: datetime
    certified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    days_remaining: Optional[int] = None
    requires_recertification: bool = False
    recertification_reason: Optional[str] = None
    related_incident_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "status": self.status.value,
            "as_of": _iso(self.as_of),
            "certified_at": _iso(self.certified_at),
            "expires_at": _iso(self.expires_at),
            "days_remaining": self.days_remaining,
            "requires_recertification": self.requires_recertification,
            "recertification_reason": self.recertification_reason,
            "related_incident_count": self.related_incident_count,
        }


@dataclass(frozen=True)
class QuizResult:
    """Outcome of grading one submission."""
    passed: bool
    score: int
    correct_count: int
    total_questions: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "score": self.score,
            "correct_count": self.correct_count,
            "total_questions": self.total_questions,
        }
