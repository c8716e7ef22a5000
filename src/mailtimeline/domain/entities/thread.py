from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ThreadConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ThreadMethod(str, Enum):
    HEADER = "header"
    SUBJECT_PARTICIPANT = "subject-participant-heuristic"


@dataclass(frozen=True)
class ThreadAssignment:
    thread_id: str
    confidence: ThreadConfidence
    method: ThreadMethod


@dataclass(frozen=True)
class ThreadCandidate:
    """A stored message that shares a subject key with an incoming one."""
    thread_id: str
    external_id: str
    sent_at: datetime
    participants: frozenset[str]
