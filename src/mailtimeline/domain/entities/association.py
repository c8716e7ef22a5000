from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AssociationConfidence(str, Enum):
    EXACT = "exact"
    DOMAIN = "domain"
    AMBIGUOUS = "ambiguous"
    NONE = "none"


@dataclass(frozen=True)
class AssociationResult:
    business_id: Optional[str]
    contact_id: Optional[str]
    confidence: AssociationConfidence
    manual: bool = False

    @property
    def needs_review(self) -> bool:
        if self.manual:
            return False
        return self.confidence in (AssociationConfidence.AMBIGUOUS, AssociationConfidence.NONE)

    @classmethod
    def unmatched(cls) -> "AssociationResult":
        return cls(business_id=None, contact_id=None, confidence=AssociationConfidence.NONE)
