from enum import Enum
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from report_card.config import settings


# Subject configuration
class CompetencyDefinition(BaseModel):
    id: str
    name: str = ""
    max_score: float


class GradeBand(BaseModel):
    min_score: float
    max_score: float
    letter: str
    descriptor: str

    @model_validator(mode="after")
    def min_not_above_max(self):
        if self.min_score > self.max_score:
            raise ValueError('min_score must not exceed max_score')
        return self


# Marks
class SubjectAssessment(BaseModel):
    subject_name: str = ""
    competency_scores: Dict[str, float] = Field(default_factory=dict)
    project_score: float = Field(0, ge=0)
    eot_score: float = Field(0, ge=0)

    @field_validator('competency_scores')
    def scores_not_negative(cls, v):
        negative = [key for key, score in v.items() if score < 0]
        if negative:
            raise ValueError(f'competency scores must not be negative: {sorted(negative)}')
        return v


class SubjectTotal(BaseModel):
    subject_name: str
    total: float
    pass_threshold: float = settings.PASS_THRESHOLD

    @property
    def passed(self) -> bool:
        return self.total >= self.pass_threshold


# Promotion
class PromotionAction(str, Enum):
    PROMOTE = "PROMOTE"
    REPEAT = "REPEAT"


class PromotionStatus(str, Enum):
    PENDING = "PENDING"
    PROMOTED = "PROMOTED"
    REPEATED = "REPEATED"


class PromotionDecision(BaseModel):
    student_id: Optional[str] = None
    action: PromotionAction
    to_class_id: Optional[str] = None
    remarks: str = ""

    model_config = ConfigDict(frozen=True)


class StudentForPromotion(BaseModel):
    id: str
    full_name: str = ""
    qualifies_for_promotion: bool = False
    promotion_status: PromotionStatus = PromotionStatus.PENDING
    promoted_to_class_id: Optional[str] = None
    promotion_remarks: Optional[str] = None

    @property
    def is_already_processed(self) -> bool:
        return self.promotion_status != PromotionStatus.PENDING
