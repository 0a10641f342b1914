import logging
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from report_card.config import settings
from report_card.exceptions import ValidationError
from report_card.schemas import (
    PromotionAction,
    PromotionDecision,
    PromotionStatus,
    StudentForPromotion,
    SubjectTotal,
)

logger = logging.getLogger(__name__)

EligibilityPolicy = Callable[[Sequence[SubjectTotal]], bool]

BULK_PROMOTE_REMARKS = "Bulk promote - qualifying"
BULK_REPEAT_REMARKS = "Bulk repeat - non-qualifying"

# ------------------------
# Eligibility
# ------------------------
def all_subjects_passed(subject_totals: Sequence[SubjectTotal]) -> bool:
    """Strict rule: every evaluated subject reaches its pass mark."""
    if not subject_totals:
        return False
    passed = sum(1 for subject in subject_totals if subject.total >= subject.pass_threshold)
    return passed == len(subject_totals)


def minimum_passes(required: int) -> EligibilityPolicy:
    """Policy factory: at least `required` subjects passed."""
    if required < 1:
        raise ValueError("required must be at least 1")

    def policy(subject_totals: Sequence[SubjectTotal]) -> bool:
        passed = sum(1 for subject in subject_totals if subject.total >= subject.pass_threshold)
        return passed >= required

    return policy


def is_eligible_for_promotion(
    subject_totals: Sequence[SubjectTotal],
    policy: EligibilityPolicy = all_subjects_passed,
) -> bool:
    return policy(subject_totals)


# ------------------------
# Decisions
# ------------------------
def evaluate_promotion_default(
    qualifies_for_promotion: bool,
    suggested_class_id: Optional[str],
    current_class_id: Optional[str],
    student_id: Optional[str] = None,
) -> PromotionDecision:
    if qualifies_for_promotion:
        return PromotionDecision(
            student_id=student_id,
            action=PromotionAction.PROMOTE,
            to_class_id=suggested_class_id,
        )
    return PromotionDecision(
        student_id=student_id,
        action=PromotionAction.REPEAT,
        to_class_id=current_class_id,
    )


def initial_decisions(
    students: Sequence[StudentForPromotion],
    suggested_class_id: Optional[str],
    current_class_id: Optional[str],
) -> Dict[str, PromotionDecision]:
    """Recorded decisions for processed students, defaults for the rest."""
    decisions = {}
    for student in students:
        if student.is_already_processed:
            action = (
                PromotionAction.PROMOTE
                if student.promotion_status == PromotionStatus.PROMOTED
                else PromotionAction.REPEAT
            )
            decisions[student.id] = PromotionDecision(
                student_id=student.id,
                action=action,
                to_class_id=student.promoted_to_class_id,
                remarks=student.promotion_remarks or "",
            )
        else:
            decisions[student.id] = evaluate_promotion_default(
                student.qualifies_for_promotion,
                suggested_class_id,
                current_class_id,
                student_id=student.id,
            )
    return decisions


def change_decision(
    decision: PromotionDecision,
    action: PromotionAction,
    suggested_class_id: Optional[str],
    current_class_id: Optional[str],
    to_class_id: Optional[str] = None,
) -> PromotionDecision:
    if action == PromotionAction.PROMOTE:
        target = to_class_id or suggested_class_id
    else:
        target = current_class_id
    return decision.model_copy(update={"action": action, "to_class_id": target})


def promote_all_qualifying(
    students: Sequence[StudentForPromotion],
    decisions: Mapping[str, PromotionDecision],
    suggested_class_id: Optional[str],
) -> Dict[str, PromotionDecision]:
    updated = dict(decisions)
    count = 0
    for student in students:
        if not student.is_already_processed and student.qualifies_for_promotion:
            updated[student.id] = PromotionDecision(
                student_id=student.id,
                action=PromotionAction.PROMOTE,
                to_class_id=suggested_class_id,
                remarks=BULK_PROMOTE_REMARKS,
            )
            count += 1
    logger.info("Set %d qualifying students to promote", count)
    return updated


def repeat_all_non_qualifying(
    students: Sequence[StudentForPromotion],
    decisions: Mapping[str, PromotionDecision],
    current_class_id: Optional[str],
) -> Dict[str, PromotionDecision]:
    updated = dict(decisions)
    count = 0
    for student in students:
        if not student.is_already_processed and not student.qualifies_for_promotion:
            updated[student.id] = PromotionDecision(
                student_id=student.id,
                action=PromotionAction.REPEAT,
                to_class_id=current_class_id,
                remarks=BULK_REPEAT_REMARKS,
            )
            count += 1
    logger.info("Set %d non-qualifying students to repeat", count)
    return updated


# ------------------------
# Teacher override
# ------------------------
def validate_override_reason(reason: Optional[str]) -> bool:
    if reason is None:
        return False
    return len(reason.strip()) >= settings.MIN_OVERRIDE_REASON_LENGTH


def apply_override(
    decision: PromotionDecision,
    action: PromotionAction,
    reason: str,
    suggested_class_id: Optional[str],
    current_class_id: Optional[str],
) -> PromotionDecision:
    """Flip a decision by hand. The reason is kept as the decision's remarks."""
    if not validate_override_reason(reason):
        raise ValidationError(
            f"Reason must be at least {settings.MIN_OVERRIDE_REASON_LENGTH} characters",
            error_code="OVERRIDE_REASON_TOO_SHORT",
            details={"student_id": decision.student_id, "length": len((reason or "").strip())},
        )
    if action == PromotionAction.PROMOTE and not suggested_class_id:
        raise ValidationError(
            "No next class available",
            error_code="NO_NEXT_CLASS",
            details={"student_id": decision.student_id},
        )

    overridden = change_decision(decision, action, suggested_class_id, current_class_id)
    logger.info(
        "Override for student %s: %s -> %s",
        decision.student_id, decision.action.value, overridden.action.value,
    )
    return overridden.model_copy(update={"remarks": reason.strip()})


# ------------------------
# Processing
# ------------------------
def pending_decisions(
    students: Sequence[StudentForPromotion],
    decisions: Mapping[str, PromotionDecision],
) -> List[PromotionDecision]:
    processed = {student.id for student in students if student.is_already_processed}
    return [decision for student_id, decision in decisions.items() if student_id not in processed]


def validate_decisions_for_processing(decisions: Sequence[PromotionDecision]) -> None:
    without_target = [
        decision.student_id for decision in decisions
        if decision.action == PromotionAction.PROMOTE and not decision.to_class_id
    ]
    if without_target:
        raise ValidationError(
            "All promote decisions must have a target class selected",
            error_code="MISSING_TARGET_CLASS",
            details={"student_ids": without_target},
        )


def mark_processed(student: StudentForPromotion, decision: PromotionDecision) -> StudentForPromotion:
    """Pending -> Promoted | Repeating. Processed students are final for the cycle."""
    if student.is_already_processed:
        raise ValidationError(
            f"Student {student.id} has already been processed",
            error_code="ALREADY_PROCESSED",
            details={"student_id": student.id, "status": student.promotion_status.value},
        )
    validate_decisions_for_processing([decision])

    status = (
        PromotionStatus.PROMOTED
        if decision.action == PromotionAction.PROMOTE
        else PromotionStatus.REPEATED
    )
    logger.info("Student %s marked %s", student.id, status.value)
    return student.model_copy(update={
        "promotion_status": status,
        "promoted_to_class_id": decision.to_class_id,
        "promotion_remarks": decision.remarks or None,
    })


def process_promotions(
    students: Sequence[StudentForPromotion],
    decisions: Mapping[str, PromotionDecision],
) -> List[StudentForPromotion]:
    """Apply pending decisions; returns the whole cohort with processed students updated."""
    validate_decisions_for_processing(pending_decisions(students, decisions))
    return [
        student if student.is_already_processed else mark_processed(student, decisions[student.id])
        for student in students
    ]


def promotion_stats(students: Sequence[StudentForPromotion]) -> Dict[str, float]:
    total = len(students)
    promoted = sum(1 for s in students if s.promotion_status == PromotionStatus.PROMOTED)
    repeated = sum(1 for s in students if s.promotion_status == PromotionStatus.REPEATED)
    pending = total - promoted - repeated
    percentage = round(((promoted + repeated) / total) * 100, 1) if total else 0.0
    return {
        "total_students": total,
        "promoted": promoted,
        "repeated": repeated,
        "pending": pending,
        "percentage_complete": percentage,
    }
