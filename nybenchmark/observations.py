"""Write-side observation workflow: record, verify, flag, review queue.

Manually entered observations start PROVISIONAL. A reviewer checks each one
against its cited page and marks it VERIFIED or FLAGGED. Every review is
written to the ChangeLog.
"""

import logging
from collections import defaultdict
from datetime import datetime

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from .models import ChangeLog, Document, Entity, Metric, Observation
from .schemas import ObservationCreate, VerificationStatus

logger = logging.getLogger(__name__)

REVIEW_CHANGE_TYPES = {
    VerificationStatus.PROVISIONAL: "reopen",
    VerificationStatus.VERIFIED: "verify",
    VerificationStatus.FLAGGED: "flag",
}


class ObservationValidationError(ValueError):
    """An observation failed database-dependent validation.

    `errors` maps field name to messages, e.g.
    {"value_numeric": ["is required for this metric"]}.
    """

    def __init__(self, errors: dict[str, list[str]]):
        self.errors = dict(errors)
        summary = "; ".join(f"{field} {', '.join(msgs)}" for field, msgs in self.errors.items())
        super().__init__(f"Invalid observation: {summary}")


def record_observation(session: Session, payload: ObservationCreate, changed_by: str = "user") -> Observation:
    """Validate and add a provisional observation. Nothing is added on failure.

    The observation's fiscal year always comes from its document.
    """
    errors: dict[str, list[str]] = defaultdict(list)

    entity = session.get(Entity, payload.entity_id)
    metric = session.get(Metric, payload.metric_id)
    document = session.get(Document, payload.document_id)

    if entity is None:
        errors["entity_id"].append("does not exist")
    if metric is None:
        errors["metric_id"].append("does not exist")
    if document is None:
        errors["document_id"].append("does not exist")
    elif entity is not None and document.entity_id != entity.id:
        errors["document_id"].append("must belong to the same entity")

    if metric is not None:
        if metric.expects_numeric and payload.value_numeric is None:
            errors["value_numeric"].append("is required for this metric")
        elif metric.expects_text and payload.value_text is None:
            errors["value_text"].append("is required for this metric")

    if entity is not None and metric is not None and document is not None:
        duplicate = session.scalars(
            select(Observation.id).where(
                Observation.entity_id == entity.id,
                Observation.metric_id == metric.id,
                Observation.fiscal_year == document.fiscal_year,
            )
        ).first()
        if duplicate is not None:
            errors["metric_id"].append(
                f"already has a value for this entity in fiscal year {document.fiscal_year}"
            )

    if errors:
        raise ObservationValidationError(errors)

    observation = Observation(
        entity_id=entity.id,
        metric_id=metric.id,
        document_id=document.id,
        fiscal_year=document.fiscal_year,
        value_numeric=payload.value_numeric,
        value_text=payload.value_text,
        page_reference=payload.page_reference,
        pdf_page=payload.pdf_page,
        notes=payload.notes,
        verification_status=VerificationStatus.PROVISIONAL,
    )
    session.add(observation)
    session.flush()

    session.add(ChangeLog(
        table_name=Observation.__tablename__,
        record_id=observation.id,
        change_type="create",
        new_value=str(observation.value),
        changed_by=changed_by,
        source_reference=f"{document.title}, {payload.page_reference}",
    ))
    return observation


def _set_status(
    session: Session,
    observation: Observation,
    status: VerificationStatus,
    reviewer: str,
    reason: str | None = None,
) -> Observation:
    old_status = observation.verification_status
    observation.verification_status = status
    observation.verified_by = reviewer
    observation.verified_at = datetime.utcnow()

    session.add(ChangeLog(
        table_name=Observation.__tablename__,
        record_id=observation.id,
        change_type=REVIEW_CHANGE_TYPES[status],
        field_name="verification_status",
        old_value=old_status.value if old_status else None,
        new_value=status.value,
        changed_by=reviewer,
        change_reason=reason,
    ))
    session.flush()
    logger.info(f"Observation {observation.id}: {old_status} -> {status.value} by {reviewer}")
    return observation


def verify_observation(session: Session, observation: Observation, reviewer: str) -> Observation:
    return _set_status(session, observation, VerificationStatus.VERIFIED, reviewer)


def flag_observation(session: Session, observation: Observation, reviewer: str, reason: str) -> Observation:
    return _set_status(session, observation, VerificationStatus.FLAGGED, reviewer, reason)


def next_provisional_observation(session: Session, observation: Observation) -> Observation | None:
    """Next provisional observation after this one, wrapping to the start of the queue.

    Queue order is creation time, then id.
    """
    provisional = select(Observation).where(
        Observation.verification_status == VerificationStatus.PROVISIONAL
    )
    queue_order = (Observation.created_at, Observation.id)

    after = provisional.where(
        or_(
            Observation.created_at > observation.created_at,
            and_(Observation.created_at == observation.created_at, Observation.id > observation.id),
        )
    ).order_by(*queue_order)
    found = session.scalars(after.limit(1)).first()
    if found is not None:
        return found

    wrapped = provisional.where(Observation.id != observation.id).order_by(*queue_order)
    return session.scalars(wrapped.limit(1)).first()
