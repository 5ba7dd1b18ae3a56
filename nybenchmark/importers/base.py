"""Shared core for bulk importers.

Every importer follows the same contract:
1. Resolve an Entity by a source identifier (FIPS code, OSC municipal code), cached
2. Find-or-create a Metric by deterministic key
3. Find-or-create one Document per (entity, fiscal_year) for the bulk source
4. Upsert one Observation per (entity, metric, fiscal_year): created, updated or unchanged

Find-or-create runs inside a savepoint. If a concurrent run inserted the same
natural key first, the unique constraint fires and the winner is re-read.
"""

import logging
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import ChangeLog, Document, Entity, Metric, Observation
from ..schemas import (
    DataSource,
    DisplayFormat,
    DocumentCreate,
    EntityCreate,
    EntityKind,
    MetricCreate,
    SourceType,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class ImportOutcome(str, Enum):
    """What happened to one observation during an import."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    WOULD_CREATE = "would_create"
    WOULD_UPDATE = "would_update"


class ImportStats(BaseModel):
    """Counters from one importer run."""

    source: str = Field(description="Importer name")
    rows_processed: int = 0
    rows_skipped: int = 0
    entities_created: int = 0
    entities_not_found: int = 0
    metrics_created: int = 0
    documents_created: int = 0
    observations_created: int = 0
    observations_updated: int = 0
    observations_unchanged: int = 0
    observations_would_create: int = 0
    observations_would_update: int = 0
    errors: list[str] = Field(default_factory=list)

    def record(self, outcome: ImportOutcome) -> None:
        field = f"observations_{outcome.value}"
        setattr(self, field, getattr(self, field) + 1)

    @property
    def observations_written(self) -> int:
        return self.observations_created + self.observations_updated

    def summary(self) -> list[str]:
        """Non-zero counters as printable lines, errors last."""
        lines = [
            f"{name.replace('_', ' ').capitalize()}: {value:,}"
            for name, value in self.model_dump(exclude={"source", "errors"}).items()
            if value
        ]
        if self.errors:
            lines.append(f"Errors ({len(self.errors)}):")
            lines.extend(f"  - {err}" for err in self.errors[:20])
        return lines


def slugify(name: str) -> str:
    """'County of St. Lawrence' -> 'county-of-st-lawrence'."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def to_cents(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class BulkImporter:
    """Base class: subclasses set the class attributes and build metric/document fields."""

    source_name = "bulk_import"
    data_source = DataSource.MANUAL
    doc_type = "bulk_data"

    def __init__(self, session: Session, dry_run: bool = False):
        self.session = session
        self.dry_run = dry_run
        self.stats = ImportStats(source=self.source_name)
        self._entity_cache: dict[tuple, Entity | None] = {}
        self._metric_cache: dict[str, Metric] = {}

    @property
    def changed_by(self) -> str:
        return f"system:{self.source_name}"

    @property
    def errors(self) -> list[str]:
        return self.stats.errors

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def find_entity(self, column: str, identifier: str, kind: EntityKind | None = None) -> Entity | None:
        """Look up an entity by a source identifier column. Misses are cached too."""
        cache_key = (column, identifier, kind)
        if cache_key not in self._entity_cache:
            stmt = select(Entity).where(getattr(Entity, column) == identifier)
            if kind is not None:
                stmt = stmt.where(Entity.kind == kind)
            entity = self.session.scalars(stmt).first()
            if entity is None:
                logger.debug(f"No entity with {column}={identifier}")
            self._entity_cache[cache_key] = entity
        return self._entity_cache[cache_key]

    # -------------------------------------------------------------------------
    # Insert-or-fetch
    # -------------------------------------------------------------------------

    def insert_or_fetch(self, model, lookup: dict, attributes: dict, schema=None):
        """Return (row, created). Tolerates a concurrent insert of the same key.

        With a write schema, a new row's fields are validated through it first
        and a pydantic ValidationError propagates.
        """
        existing = self.session.scalars(select(model).filter_by(**lookup)).first()
        if existing is not None:
            return existing, False

        if schema is not None:
            fields = schema(**lookup, **attributes).model_dump(exclude_unset=True)
            attributes = {name: value for name, value in fields.items() if name not in lookup}

        row = model(**lookup, **attributes)
        try:
            with self.session.begin_nested():
                self.session.add(row)
        except IntegrityError:
            logger.info(f"{model.__name__} {lookup} inserted concurrently, re-reading")
            return self.session.scalars(select(model).filter_by(**lookup)).one(), False
        return row, True

    def insert_or_fetch_entity(self, lookup: dict, attributes: dict) -> tuple[Entity, bool]:
        return self.insert_or_fetch(Entity, lookup, attributes, schema=EntityCreate)

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    def metric_attributes(self, key: str) -> dict:
        """Fields for a new metric. Subclasses override."""
        return {
            "label": key.replace("_", " ").title(),
            "display_format": DisplayFormat.CURRENCY,
            "data_source": self.data_source,
        }

    def find_or_create_metric(self, key: str, **overrides) -> Metric | None:
        """Existing metric by key, or a new one. In a dry run, never creates."""
        if key in self._metric_cache:
            return self._metric_cache[key]

        if self.dry_run:
            metric = self.session.scalars(select(Metric).where(Metric.key == key)).first()
            if metric is not None:
                self._metric_cache[key] = metric
            return metric

        attributes = {**self.metric_attributes(key), **overrides}
        metric, created = self.insert_or_fetch(Metric, {"key": key}, attributes, schema=MetricCreate)
        if created:
            self.stats.metrics_created += 1
            logger.info(f"Created metric {key}")
        self._metric_cache[key] = metric
        return metric

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def document_attributes(self, entity: Entity, fiscal_year: int) -> dict:
        """Fields for a new document. Subclasses override."""
        raise NotImplementedError

    def find_or_create_document(self, entity: Entity, fiscal_year: int) -> Document | None:
        lookup = {"entity_id": entity.id, "fiscal_year": fiscal_year, "doc_type": self.doc_type}
        if self.dry_run:
            return self.session.scalars(select(Document).filter_by(**lookup)).first()

        attributes = {"source_type": SourceType.BULK_DATA, **self.document_attributes(entity, fiscal_year)}
        document, created = self.insert_or_fetch(Document, lookup, attributes, schema=DocumentCreate)
        if created:
            self.stats.documents_created += 1
        return document

    # -------------------------------------------------------------------------
    # Observations
    # -------------------------------------------------------------------------

    def upsert_observation(
        self,
        entity: Entity,
        metric_key: str,
        document: Document | None,
        fiscal_year: int,
        value,
        page_reference: str,
    ) -> ImportOutcome:
        """Create, update or leave alone the observation for (entity, metric, fiscal_year).

        Numbers are compared at cent precision. A changed value is overwritten
        and the old value recorded in the ChangeLog.
        """
        metric = self.find_or_create_metric(metric_key)
        is_text = isinstance(value, str)
        new_value = value.strip() if is_text else to_cents(value)

        existing = None
        if metric is not None:
            existing = self.session.scalars(
                select(Observation).where(
                    Observation.entity_id == entity.id,
                    Observation.metric_id == metric.id,
                    Observation.fiscal_year == fiscal_year,
                )
            ).first()

        if existing is not None:
            outcome = self._reconcile_observation(existing, document, new_value, is_text, page_reference)
        elif self.dry_run or metric is None or document is None:
            outcome = ImportOutcome.WOULD_CREATE
        else:
            outcome = self._create_observation(
                entity, metric, document, fiscal_year, new_value, is_text, page_reference
            )

        self.stats.record(outcome)
        return outcome

    def _create_observation(self, entity, metric, document, fiscal_year, value, is_text, page_reference):
        now = datetime.utcnow()
        lookup = {"entity_id": entity.id, "metric_id": metric.id, "fiscal_year": fiscal_year}
        attributes = {
            "document_id": document.id,
            "value_numeric": None if is_text else value,
            "value_text": value if is_text else None,
            "page_reference": page_reference,
            "verification_status": VerificationStatus.VERIFIED,
            "verified_by": self.changed_by,
            "verified_at": now,
        }
        observation, created = self.insert_or_fetch(Observation, lookup, attributes)
        if created:
            return ImportOutcome.CREATED
        return self._reconcile_observation(observation, document, value, is_text, page_reference)

    def _reconcile_observation(self, observation, document, value, is_text, page_reference):
        """Compare an existing observation with the incoming value, updating it if they differ."""
        old_value = observation.value_text if is_text else observation.value_numeric
        if old_value is not None and not is_text:
            old_value = to_cents(old_value)
        if old_value == value:
            return ImportOutcome.UNCHANGED
        if self.dry_run:
            return ImportOutcome.WOULD_UPDATE
        self._update_observation(observation, document, value, is_text, page_reference)
        return ImportOutcome.UPDATED

    def _update_observation(self, observation, document, value, is_text, page_reference):
        field = "value_text" if is_text else "value_numeric"
        old_value = getattr(observation, field)
        setattr(observation, field, value)
        if document is not None:
            observation.document_id = document.id
        observation.page_reference = page_reference

        self.session.add(ChangeLog(
            table_name=Observation.__tablename__,
            record_id=observation.id,
            change_type="update",
            field_name=field,
            old_value=None if old_value is None else str(old_value),
            new_value=str(value),
            changed_by=self.changed_by,
            change_reason="Value changed at source",
        ))

    def commit(self) -> None:
        if self.dry_run:
            self.session.rollback()
        else:
            self.session.commit()
