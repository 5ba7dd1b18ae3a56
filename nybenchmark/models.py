"""SQLAlchemy models for NY municipal finance data.

Data Architecture Overview:
- Entity is the government unit every fact hangs off (city, county, school district, ...)
- Metric defines WHAT is measured; Document is WHERE it was reported
- Observation is ONE FACT: a metric value for an entity in a fiscal year, cited to a document
- All value changes and reviews tracked via ChangeLog audit trail

Key Concepts:
- Natural key of an Observation: (entity, metric, fiscal_year). Importers upsert on it.
- Observation.fiscal_year always equals its Document's fiscal_year
- OSC metrics carry AFR account classification (account_code, fund_code, categories)
- Derived metrics carry a formula string and data_source=derived

References:
- See nybenchmark/schemas.py for enums and Pydantic validation models
- See nybenchmark/accounting.py for account code conventions
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .formatting import format_numeric
from .schemas import (
    AccountType,
    BoardSelection,
    DataSource,
    DisplayFormat,
    EntityKind,
    ExecutiveSelection,
    FiscalAutonomy,
    GovernmentStructure,
    SchoolLegalType,
    SourceType,
    ValueType,
    VerificationStatus,
)

# New York City files audited statements separately and is not expected in OSC data
OSC_EXEMPT_SLUGS = frozenset({"nyc"})


class Entity(Base):
    """A government unit in New York State."""

    __tablename__ = "entities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), unique=True, nullable=False, index=True)
    kind: Mapped[EntityKind] = mapped_column(
        SQLEnum(EntityKind), nullable=False, default=EntityKind.CITY, index=True
    )
    state: Mapped[str] = mapped_column(String(2), nullable=False, default="NY")
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("entities.id"), index=True,
        doc="Fiscal parent, e.g. a Big Five school district's city"
    )

    # Governance
    government_structure: Mapped[GovernmentStructure | None] = mapped_column(SQLEnum(GovernmentStructure))
    fiscal_autonomy: Mapped[FiscalAutonomy | None] = mapped_column(SQLEnum(FiscalAutonomy))
    board_selection: Mapped[BoardSelection | None] = mapped_column(SQLEnum(BoardSelection))
    executive_selection: Mapped[ExecutiveSelection | None] = mapped_column(SQLEnum(ExecutiveSelection))
    icma_recognition_year: Mapped[int | None] = mapped_column(Integer)
    school_legal_type: Mapped[SchoolLegalType | None] = mapped_column(
        SQLEnum(SchoolLegalType), index=True,
        doc="Required for school districts, blank for everything else"
    )
    organization_note: Mapped[str | None] = mapped_column(Text)

    # Source identifiers
    osc_municipal_code: Mapped[str | None] = mapped_column(
        String(20), index=True,
        doc="12-digit OSC municipal code, e.g. '550262000000' for Yonkers"
    )
    fips_code: Mapped[str | None] = mapped_column(
        String(10), index=True,
        doc="Census FIPS place code (cities) or county code (counties)"
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    parent: Mapped["Entity"] = relationship(
        "Entity", remote_side=[id], back_populates="children"
    )
    children: Mapped[list["Entity"]] = relationship("Entity", back_populates="parent")
    documents: Mapped[list["Document"]] = relationship(
        "Document", back_populates="entity", cascade="all, delete-orphan"
    )
    observations: Mapped[list["Observation"]] = relationship(
        "Observation", back_populates="entity", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("name", "state", "kind", name="uq_entities_name_state_kind"),
    )

    @property
    def osc_filing_exempt(self) -> bool:
        return self.slug in OSC_EXEMPT_SLUGS

    def __repr__(self) -> str:
        return f"<Entity {self.slug} ({self.kind.value if self.kind else None})>"


class Metric(Base):
    """A named measurable quantity."""

    __tablename__ = "metrics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    key: Mapped[str] = mapped_column(String(120), unique=True, nullable=False, index=True)
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    unit: Mapped[str | None] = mapped_column(String(50))
    value_type: Mapped[ValueType] = mapped_column(
        SQLEnum(ValueType), nullable=False, default=ValueType.NUMERIC
    )
    display_format: Mapped[DisplayFormat | None] = mapped_column(SQLEnum(DisplayFormat))
    data_source: Mapped[DataSource] = mapped_column(
        SQLEnum(DataSource), nullable=False, default=DataSource.MANUAL, index=True
    )

    # AFR classification (OSC metrics only)
    account_code: Mapped[str | None] = mapped_column(String(20), index=True)
    account_type: Mapped[AccountType | None] = mapped_column(SQLEnum(AccountType), index=True)
    level_1_category: Mapped[str | None] = mapped_column(String(100), index=True)
    level_2_category: Mapped[str | None] = mapped_column(String(100))
    fund_code: Mapped[str | None] = mapped_column(String(10))
    function_code: Mapped[str | None] = mapped_column(String(20))
    object_code: Mapped[str | None] = mapped_column(String(20))

    formula: Mapped[str | None] = mapped_column(
        Text, doc="Derivation for calculated metrics, e.g. 'school_instruction / school_enrollment'"
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    observations: Mapped[list["Observation"]] = relationship("Observation", back_populates="metric")

    @property
    def is_derived(self) -> bool:
        return bool(self.formula)

    @property
    def expects_numeric(self) -> bool:
        return self.value_type == ValueType.NUMERIC

    @property
    def expects_text(self) -> bool:
        return self.value_type == ValueType.TEXT

    def format_value(self, raw_value) -> str | None:
        """Render a stored value for display."""
        if raw_value is None:
            return None
        if self.expects_text:
            return raw_value
        return format_numeric(raw_value, self.display_format)

    def __repr__(self) -> str:
        return f"<Metric {self.key}>"


class Document(Base):
    """A filed report, web page or bulk dataset that observations cite."""

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("entities.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    doc_type: Mapped[str] = mapped_column(String(50), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    source_url: Mapped[str] = mapped_column(Text, nullable=False)
    source_type: Mapped[SourceType] = mapped_column(
        SQLEnum(SourceType), nullable=False, default=SourceType.PDF
    )
    notes: Mapped[str | None] = mapped_column(Text)

    # Attachment metadata (file bytes are held by the storage service)
    file_name: Mapped[str | None] = mapped_column(String(255))
    file_content_type: Mapped[str | None] = mapped_column(String(100))
    file_byte_size: Mapped[int | None] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    entity: Mapped["Entity"] = relationship("Entity", back_populates="documents")
    observations: Mapped[list["Observation"]] = relationship(
        "Observation", back_populates="document", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("entity_id", "fiscal_year", "doc_type", name="uq_documents_entity_year_type"),
    )

    def __repr__(self) -> str:
        return f"<Document {self.doc_type} {self.fiscal_year}: {self.title}>"


class Observation(Base):
    """One metric value for one entity in one fiscal year, cited to a document."""

    __tablename__ = "observations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("entities.id"), nullable=False, index=True
    )
    metric_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("metrics.id"), nullable=False, index=True
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id"), nullable=False, index=True
    )
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    value_numeric: Mapped[Decimal | None] = mapped_column(Numeric(20, 2))
    value_text: Mapped[str | None] = mapped_column(Text)
    page_reference: Mapped[str] = mapped_column(String(100), nullable=False)
    pdf_page: Mapped[int | None] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)

    # Review
    verification_status: Mapped[VerificationStatus] = mapped_column(
        SQLEnum(VerificationStatus), nullable=False, default=VerificationStatus.PROVISIONAL, index=True
    )
    verified_by: Mapped[str | None] = mapped_column(String(100))
    verified_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    entity: Mapped["Entity"] = relationship("Entity", back_populates="observations")
    metric: Mapped["Metric"] = relationship("Metric", back_populates="observations")
    document: Mapped["Document"] = relationship("Document", back_populates="observations")

    __table_args__ = (
        UniqueConstraint("entity_id", "metric_id", "fiscal_year", name="uq_observations_natural_key"),
        Index("ix_observations_entity_year", "entity_id", "fiscal_year"),
    )

    @property
    def value(self):
        return self.value_numeric if self.value_numeric is not None else self.value_text

    def __repr__(self) -> str:
        return f"<Observation {self.entity_id} {self.metric_id} {self.fiscal_year}>"


class ChangeLog(Base):
    """Audit trail for observation changes.

    Rows are written when:
    - An importer overwrites a value that changed at the source
    - A reviewer verifies or flags an observation
    """

    __tablename__ = "change_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # What changed
    table_name: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    record_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    change_type: Mapped[str] = mapped_column(
        String(20), nullable=False,
        doc="Type of change: create, update, verify, flag"
    )
    field_name: Mapped[str | None] = mapped_column(String(50))
    old_value: Mapped[str | None] = mapped_column(Text)
    new_value: Mapped[str | None] = mapped_column(Text)

    # Who/why
    changed_by: Mapped[str] = mapped_column(
        String(100), nullable=False,
        doc="Who made the change: 'system:census_import', 'user:reviewer', etc."
    )
    change_reason: Mapped[str | None] = mapped_column(Text)
    source_reference: Mapped[str | None] = mapped_column(Text)

    changed_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )

    __table_args__ = (
        Index("ix_change_log_table_record", "table_name", "record_id"),
    )

    def __repr__(self) -> str:
        return f"<ChangeLog {self.change_type} {self.table_name}.{self.field_name}>"
