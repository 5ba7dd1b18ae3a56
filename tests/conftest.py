import os

# Must be set before nybenchmark.database builds its engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_TOKEN"] = "test-admin-token"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from nybenchmark.database import Base, get_db
from nybenchmark.importers.base import slugify
from nybenchmark.main import app, get_partisan
from nybenchmark.models import Document, Entity, Metric, Observation
from nybenchmark.partisan import PartisanCache
from nybenchmark.schemas import (
    AccountType,
    DataSource,
    DisplayFormat,
    EntityKind,
    SchoolLegalType,
    SourceType,
    ValueType,
    VerificationStatus,
)

PARTISAN_CSV = """Name,# Democrats,# Liberal not Dems,# Republicans,# Conservative not Reps,Unknown
Albany,20,1,15,3,0
Tompkins,10,0,4,0,0
"""


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs these for SAVEPOINT (Session.begin_nested) to work
    @event.listens_for(engine, "connect")
    def _no_implicit_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


class Factory:
    """Builds entities, metrics, documents and observations with sensible defaults."""

    def __init__(self, session: Session):
        self.session = session

    def entity(self, name: str, kind: EntityKind = EntityKind.CITY, **attrs) -> Entity:
        attrs.setdefault("slug", slugify(name))
        if kind == EntityKind.SCHOOL_DISTRICT:
            attrs.setdefault("school_legal_type", SchoolLegalType.CENTRAL)
        entity = Entity(name=name, kind=kind, **attrs)
        self.session.add(entity)
        self.session.flush()
        return entity

    def metric(self, key: str, **attrs) -> Metric:
        metric = self.session.scalars(select(Metric).where(Metric.key == key)).first()
        if metric is not None:
            return metric
        attrs.setdefault("label", key.replace("_", " ").title())
        attrs.setdefault("data_source", DataSource.OSC)
        if attrs.get("value_type", ValueType.NUMERIC) == ValueType.NUMERIC:
            attrs.setdefault("display_format", DisplayFormat.CURRENCY)
        metric = Metric(key=key, **attrs)
        self.session.add(metric)
        self.session.flush()
        return metric

    def document(self, entity: Entity, fiscal_year: int, doc_type: str = "osc_afr", **attrs) -> Document:
        document = self.session.scalars(
            select(Document).where(
                Document.entity_id == entity.id,
                Document.fiscal_year == fiscal_year,
                Document.doc_type == doc_type,
            )
        ).first()
        if document is not None:
            return document
        attrs.setdefault("title", f"{entity.name} {doc_type} {fiscal_year}")
        attrs.setdefault("source_url", "https://example.gov/report.pdf")
        attrs.setdefault("source_type", SourceType.PDF)
        document = Document(entity_id=entity.id, fiscal_year=fiscal_year, doc_type=doc_type, **attrs)
        self.session.add(document)
        self.session.flush()
        return document

    def observation(
        self,
        entity: Entity,
        metric_key: str,
        fiscal_year: int,
        value,
        doc_type: str = "osc_afr",
        status: VerificationStatus = VerificationStatus.VERIFIED,
        created_at=None,
        **metric_attrs,
    ) -> Observation:
        is_text = isinstance(value, str)
        if is_text:
            metric_attrs.setdefault("value_type", ValueType.TEXT)
        metric = self.metric(metric_key, **metric_attrs)
        document = self.document(entity, fiscal_year, doc_type)
        observation = Observation(
            entity_id=entity.id,
            metric_id=metric.id,
            document_id=document.id,
            fiscal_year=fiscal_year,
            value_numeric=None if is_text else Decimal(str(value)),
            value_text=value if is_text else None,
            page_reference="p. 1",
            verification_status=status,
        )
        if created_at is not None:
            observation.created_at = created_at
        self.session.add(observation)
        self.session.flush()
        return observation

    # OSC shorthands

    def expenditure(self, entity, key, year, amount, category="General Government", **attrs):
        attrs.setdefault("account_code", key.removeprefix("osc_").upper())
        attrs.setdefault("fund_code", attrs["account_code"][0])
        return self.observation(
            entity, key, year, amount,
            account_type=AccountType.EXPENDITURE, level_1_category=category, **attrs,
        )

    def revenue(self, entity, key, year, amount, category="Real Property Taxes", **attrs):
        attrs.setdefault("account_code", key.removeprefix("osc_").upper())
        attrs.setdefault("fund_code", attrs["account_code"][0])
        return self.observation(
            entity, key, year, amount,
            account_type=AccountType.REVENUE, level_1_category=category, **attrs,
        )

    def balance(self, entity, account_code, year, amount):
        return self.observation(
            entity, f"osc_{account_code.lower()}", year, amount,
            account_code=account_code, fund_code=account_code[0], account_type=AccountType.BALANCE_SHEET,
        )

    def population(self, entity, year, value):
        return self.observation(
            entity, "census_b01003_001e", year, value,
            doc_type="us_census_acs5", data_source=DataSource.CENSUS, display_format=DisplayFormat.INTEGER,
        )


@pytest.fixture
def factory(session):
    return Factory(session)


@pytest.fixture
def partisan_csv(tmp_path):
    path = tmp_path / "partisan.csv"
    path.write_text(PARTISAN_CSV)
    return path


@pytest.fixture
def client(session, partisan_csv):
    app.dependency_overrides[get_db] = lambda: session
    app.dependency_overrides[get_partisan] = lambda: PartisanCache(partisan_csv)
    yield TestClient(app)
    app.dependency_overrides.clear()
