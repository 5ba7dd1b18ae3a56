from uuid import uuid4

import pytest
from pydantic import ValidationError

from nybenchmark.schemas import (
    DocumentCreate,
    EntityCreate,
    EntityKind,
    MetricCreate,
    SchoolLegalType,
    SourceType,
    ValueType,
)


def test_entity_normalizes_slug_and_state() -> None:
    entity = EntityCreate(name="Albany County", slug="Albany-County", kind=EntityKind.COUNTY, state="ny")

    assert entity.slug == "albany-county"
    assert entity.state == "NY"


def test_entity_rejects_bad_slug() -> None:
    with pytest.raises(ValidationError):
        EntityCreate(name="Yonkers", slug="yonkers city")


def test_school_legal_type_only_for_school_districts() -> None:
    with pytest.raises(ValidationError, match="required for school districts"):
        EntityCreate(name="Dryden CSD", slug="dryden-csd", kind=EntityKind.SCHOOL_DISTRICT)
    with pytest.raises(ValidationError, match="must be blank"):
        EntityCreate(name="Yonkers", slug="yonkers", school_legal_type=SchoolLegalType.BIG_FIVE)

    district = EntityCreate(
        name="Dryden CSD", slug="dryden-csd",
        kind=EntityKind.SCHOOL_DISTRICT, school_legal_type=SchoolLegalType.CENTRAL,
    )
    assert district.school_legal_type == SchoolLegalType.CENTRAL


def test_numeric_metric_needs_display_format() -> None:
    with pytest.raises(ValidationError, match="display_format"):
        MetricCreate(key="osc_a1990_4", label="Contingent Account")

    text = MetricCreate(key="fsms_fiscal_stress_designation", label="Designation", value_type=ValueType.TEXT)
    assert text.display_format is None


def _document(**overrides):
    fields = {
        "entity_id": uuid4(),
        "title": "Yonkers AFR 2023",
        "doc_type": "osc_afr",
        "fiscal_year": 2023,
        "source_url": "https://www.osc.ny.gov/report.pdf",
    }
    fields.update(overrides)
    return DocumentCreate(**fields)


def test_document_source_url_must_be_http() -> None:
    assert _document().source_url.startswith("https://")
    with pytest.raises(ValidationError):
        _document(source_url="ftp://osc.ny.gov/report.pdf")
    with pytest.raises(ValidationError):
        _document(source_url="not a url")


def test_document_attachment_rules() -> None:
    pdf = {"file_name": "afr.pdf", "file_content_type": "application/pdf", "file_byte_size": 1024}

    assert _document(**pdf).file_name == "afr.pdf"
    with pytest.raises(ValidationError, match="web documents"):
        _document(source_type=SourceType.WEB, **pdf)
    with pytest.raises(ValidationError, match="PDF"):
        _document(**{**pdf, "file_content_type": "image/png"})
    with pytest.raises(ValidationError, match="20MB"):
        _document(**{**pdf, "file_byte_size": 21 * 1024 * 1024})
