"""Scatter data for school district comparisons.

The user picks an X and a Y metric from a fixed registry, a fiscal year, a
minimum enrollment and optionally a legal type. Points are grouped into one
series per legal type so each type gets its own color.
"""

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Entity, Metric, Observation
from .queries import entities_by_id, values_by_entity
from .schemas import (
    DisplayFormat,
    EntityKind,
    ScatterMetricOption,
    ScatterPoint,
    ScatterSeries,
    SchoolDistrictComparison,
    SchoolLegalType,
)

logger = logging.getLogger(__name__)

# Metrics available for X/Y axis selection
SCATTER_METRICS: dict[str, tuple[str, DisplayFormat]] = {
    "school_enrollment": ("Enrollment", DisplayFormat.INTEGER),
    "school_per_pupil_spending": ("Per-Pupil Spending", DisplayFormat.CURRENCY),
    "school_per_pupil_instruction": ("Per-Pupil Instruction", DisplayFormat.CURRENCY),
    "school_per_pupil_administration": ("Per-Pupil Administration", DisplayFormat.CURRENCY),
    "school_admin_overhead_pct": ("Administrative Overhead %", DisplayFormat.PERCENTAGE),
    "school_state_aid_dependency_pct": ("State Aid Dependency %", DisplayFormat.PERCENTAGE),
}

DEFAULT_X_AXIS = "school_enrollment"
DEFAULT_Y_AXIS = "school_per_pupil_spending"
ENROLLMENT_METRIC_KEY = "school_enrollment"

MIN_ENROLLMENT_OPTIONS = [0, 50, 100, 250, 500, 1000]

# Series order follows this dict
LEGAL_TYPE_COLORS = {
    SchoolLegalType.BIG_FIVE: "#dc2626",    # red, fiscally dependent on cities
    SchoolLegalType.SMALL_CITY: "#f97316",  # orange
    SchoolLegalType.CENTRAL: "#2563eb",     # blue, most common
    SchoolLegalType.UNION_FREE: "#16a34a",  # green
    SchoolLegalType.COMMON: "#8b5cf6",      # purple, rare
}

LEGAL_TYPE_LABELS = {
    SchoolLegalType.BIG_FIVE: "Big Five",
    SchoolLegalType.SMALL_CITY: "Small City",
    SchoolLegalType.CENTRAL: "Central",
    SchoolLegalType.UNION_FREE: "Union Free",
    SchoolLegalType.COMMON: "Common",
}


def scatter_metric_options() -> list[ScatterMetricOption]:
    return [
        ScatterMetricOption(key=key, label=label, format=fmt)
        for key, (label, fmt) in SCATTER_METRICS.items()
    ]


def select_axis(key: str | None, default: str) -> str:
    return key if key in SCATTER_METRICS else default


def select_min_enrollment(value: int | None) -> int:
    return value if value in MIN_ENROLLMENT_OPTIONS else 0


def select_district_type(value: str | None) -> SchoolLegalType | None:
    """Unknown or blank legal types mean all types."""
    try:
        return SchoolLegalType(value) if value else None
    except ValueError:
        return None


def available_scatter_years(session: Session) -> list[int]:
    """Fiscal years with any registry metric for a school district, most recent first."""
    stmt = (
        select(Observation.fiscal_year)
        .join(Metric, Observation.metric_id == Metric.id)
        .join(Entity, Observation.entity_id == Entity.id)
        .where(Entity.kind == EntityKind.SCHOOL_DISTRICT, Metric.key.in_(list(SCATTER_METRICS)))
        .distinct()
    )
    return sorted(session.scalars(stmt), reverse=True)


def select_year(year: int | None, available: list[int]) -> int | None:
    if year in available:
        return year
    return available[0] if available else None


def filter_by_enrollment(
    session: Session, district_ids: list[UUID], year: int, min_enrollment: int
) -> list[UUID]:
    enrollment = values_by_entity(session, ENROLLMENT_METRIC_KEY, district_ids, year)
    return [i for i in district_ids if int(enrollment.get(i) or 0) >= min_enrollment]


def filtered_district_ids(
    session: Session,
    district_type: SchoolLegalType | None,
    year: int,
    min_enrollment: int,
) -> list[UUID]:
    stmt = select(Entity.id).where(Entity.kind == EntityKind.SCHOOL_DISTRICT)
    if district_type is not None:
        stmt = stmt.where(Entity.school_legal_type == district_type)
    ids = list(session.scalars(stmt))
    if min_enrollment > 0:
        return filter_by_enrollment(session, ids, year, min_enrollment)
    return ids


def build_scatter_series(
    entity_ids: list[UUID],
    x_values: dict[UUID, Decimal],
    y_values: dict[UUID, Decimal],
    entities: dict[UUID, Entity],
) -> list[ScatterSeries]:
    """Group points into one series per legal type."""
    by_type: dict[SchoolLegalType | None, list[UUID]] = {}
    for entity_id in entity_ids:
        entity = entities.get(entity_id)
        by_type.setdefault(entity.school_legal_type if entity else None, []).append(entity_id)

    series = []
    for legal_type, color in LEGAL_TYPE_COLORS.items():
        ids = by_type.get(legal_type)
        if not ids:
            continue
        points = [
            ScatterPoint(
                x=float(x_values[i]),
                y=float(y_values[i]),
                name=entities[i].name,
                slug=entities[i].slug,
            )
            for i in ids
        ]
        points.sort(key=lambda p: p.name)
        series.append(ScatterSeries(name=LEGAL_TYPE_LABELS[legal_type], color=color, data=points))
    return series


def load_scatter_data(
    session: Session,
    x_axis: str,
    y_axis: str,
    year: int | None,
    min_enrollment: int = 0,
    district_type: SchoolLegalType | None = None,
) -> list[ScatterSeries]:
    """Series for districts with values on both axes in the selected year."""
    if year is None:
        return []
    district_ids = filtered_district_ids(session, district_type, year, min_enrollment)
    if not district_ids:
        return []

    x_values = values_by_entity(session, x_axis, district_ids, year)
    y_values = values_by_entity(session, y_axis, district_ids, year)
    common_ids = [i for i in district_ids if i in x_values and i in y_values]
    if not common_ids:
        return []

    return build_scatter_series(common_ids, x_values, y_values, entities_by_id(session, common_ids))


def load_school_district_comparison(
    session: Session,
    x_axis: str | None = None,
    y_axis: str | None = None,
    year: int | None = None,
    min_enrollment: int | None = None,
    district_type: str | None = None,
) -> SchoolDistrictComparison:
    """Normalize the user's selections and build the chart data."""
    x_axis = select_axis(x_axis, DEFAULT_X_AXIS)
    y_axis = select_axis(y_axis, DEFAULT_Y_AXIS)
    years = available_scatter_years(session)
    year = select_year(year, years)
    min_enrollment = select_min_enrollment(min_enrollment)
    legal_type = select_district_type(district_type)

    series = load_scatter_data(session, x_axis, y_axis, year, min_enrollment, legal_type)
    logger.debug(f"School scatter {x_axis} vs {y_axis} ({year}): {sum(len(s.data) for s in series)} points")

    return SchoolDistrictComparison(
        metrics=scatter_metric_options(),
        x_axis=x_axis,
        y_axis=y_axis,
        years=years,
        year=year,
        min_enrollment=min_enrollment,
        min_enrollment_options=MIN_ENROLLMENT_OPTIONS,
        district_type=legal_type,
        legal_type_colors={t.value: c for t, c in LEGAL_TYPE_COLORS.items()},
        legal_type_labels={t.value: label for t, label in LEGAL_TYPE_LABELS.items()},
        series=series,
    )
