"""Aggregate query primitives over observations.

Every builder in this package reads the database through these functions.
They take an explicit Session, never raise on missing data, and return plain
dicts keyed by entity id or fiscal year.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ColumnElement, and_, distinct, func, or_, select
from sqlalchemy.orm import Session

from .accounting import CUSTODIAL_FUND_CODE
from .models import Entity, Metric, Observation
from .schemas import EntityKind


# =============================================================================
# Metric filters
# =============================================================================


def not_custodial() -> ColumnElement[bool]:
    """Exclude custodial-fund metrics. Metrics without a fund code are kept."""
    return or_(Metric.fund_code.is_(None), Metric.fund_code != CUSTODIAL_FUND_CODE)


def not_category(*categories: str) -> ColumnElement[bool]:
    """Exclude metrics in the given level-1 categories. Uncategorized metrics are kept."""
    return or_(Metric.level_1_category.is_(None), Metric.level_1_category.not_in(categories))


def has_category() -> ColumnElement[bool]:
    return and_(Metric.level_1_category.is_not(None), Metric.level_1_category != "")


# =============================================================================
# Entity cohorts
# =============================================================================


def entity_ids_of_kind(session: Session, kind: EntityKind) -> list[UUID]:
    return list(session.scalars(select(Entity.id).where(Entity.kind == kind)))


def entities_by_id(session: Session, ids: Iterable[UUID]) -> dict[UUID, Entity]:
    ids = list(ids)
    if not ids:
        return {}
    return {e.id: e for e in session.scalars(select(Entity).where(Entity.id.in_(ids)))}


def minimum_coverage(cohort_size: int, percent: int) -> int:
    """Smallest entity count that is at least `percent`% of the cohort."""
    return -(-cohort_size * percent // 100)


def covered_years(year_counts: dict[int, int], cohort_size: int, percent: int) -> list[int]:
    """Fiscal years (ascending) where enough of the cohort reported."""
    if cohort_size <= 0:
        return []
    required = minimum_coverage(cohort_size, percent)
    return sorted(year for year, count in year_counts.items() if count >= required)


# =============================================================================
# Aggregates
# =============================================================================


def _numeric_scope(*filters: ColumnElement[bool]):
    return (
        select()
        .select_from(Observation)
        .join(Metric, Observation.metric_id == Metric.id)
        .where(Observation.value_numeric.is_not(None), *filters)
    )


def sum_by_entity(
    session: Session,
    entity_ids: Iterable[UUID],
    fiscal_year: int,
    *filters: ColumnElement[bool],
) -> dict[UUID, Decimal]:
    """Sum of value_numeric per entity for one fiscal year."""
    entity_ids = list(entity_ids)
    if not entity_ids:
        return {}
    stmt = (
        _numeric_scope(
            Observation.entity_id.in_(entity_ids),
            Observation.fiscal_year == fiscal_year,
            *filters,
        )
        .add_columns(Observation.entity_id, func.sum(Observation.value_numeric))
        .group_by(Observation.entity_id)
    )
    return {entity_id: Decimal(str(total)) for entity_id, total in session.execute(stmt)}


def sum_by_year(
    session: Session,
    entity_id: UUID,
    *filters: ColumnElement[bool],
) -> dict[int, Decimal]:
    """Sum of value_numeric per fiscal year for one entity, ascending by year."""
    stmt = (
        _numeric_scope(Observation.entity_id == entity_id, *filters)
        .add_columns(Observation.fiscal_year, func.sum(Observation.value_numeric))
        .group_by(Observation.fiscal_year)
        .order_by(Observation.fiscal_year)
    )
    return {year: Decimal(str(total)) for year, total in session.execute(stmt)}


def sum_by_year_and_code(
    session: Session,
    entity_id: UUID,
    account_codes: Iterable[str],
) -> dict[int, dict[str, Decimal]]:
    """Per-year sums split by account code, for year-dependent code sets."""
    stmt = (
        _numeric_scope(Observation.entity_id == entity_id, Metric.account_code.in_(list(account_codes)))
        .add_columns(Observation.fiscal_year, Metric.account_code, func.sum(Observation.value_numeric))
        .group_by(Observation.fiscal_year, Metric.account_code)
    )
    result: dict[int, dict[str, Decimal]] = {}
    for year, code, total in session.execute(stmt):
        result.setdefault(year, {})[code] = Decimal(str(total))
    return result


def sum_by_category(
    session: Session,
    entity_id: UUID,
    fiscal_year: int,
    *filters: ColumnElement[bool],
) -> dict[str, Decimal]:
    """Sum of value_numeric per level-1 category for one entity and year."""
    stmt = (
        _numeric_scope(
            Observation.entity_id == entity_id,
            Observation.fiscal_year == fiscal_year,
            *filters,
        )
        .add_columns(Metric.level_1_category, func.sum(Observation.value_numeric))
        .group_by(Metric.level_1_category)
    )
    return {category: Decimal(str(total)) for category, total in session.execute(stmt)}


def max_fiscal_year(session: Session, *filters: ColumnElement[bool]) -> int | None:
    stmt = (
        select(func.max(Observation.fiscal_year))
        .join(Metric, Observation.metric_id == Metric.id)
        .where(*filters)
    )
    return session.scalar(stmt)


def entity_counts_by_year(
    session: Session,
    entity_ids: Iterable[UUID],
    *filters: ColumnElement[bool],
) -> dict[int, int]:
    """Number of distinct entities with a matching observation, per fiscal year."""
    entity_ids = list(entity_ids)
    if not entity_ids:
        return {}
    stmt = (
        select(Observation.fiscal_year, func.count(distinct(Observation.entity_id)))
        .join(Metric, Observation.metric_id == Metric.id)
        .where(Observation.entity_id.in_(entity_ids), *filters)
        .group_by(Observation.fiscal_year)
    )
    return {year: count for year, count in session.execute(stmt)}


def values_by_entity(
    session: Session,
    metric_key: str,
    entity_ids: Iterable[UUID],
    fiscal_year: int,
) -> dict[UUID, Decimal]:
    """One metric's value per entity for one year."""
    entity_ids = list(entity_ids)
    if not entity_ids:
        return {}
    stmt = (
        _numeric_scope(
            Observation.entity_id.in_(entity_ids),
            Observation.fiscal_year == fiscal_year,
            Metric.key == metric_key,
        )
        .add_columns(Observation.entity_id, Observation.value_numeric)
    )
    return {entity_id: value for entity_id, value in session.execute(stmt)}


def latest_values_at_or_before(
    session: Session,
    metric_key: str,
    entity_ids: Iterable[UUID],
    fiscal_year: int | None = None,
) -> dict[UUID, tuple[int, Decimal]]:
    """Most recent (year, value) per entity at or before `fiscal_year`.

    Census figures are not published every year, so a ranking year falls back
    to the closest earlier estimate. With no year given, the latest value wins.
    """
    entity_ids = list(entity_ids)
    if not entity_ids:
        return {}
    filters = [Observation.entity_id.in_(entity_ids), Metric.key == metric_key]
    if fiscal_year is not None:
        filters.append(Observation.fiscal_year <= fiscal_year)
    stmt = (
        _numeric_scope(*filters)
        .add_columns(Observation.entity_id, Observation.fiscal_year, Observation.value_numeric)
        .order_by(Observation.fiscal_year.desc())
    )
    latest: dict[UUID, tuple[int, Decimal]] = {}
    for entity_id, year, value in session.execute(stmt):
        latest.setdefault(entity_id, (year, value))
    return latest


def filed_years_by_entity(
    session: Session,
    entity_ids: Iterable[UUID],
    *filters: ColumnElement[bool],
) -> dict[UUID, set[int]]:
    """Distinct fiscal years with a matching observation, per entity."""
    entity_ids = list(entity_ids)
    if not entity_ids:
        return {}
    stmt = (
        select(Observation.entity_id, Observation.fiscal_year)
        .join(Metric, Observation.metric_id == Metric.id)
        .where(Observation.entity_id.in_(entity_ids), *filters)
        .distinct()
    )
    years: dict[UUID, set[int]] = {}
    for entity_id, year in session.execute(stmt):
        years.setdefault(entity_id, set()).add(year)
    return years
