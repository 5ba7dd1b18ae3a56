"""County fiscal ratios vs. partisan composition of the county legislature.

Three scatter datasets, one point per county:
- Fund balance as % of expenditures
- Debt service as % of expenditures
- Operating ratio: revenues as % of expenditures (>100 = surplus)

X is the conservative share of council seats. Custodial-fund activity and
interfund transfers are left out of expenditure and revenue totals so
pass-through money isn't counted twice.
"""

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from .accounting import (
    DEBT_SERVICE_CATEGORY,
    INTERFUND_REVENUE_CATEGORY,
    INTERFUND_TRANSFER_CATEGORY,
    fund_balance_codes,
    round_half_up,
)
from .models import Entity, Metric
from .partisan import PartisanCache
from .queries import (
    covered_years,
    entities_by_id,
    entity_counts_by_year,
    entity_ids_of_kind,
    not_category,
    not_custodial,
    sum_by_entity,
)
from .schemas import AccountType, CountyComparison, EntityKind, ScatterPoint, ScatterSeries

logger = logging.getLogger(__name__)

COVERAGE_PERCENT = 70

# Background zones convey partisanship, so every dot shares one neutral color
DOT_COLOR = "#64748b"
SERIES_NAME = "Counties"


def _expenditure_filters():
    return (
        Metric.account_type == AccountType.EXPENDITURE,
        not_custodial(),
        not_category(INTERFUND_TRANSFER_CATEGORY),
    )


def _revenue_filters():
    return (
        Metric.account_type == AccountType.REVENUE,
        not_custodial(),
        not_category(INTERFUND_REVENUE_CATEGORY),
    )


def available_county_years(session: Session) -> list[int]:
    """Years (ascending) where at least 70% of counties report expenditures."""
    county_ids = entity_ids_of_kind(session, EntityKind.COUNTY)
    if not county_ids:
        return []
    counts = entity_counts_by_year(session, county_ids, *_expenditure_filters())
    return covered_years(counts, len(county_ids), COVERAGE_PERCENT)


def best_county_year(session: Session) -> int | None:
    years = available_county_years(session)
    return years[-1] if years else None


def total_county_expenditures(session: Session, county_ids: list[UUID], year: int) -> dict[UUID, Decimal]:
    return sum_by_entity(session, county_ids, year, *_expenditure_filters())


def total_county_revenues(session: Session, county_ids: list[UUID], year: int) -> dict[UUID, Decimal]:
    return sum_by_entity(session, county_ids, year, *_revenue_filters())


def county_fund_balances(session: Session, county_ids: list[UUID], year: int) -> dict[UUID, Decimal]:
    """A917 from FY2011 on, A910 + A911 before."""
    return sum_by_entity(session, county_ids, year, Metric.account_code.in_(fund_balance_codes(year)))


def county_debt_service(session: Session, county_ids: list[UUID], year: int) -> dict[UUID, Decimal]:
    return sum_by_entity(session, county_ids, year, Metric.level_1_category == DEBT_SERVICE_CATEGORY)


def build_partisan_scatter(
    entities: dict[UUID, Entity],
    expenditures: dict[UUID, Decimal],
    numerators: dict[UUID, Decimal],
    partisan: PartisanCache,
) -> list[ScatterSeries]:
    """One point per county with both aggregates and a partisan record."""
    points = []
    for entity_id in expenditures.keys() & numerators.keys():
        entity = entities.get(entity_id)
        denominator = expenditures[entity_id]
        if entity is None or not denominator:
            continue

        composition = partisan.lookup(entity.name)
        if composition is None:
            continue

        points.append(ScatterPoint(
            x=composition.conservative_pct,
            y=round_half_up(float(numerators[entity_id]) / float(denominator) * 100, 1),
            name=entity.name,
            slug=entity.slug,
        ))

    if not points:
        return []
    points.sort(key=lambda p: p.name)
    return [ScatterSeries(name=SERIES_NAME, color=DOT_COLOR, data=points)]


def load_fund_balance_scatter(session: Session, year: int, partisan: PartisanCache) -> list[ScatterSeries]:
    county_ids = entity_ids_of_kind(session, EntityKind.COUNTY)
    if not county_ids:
        return []
    return build_partisan_scatter(
        entities_by_id(session, county_ids),
        total_county_expenditures(session, county_ids, year),
        county_fund_balances(session, county_ids, year),
        partisan,
    )


def load_debt_service_scatter(session: Session, year: int, partisan: PartisanCache) -> list[ScatterSeries]:
    county_ids = entity_ids_of_kind(session, EntityKind.COUNTY)
    if not county_ids:
        return []
    return build_partisan_scatter(
        entities_by_id(session, county_ids),
        total_county_expenditures(session, county_ids, year),
        county_debt_service(session, county_ids, year),
        partisan,
    )


def load_operating_ratio_scatter(session: Session, year: int, partisan: PartisanCache) -> list[ScatterSeries]:
    county_ids = entity_ids_of_kind(session, EntityKind.COUNTY)
    if not county_ids:
        return []
    return build_partisan_scatter(
        entities_by_id(session, county_ids),
        total_county_expenditures(session, county_ids, year),
        total_county_revenues(session, county_ids, year),
        partisan,
    )


def load_county_comparison(
    session: Session,
    year: int | None = None,
    partisan: PartisanCache | None = None,
) -> CountyComparison:
    """All three datasets for a requested year, falling back to the best year."""
    partisan = partisan or PartisanCache()
    years = available_county_years(session)
    if year not in years:
        year = years[-1] if years else None

    if year is None:
        logger.info("No fiscal year with expenditure data for 70% of counties")
        return CountyComparison(years=years, year=None)

    return CountyComparison(
        years=years,
        year=year,
        fund_balance=load_fund_balance_scatter(session, year, partisan),
        debt_service=load_debt_service_scatter(session, year, partisan),
        operating_ratio=load_operating_ratio_scatter(session, year, partisan),
    )
