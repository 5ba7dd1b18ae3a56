"""Cross-city leaderboards for the landing page.

Three rankings for the most recent year where at least half of all cities
have expenditure data:
- Fund balance as % of total expenditures
- Debt service as % of total expenditures
- Per-capita spending (total expenditures / population)
"""

import logging
from decimal import Decimal
from typing import Literal
from uuid import UUID

from sqlalchemy.orm import Session

from .accounting import (
    DEBT_SERVICE_CATEGORY,
    POPULATION_METRIC_KEY,
    fund_balance_codes,
    round_half_up,
)
from .models import Entity, Metric
from .queries import (
    covered_years,
    entities_by_id,
    entity_counts_by_year,
    entity_ids_of_kind,
    latest_values_at_or_before,
    sum_by_entity,
)
from .schemas import AccountType, CityRankings, EntityKind, RankedEntity

logger = logging.getLogger(__name__)

RankingFormat = Literal["percentage", "currency"]

COVERAGE_PERCENT = 50


def build_ranking(
    numerators: dict[UUID, Decimal],
    denominators: dict[UUID, Decimal | None],
    value_format: RankingFormat,
    entities: dict[UUID, Entity],
) -> list[RankedEntity]:
    """Join two per-entity aggregates into a ranked list, highest value first.

    Only entities present in both maps are ranked. A missing or zero
    denominator leaves the ratio undefined, so the entity is left out.
    Percentages are rounded to one decimal, currency to a whole number.
    Equal values are ordered by entity name.
    """
    ranked = []
    for entity_id in numerators.keys() & denominators.keys():
        entity = entities.get(entity_id)
        denominator = denominators[entity_id]
        if entity is None or denominator is None or denominator == 0:
            continue

        ratio = float(numerators[entity_id]) / float(denominator)
        if value_format == "percentage":
            value = round_half_up(ratio * 100, 1)
        else:
            value = round_half_up(ratio, 0)
        ranked.append(RankedEntity(name=entity.name, slug=entity.slug, value=value))

    ranked.sort(key=lambda r: (-r.value, r.name))
    return ranked


def most_recent_expenditure_year(session: Session, city_ids: list[UUID]) -> int | None:
    """Most recent fiscal year where at least half of all cities report expenditures."""
    counts = entity_counts_by_year(session, city_ids, Metric.account_type == AccountType.EXPENDITURE)
    years = covered_years(counts, len(city_ids), COVERAGE_PERCENT)
    return years[-1] if years else None


def total_expenditures_by_entity(session: Session, city_ids: list[UUID], year: int) -> dict[UUID, Decimal]:
    return sum_by_entity(session, city_ids, year, Metric.account_type == AccountType.EXPENDITURE)


def fund_balances_by_entity(session: Session, city_ids: list[UUID], year: int) -> dict[UUID, Decimal]:
    return sum_by_entity(session, city_ids, year, Metric.account_code.in_(fund_balance_codes(year)))


def debt_service_by_entity(session: Session, city_ids: list[UUID], year: int) -> dict[UUID, Decimal]:
    return sum_by_entity(session, city_ids, year, Metric.level_1_category == DEBT_SERVICE_CATEGORY)


def population_by_entity(session: Session, city_ids: list[UUID], year: int) -> dict[UUID, Decimal]:
    """Latest census population at or before the ranking year."""
    latest = latest_values_at_or_before(session, POPULATION_METRIC_KEY, city_ids, year)
    return {entity_id: value for entity_id, (_, value) in latest.items()}


def load_city_rankings(session: Session) -> CityRankings:
    """Build all three city leaderboards. Empty when no year has enough coverage."""
    city_ids = entity_ids_of_kind(session, EntityKind.CITY)
    year = most_recent_expenditure_year(session, city_ids)
    if year is None:
        logger.info("No fiscal year with expenditure data for half of all cities")
        return CityRankings(year=None)

    expenditures = total_expenditures_by_entity(session, city_ids, year)
    if not expenditures:
        return CityRankings(year=year)

    population = population_by_entity(session, city_ids, year)
    fund_balances = fund_balances_by_entity(session, city_ids, year)
    debt_service = debt_service_by_entity(session, city_ids, year)
    entities = entities_by_id(session, city_ids)

    return CityRankings(
        year=year,
        fund_balance=build_ranking(fund_balances, expenditures, "percentage", entities),
        debt_service=build_ranking(debt_service, expenditures, "percentage", entities),
        per_capita=build_ranking(expenditures, population, "currency", entities),
    )
