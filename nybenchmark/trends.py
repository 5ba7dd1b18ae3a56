"""Curated financial trends for a single entity's dashboard.

Series assembled (all year-keyed, ascending):
- Balance sheet: unassigned fund balance (A917) and cash position (A200 + A201)
- Debt service (level-1 category "Debt Service")
- Top 5 revenue categories and top 5 non-debt expenditure categories,
  ranked by the most recent year's total
- Derived ratios: fund balance % and debt service % of total expenditures

Plus hero stats: latest population, latest ratios, per-capita spending.
"""

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from .accounting import (
    CASH_CODES,
    DEBT_SERVICE_CATEGORY,
    FUND_BALANCE_CODE_VERSIONS,
    POPULATION_METRIC_KEY,
    UNASSIGNED_FUND_BALANCE_CODE,
    fund_balance_codes,
    percent_of,
    round_half_up,
)
from .models import Entity, Metric, Observation
from .queries import (
    has_category,
    latest_values_at_or_before,
    max_fiscal_year,
    not_category,
    sum_by_category,
    sum_by_year,
    sum_by_year_and_code,
)
from .schemas import AccountType, EntitySummary, EntityTrends, HeroStats, TrendSeries

logger = logging.getLogger(__name__)

BALANCE_SHEET_ACCOUNTS = {
    "unassigned_fund_balance": ((UNASSIGNED_FUND_BALANCE_CODE,), "Unassigned Fund Balance"),
    "cash_position": (CASH_CODES, "Cash Position"),
}

TOP_CATEGORY_LIMIT = 5


def _as_float(data: dict[int, Decimal]) -> dict[int, float]:
    return {year: float(value) for year, value in data.items()}


def load_balance_sheet_trends(session: Session, entity_id: UUID) -> dict[str, TrendSeries]:
    trends = {}
    for name, (codes, label) in BALANCE_SHEET_ACCOUNTS.items():
        data = sum_by_year(session, entity_id, Metric.account_code.in_(codes))
        if data:
            trends[name] = TrendSeries(label=label, account_type=AccountType.BALANCE_SHEET.value, data=_as_float(data))
    return trends


def load_debt_service_trends(session: Session, entity_id: UUID) -> dict[str, TrendSeries]:
    data = sum_by_year(session, entity_id, Metric.level_1_category == DEBT_SERVICE_CATEGORY)
    if not data:
        return {}
    return {
        DEBT_SERVICE_CATEGORY: TrendSeries(
            label=DEBT_SERVICE_CATEGORY,
            account_type=AccountType.EXPENDITURE.value,
            data=_as_float(data),
        )
    }


def rank_categories_by_value(totals: dict[str, Decimal], limit: int) -> list[str]:
    """Largest categories first; equal totals ordered by name."""
    ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [category for category, _ in ranked[:limit]]


def load_top_categories(
    session: Session,
    entity_id: UUID,
    account_type: AccountType,
    limit: int = TOP_CATEGORY_LIMIT,
    exclude: tuple[str, ...] = (),
) -> dict[str, TrendSeries]:
    """Trend series for the `limit` largest categories in the most recent year."""
    filters = [Metric.account_type == account_type, has_category()]
    if exclude:
        filters.append(not_category(*exclude))

    most_recent_year = max_fiscal_year(session, Observation.entity_id == entity_id, *filters)
    if most_recent_year is None:
        return {}

    totals = sum_by_category(session, entity_id, most_recent_year, *filters)
    trends = {}
    for category in rank_categories_by_value(totals, limit):
        data = sum_by_year(
            session, entity_id,
            Metric.account_type == account_type,
            Metric.level_1_category == category,
        )
        trends[category] = TrendSeries(label=category, account_type=account_type.value, data=_as_float(data))
    return trends


def total_expenditures_by_year(session: Session, entity_id: UUID) -> dict[int, Decimal]:
    return sum_by_year(session, entity_id, Metric.account_type == AccountType.EXPENDITURE)


def fund_balances_by_year(session: Session, entity_id: UUID) -> dict[int, Decimal]:
    """Fund balance per year using the account codes in effect that year."""
    all_codes = {code for version in FUND_BALANCE_CODE_VERSIONS for code in version.codes}
    by_code = sum_by_year_and_code(session, entity_id, all_codes)

    balances = {}
    for year in sorted(by_code):
        codes = fund_balance_codes(year)
        amounts = [by_code[year][code] for code in codes if code in by_code[year]]
        if amounts:
            balances[year] = sum(amounts, Decimal(0))
    return balances


def ratio_series(numerators: dict[int, Decimal], denominators: dict[int, Decimal]) -> dict[int, float]:
    """numerator / denominator * 100 for years where both exist and the denominator isn't zero."""
    ratios = {}
    for year in sorted(numerators.keys() & denominators.keys()):
        value = percent_of(numerators[year], denominators[year])
        if value is not None:
            ratios[year] = value
    return ratios


def load_ratio_trends(
    session: Session,
    entity_id: UUID,
    expenditures: dict[int, Decimal] | None = None,
) -> dict[str, TrendSeries]:
    if expenditures is None:
        expenditures = total_expenditures_by_year(session, entity_id)
    if not expenditures:
        return {}

    trends = {}
    fund_balance = ratio_series(fund_balances_by_year(session, entity_id), expenditures)
    if fund_balance:
        trends["fund_balance_pct"] = TrendSeries(
            label="Fund Balance % of Expenditures", account_type="ratio", data=fund_balance
        )
    debt_service = ratio_series(
        sum_by_year(session, entity_id, Metric.level_1_category == DEBT_SERVICE_CATEGORY), expenditures
    )
    if debt_service:
        trends["debt_service_pct"] = TrendSeries(
            label="Debt Service % of Expenditures", account_type="ratio", data=debt_service
        )
    return trends


def _latest(series: TrendSeries | None) -> float | None:
    if series is None or not series.data:
        return None
    return series.data[max(series.data)]


def load_hero_stats(
    session: Session,
    entity_id: UUID,
    expenditures: dict[int, Decimal],
    ratios: dict[str, TrendSeries],
) -> HeroStats:
    """Headline numbers. Per-capita is latest-year expenditures over latest population."""
    hero = HeroStats(
        fund_balance_pct=_latest(ratios.get("fund_balance_pct")),
        debt_service_pct=_latest(ratios.get("debt_service_pct")),
    )

    population_value = None
    population = latest_values_at_or_before(session, POPULATION_METRIC_KEY, [entity_id]).get(entity_id)
    if population is not None:
        hero.population_year, population_value = population
        hero.population = int(round_half_up(population_value, 0))

    if expenditures:
        hero.year = max(expenditures)
        if population_value:
            per_capita = Decimal(expenditures[hero.year]) / Decimal(population_value)
            hero.per_capita_spending = int(round_half_up(per_capita, 0))
    return hero


def load_entity_trends(session: Session, entity: Entity) -> EntityTrends:
    """Everything the entity dashboard charts, in one call."""
    expenditures = total_expenditures_by_year(session, entity.id)
    ratios = load_ratio_trends(session, entity.id, expenditures)

    return EntityTrends(
        entity=EntitySummary(name=entity.name, slug=entity.slug, kind=entity.kind),
        balance_sheet=load_balance_sheet_trends(session, entity.id),
        debt_service=load_debt_service_trends(session, entity.id),
        revenue=load_top_categories(session, entity.id, AccountType.REVENUE),
        expenditure=load_top_categories(
            session, entity.id, AccountType.EXPENDITURE, exclude=(DEBT_SERVICE_CATEGORY,)
        ),
        ratios=ratios,
        hero=load_hero_stats(session, entity.id, expenditures, ratios),
    )

