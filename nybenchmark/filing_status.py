"""OSC filing status derived from observation history.

No tracking table: a city "filed" for a fiscal year if it has at least one
observation of an OSC-sourced metric for that year.

Categories (relative to an as-of year):
- current filer: filed for the as-of year (absent from every report bucket)
- chronic: 3+ years behind, or never filed
- sporadic: filed under 80% of the trailing 10-year window
- recent_lapse: otherwise
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from .accounting import round_half_up
from .models import Entity, Metric, OSC_EXEMPT_SLUGS
from .queries import covered_years, entity_counts_by_year, filed_years_by_entity
from .schemas import DataSource, EntityKind, EntitySummary, FilingCategory, FilingReport

logger = logging.getLogger(__name__)

CHRONIC_THRESHOLD = 3  # Years behind before classified as chronic
SPORADIC_RATE_THRESHOLD = 80.0  # Filing rate below this = sporadic
FILING_RATE_WINDOW = 10  # Years considered for the filing rate
MAJORITY_PERCENT = 50


def _is_osc():
    return Metric.data_source == DataSource.OSC


def osc_filed_years(session: Session, entity_id: UUID) -> set[int]:
    return filed_years_by_entity(session, [entity_id], _is_osc()).get(entity_id, set())


def last_osc_filing_year(session: Session, entity: Entity) -> int | None:
    """Most recent fiscal year with OSC-sourced data for this entity."""
    filed = osc_filed_years(session, entity.id)
    return max(filed) if filed else None


def missing_years(filed: set[int], years: range) -> list[int]:
    return [year for year in years if year not in filed]


def filing_rate(filed: set[int], years: range) -> float:
    """Percentage of `years` present in `filed`, to one decimal."""
    total = len(years)
    if total == 0:
        return 0.0
    missing = len(missing_years(filed, years))
    return round_half_up((total - missing) / total * 100, 1)


def osc_missing_years(session: Session, entity: Entity, years: range) -> list[int]:
    """Years within the range that have no OSC observations."""
    return missing_years(osc_filed_years(session, entity.id), years)


def osc_filing_rate(session: Session, entity: Entity, years: range) -> float:
    return filing_rate(osc_filed_years(session, entity.id), years)


def filing_window(as_of_year: int) -> range:
    return range(as_of_year - FILING_RATE_WINDOW + 1, as_of_year + 1)


def classify_filing(filed: set[int], as_of_year: int) -> FilingCategory | None:
    """Category for a filing history, or None for a current filer."""
    last_year = max(filed) if filed else None
    if last_year is not None and last_year == as_of_year:
        return None

    gap = as_of_year if last_year is None else as_of_year - last_year
    if gap >= CHRONIC_THRESHOLD:
        return FilingCategory.CHRONIC

    if filing_rate(filed, filing_window(as_of_year)) < SPORADIC_RATE_THRESHOLD:
        return FilingCategory.SPORADIC
    return FilingCategory.RECENT_LAPSE


def filing_category(session: Session, entity: Entity, as_of_year: int) -> FilingCategory | None:
    """Filing category for one entity; None if exempt or current."""
    if entity.osc_filing_exempt:
        return None
    return classify_filing(osc_filed_years(session, entity.id), as_of_year)


def non_exempt_cities(session: Session) -> list[Entity]:
    stmt = (
        select(Entity)
        .where(Entity.kind == EntityKind.CITY, Entity.slug.not_in(sorted(OSC_EXEMPT_SLUGS)))
        .order_by(Entity.name)
    )
    return list(session.scalars(stmt))


def latest_majority_year(session: Session) -> int | None:
    """Most recent fiscal year where at least half of non-exempt cities have OSC data."""
    city_ids = [city.id for city in non_exempt_cities(session)]
    if not city_ids:
        return None
    counts = entity_counts_by_year(session, city_ids, _is_osc())
    years = covered_years(counts, len(city_ids), MAJORITY_PERCENT)
    return years[-1] if years else None


def filing_report(session: Session, as_of_year: int) -> FilingReport:
    """Non-filing cities bucketed by category, each bucket sorted by name."""
    cities = non_exempt_cities(session)
    filed_by_city = filed_years_by_entity(session, [c.id for c in cities], _is_osc())

    buckets: dict[FilingCategory, list[EntitySummary]] = {category: [] for category in FilingCategory}
    for city in cities:
        category = classify_filing(filed_by_city.get(city.id, set()), as_of_year)
        if category is not None:
            buckets[category].append(EntitySummary(name=city.name, slug=city.slug, kind=city.kind))

    non_filers = sum(len(bucket) for bucket in buckets.values())
    logger.info(f"Filing report {as_of_year}: {non_filers} of {len(cities)} cities not current")

    return FilingReport(
        as_of_year=as_of_year,
        chronic=buckets[FilingCategory.CHRONIC],
        recent_lapse=buckets[FilingCategory.RECENT_LAPSE],
        sporadic=buckets[FilingCategory.SPORADIC],
        total_cities=len(cities),
        non_filer_count=non_filers,
        filer_count=len(cities) - non_filers,
    )
