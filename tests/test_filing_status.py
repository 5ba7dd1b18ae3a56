from nybenchmark.filing_status import (
    classify_filing,
    filing_category,
    filing_rate,
    filing_report,
    last_osc_filing_year,
    latest_majority_year,
    missing_years,
    osc_filing_rate,
    osc_missing_years,
)
from nybenchmark.schemas import DataSource, FilingCategory


def test_current_filer_has_no_category() -> None:
    assert classify_filing({2023, 2024}, 2024) is None


def test_filing_after_as_of_year_uses_filing_rate() -> None:
    # 6 of 2011-2020
    assert classify_filing(set(range(2015, 2025)), 2020) == FilingCategory.SPORADIC
    assert classify_filing(set(range(2011, 2025)), 2020) == FilingCategory.RECENT_LAPSE


def test_never_filed_is_chronic() -> None:
    assert classify_filing(set(), 2024) == FilingCategory.CHRONIC


def test_three_years_behind_is_chronic() -> None:
    assert classify_filing({2019, 2020, 2021}, 2024) == FilingCategory.CHRONIC


def test_eighty_percent_rate_is_recent_lapse() -> None:
    filed = set(range(2015, 2023))  # 8 of 2015-2024
    assert classify_filing(filed, 2024) == FilingCategory.RECENT_LAPSE


def test_low_rate_is_sporadic() -> None:
    filed = {2016, 2018, 2020, 2022, 2023}
    assert classify_filing(filed, 2024) == FilingCategory.SPORADIC


def test_filing_rate_and_missing_years() -> None:
    years = range(2020, 2024)
    assert missing_years({2020, 2022}, years) == [2021, 2023]
    assert filing_rate({2020, 2022}, years) == 50.0
    assert filing_rate({2020}, range(2020, 2020)) == 0.0


def _osc_filing(factory, entity, year):
    factory.expenditure(entity, "osc_a1990_4", year, 1000)


def test_osc_history_ignores_other_sources(factory, session) -> None:
    city = factory.entity("Troy")
    for year in (2020, 2021, 2023):
        _osc_filing(factory, city, year)
    factory.population(city, 2024, 50000)

    assert last_osc_filing_year(session, city) == 2023
    assert osc_missing_years(session, city, range(2020, 2025)) == [2022, 2024]
    assert osc_filing_rate(session, city, range(2020, 2025)) == 60.0


def test_filing_report_buckets_non_exempt_cities(factory, session) -> None:
    albany = factory.entity("Albany")
    troy = factory.entity("Troy")
    factory.entity("Utica")
    nyc = factory.entity("New York City", slug="nyc")

    _osc_filing(factory, albany, 2024)
    for year in range(2014, 2024):
        _osc_filing(factory, troy, year)
    factory.observation(nyc, "nyc_checkbook_spending", 2024, 1, data_source=DataSource.NYC_CHECKBOOK)

    report = filing_report(session, 2024)

    assert report.total_cities == 3
    assert report.filer_count == 1
    assert report.non_filer_count == 2
    assert [e.name for e in report.chronic] == ["Utica"]
    assert [e.name for e in report.recent_lapse] == ["Troy"]
    assert report.sporadic == []
    assert filing_category(session, nyc, 2024) is None


def test_latest_majority_year_needs_half_of_cities(factory, session) -> None:
    cities = [factory.entity(name) for name in ("Albany", "Troy", "Utica", "Rome")]
    factory.entity("New York City", slug="nyc")

    _osc_filing(factory, cities[0], 2024)
    _osc_filing(factory, cities[0], 2023)
    _osc_filing(factory, cities[1], 2023)
    for city in cities:
        factory.population(city, 2024, 1000)

    assert latest_majority_year(session) == 2023


def test_latest_majority_year_without_data(session) -> None:
    assert latest_majority_year(session) is None


def test_historical_report_includes_later_filers(factory, session) -> None:
    troy = factory.entity("Troy")
    for year in range(2015, 2025):
        _osc_filing(factory, troy, year)

    report = filing_report(session, 2020)

    assert [e.name for e in report.sporadic] == ["Troy"]
    assert report.filer_count == 0


def test_latest_majority_year_never_decreases(factory, session) -> None:
    cities = [factory.entity(name) for name in ("Albany", "Troy", "Utica", "Rome")]
    for city in cities[:2]:
        _osc_filing(factory, city, 2022)

    assert latest_majority_year(session) == 2022

    _osc_filing(factory, cities[2], 2023)
    assert latest_majority_year(session) == 2022

    _osc_filing(factory, cities[3], 2023)
    assert latest_majority_year(session) == 2023

    _osc_filing(factory, cities[0], 2024)
    assert latest_majority_year(session) == 2023
