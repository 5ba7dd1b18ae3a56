from decimal import Decimal

import pytest

from nybenchmark.county_scatter import (
    DOT_COLOR,
    available_county_years,
    county_fund_balances,
    load_county_comparison,
    total_county_expenditures,
)
from nybenchmark.partisan import D_MAJORITY, PartisanCache, parse_partisan_csv
from nybenchmark.schemas import EntityKind


def test_parse_partisan_csv(partisan_csv) -> None:
    data = parse_partisan_csv(partisan_csv)

    assert data["Albany"].conservative_pct == 46.2
    assert data["Albany"].majority == D_MAJORITY
    assert data["Tompkins"].conservative_pct == 28.6


def test_parse_partisan_csv_skips_counties_without_seats(tmp_path) -> None:
    path = tmp_path / "partisan.csv"
    path.write_text(
        "Name,# Democrats,# Liberal not Dems,# Republicans,# Conservative not Reps,Unknown\n"
        "Hamilton,0,0,0,0,0\n"
        "Lewis,1,0,8,0,1\n"
    )

    data = parse_partisan_csv(path)

    assert "Hamilton" not in data
    assert data["Lewis"].conservative_pct == 80.0
    assert data["Lewis"].majority == "R-Majority"


def test_partisan_lookup_by_entity_name(partisan_csv) -> None:
    cache = PartisanCache(partisan_csv)

    assert cache.lookup("Albany County").conservative_pct == 46.2
    assert cache.lookup("Allegany County") is None


def test_missing_partisan_file_is_empty(tmp_path) -> None:
    cache = PartisanCache(tmp_path / "nope.csv")

    assert cache.data() == {}
    assert cache.lookup("Albany County") is None


@pytest.fixture
def counties(factory):
    albany = factory.entity("Albany County", kind=EntityKind.COUNTY)
    tompkins = factory.entity("Tompkins County", kind=EntityKind.COUNTY)
    allegany = factory.entity("Allegany County", kind=EntityKind.COUNTY)

    # Albany 2024: 1000 countable expenditures, custodial and transfers excluded
    factory.expenditure(albany, "osc_a1990_4", 2024, 900)
    factory.expenditure(albany, "osc_a9710_6", 2024, 100, category="Debt Service")
    factory.expenditure(albany, "osc_t8500_4", 2024, 500, category="Other")
    factory.expenditure(albany, "osc_a9901_9", 2024, 300, category="Other Uses")
    factory.balance(albany, "A917", 2024, 150)
    factory.revenue(albany, "osc_a1001", 2024, 1100)
    factory.revenue(albany, "osc_a5031", 2024, 200, category="Other Sources")

    factory.expenditure(tompkins, "osc_a1990_4", 2024, 2000)
    factory.balance(tompkins, "A917", 2024, 400)

    factory.expenditure(allegany, "osc_a1990_4", 2024, 500)
    factory.balance(allegany, "A917", 2024, 50)

    # Only Albany reports 2023
    factory.expenditure(albany, "osc_a1990_4", 2023, 800)

    return albany, tompkins, allegany


def test_years_need_seventy_percent_of_counties(counties, session) -> None:
    assert available_county_years(session) == [2024]


def test_expenditures_exclude_custodial_and_transfers(counties, session) -> None:
    albany, _, _ = counties

    totals = total_county_expenditures(session, [albany.id], 2024)

    assert totals[albany.id] == Decimal(1000)


def test_county_comparison(counties, session, partisan_csv) -> None:
    comparison = load_county_comparison(session, 2024, PartisanCache(partisan_csv))

    assert comparison.years == [2024]
    assert comparison.year == 2024

    (fund_balance,) = comparison.fund_balance
    assert fund_balance.color == DOT_COLOR
    assert [(p.name, p.x, p.y) for p in fund_balance.data] == [
        ("Albany County", 46.2, 15.0),
        ("Tompkins County", 28.6, 20.0),
    ]

    (debt_service,) = comparison.debt_service
    assert [(p.name, p.y) for p in debt_service.data] == [("Albany County", 10.0)]

    (operating,) = comparison.operating_ratio
    assert [(p.name, p.y) for p in operating.data] == [("Albany County", 110.0)]


def test_unavailable_year_falls_back_to_best_year(counties, session, partisan_csv) -> None:
    comparison = load_county_comparison(session, 1999, PartisanCache(partisan_csv))

    assert comparison.year == 2024


def test_no_counties_gives_empty_comparison(session, partisan_csv) -> None:
    comparison = load_county_comparison(session, None, PartisanCache(partisan_csv))

    assert comparison.years == []
    assert comparison.year is None
    assert comparison.fund_balance == []


def test_pre_gasb54_fund_balance_codes(factory, session) -> None:
    albany = factory.entity("Albany County", kind=EntityKind.COUNTY)
    factory.balance(albany, "A910", 2010, 30)
    factory.balance(albany, "A911", 2010, 70)
    factory.balance(albany, "A917", 2010, 999)
    factory.balance(albany, "A917", 2011, 120)

    assert county_fund_balances(session, [albany.id], 2010) == {albany.id: Decimal(100)}
    assert county_fund_balances(session, [albany.id], 2011) == {albany.id: Decimal(120)}
