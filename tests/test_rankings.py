from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

from nybenchmark.rankings import build_ranking, load_city_rankings


def _entities(*names):
    return {uuid4(): SimpleNamespace(name=name, slug=name.lower()) for name in names}


def test_build_ranking_orders_by_value_then_name() -> None:
    entities = _entities("Yonkers", "Albany", "Utica", "Rome")
    yonkers, albany, utica, rome = entities

    ranked = build_ranking(
        {yonkers: Decimal(200), albany: Decimal(100), utica: Decimal(50), rome: Decimal(10)},
        {yonkers: Decimal(1000), albany: Decimal(500), utica: Decimal(0)},
        "percentage",
        entities,
    )

    assert [(r.name, r.value) for r in ranked] == [("Albany", 20.0), ("Yonkers", 20.0)]


def test_build_ranking_currency_rounds_to_whole_dollars() -> None:
    entities = _entities("Troy")
    (troy,) = entities

    ranked = build_ranking({troy: Decimal(1000)}, {troy: Decimal(3)}, "currency", entities)

    assert ranked[0].value == 333.0


def test_build_ranking_skips_missing_denominator() -> None:
    entities = _entities("Troy")
    (troy,) = entities

    assert build_ranking({troy: Decimal(1)}, {troy: None}, "percentage", entities) == []


def test_city_rankings_use_most_recent_covered_year(factory, session) -> None:
    yonkers = factory.entity("Yonkers")
    albany = factory.entity("Albany")
    utica = factory.entity("Utica")

    factory.expenditure(yonkers, "osc_a1990_4", 2023, 800)
    factory.expenditure(yonkers, "osc_a9710_6", 2023, 200, category="Debt Service")
    factory.balance(yonkers, "A917", 2023, 200)
    factory.population(yonkers, 2020, 100)

    factory.expenditure(albany, "osc_a1990_4", 2023, 500)
    factory.balance(albany, "A917", 2023, 50)

    # Only one of three cities reports 2024
    factory.expenditure(utica, "osc_a1990_4", 2024, 900)

    rankings = load_city_rankings(session)

    assert rankings.year == 2023
    assert [(r.name, r.value) for r in rankings.fund_balance] == [("Yonkers", 20.0), ("Albany", 10.0)]
    assert [(r.name, r.value) for r in rankings.debt_service] == [("Yonkers", 20.0)]
    assert [(r.name, r.value) for r in rankings.per_capita] == [("Yonkers", 10.0)]


def test_city_rankings_pre_gasb54_fund_balance(factory, session) -> None:
    troy = factory.entity("Troy")
    factory.expenditure(troy, "osc_a1990_4", 2010, 1000)
    factory.balance(troy, "A910", 2010, 30)
    factory.balance(troy, "A911", 2010, 70)
    factory.balance(troy, "A917", 2010, 999)

    rankings = load_city_rankings(session)

    assert rankings.year == 2010
    assert [(r.name, r.value) for r in rankings.fund_balance] == [("Troy", 10.0)]


def test_city_rankings_empty_without_data(session) -> None:
    rankings = load_city_rankings(session)

    assert rankings.year is None
    assert rankings.fund_balance == []
    assert rankings.debt_service == []
    assert rankings.per_capita == []
