from backend.codform import config, rates
from backend.codform.models import ShippingRate

from .utils import OTHER_SHOP, SHOP, add_rows, with_session


def _seed_pakistan():
    add_rows(
        ShippingRate(shop=SHOP, country="Pakistan", city="Lahore", rate=150, currency="PKR"),
        ShippingRate(shop=SHOP, country="Pakistan", city="", rate=250, currency="PKR"),
        ShippingRate(shop=SHOP, country="UAE", city="Dubai", rate=20, currency="AED"),
        ShippingRate(shop=OTHER_SHOP, country="Pakistan", city="Karachi", rate=99, currency="PKR"),
    )


def test_city_rate_beats_country_default():
    _seed_pakistan()
    resolved = with_session(rates.resolve_shipping_rate, SHOP, "Pakistan", "Lahore")
    assert (resolved.rate, resolved.currency, resolved.source) == (150.0, "PKR", "city")


def test_country_default_when_city_missing():
    _seed_pakistan()
    resolved = with_session(rates.resolve_shipping_rate, SHOP, "Pakistan", "Multan")
    assert (resolved.rate, resolved.source) == (250.0, "country")


def test_lookup_is_case_insensitive():
    _seed_pakistan()
    resolved = with_session(rates.resolve_shipping_rate, SHOP, "  pakistan ", "LAHORE")
    assert resolved.rate == 150.0


def test_fallback_when_country_has_no_rows():
    _seed_pakistan()
    resolved = with_session(rates.resolve_shipping_rate, SHOP, "UAE", "Sharjah")
    assert resolved.source == "fallback"
    assert resolved.rate == config.FALLBACK_SHIPPING_RATE
    assert resolved.currency == config.FALLBACK_CURRENCY


def test_other_shops_rates_are_ignored():
    _seed_pakistan()
    resolved = with_session(rates.resolve_shipping_rate, SHOP, "Pakistan", "Karachi")
    assert resolved.source == "country"


def test_rates_by_city_and_locations():
    _seed_pakistan()
    by_city = with_session(rates.rates_by_city, SHOP)
    assert by_city == {"lahore": 150.0, "dubai": 20.0}

    locs = with_session(rates.locations, SHOP)
    assert locs["Pakistan"]["cities"] == ["Lahore"]
    assert locs["Pakistan"]["rates"]["default"] == {"rate": 250.0, "currency": "PKR"}
    assert locs["UAE"]["rates"]["dubai"] == {"rate": 20.0, "currency": "AED"}


def test_upsert_rate_updates_existing_row():
    _seed_pakistan()
    row = with_session(rates.upsert_rate, SHOP, country="pakistan", city="lahore", rate=175, currency="PKR")
    assert row.rate == 175
    all_rows = with_session(rates.list_rates, SHOP)
    assert len([r for r in all_rows if r.city.lower() == "lahore"]) == 1
