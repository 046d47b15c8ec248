"""Tests for market data models."""

import math

import pytest
from fakes import profile_body, quote_body

from tickerdesk.market.errors import InvalidPayloadError
from tickerdesk.market.models import (
    CacheEntry,
    MarketStatus,
    Priority,
    Profile,
    Quote,
    TickerRecord,
    resolve_logo,
)


class TestQuote:
    """Unit tests for Quote parsing and tick patching."""

    def test_from_payload(self):
        quote = Quote.from_payload("AAPL", quote_body(price=190.5, previous_close=190.0, v=1200))
        assert quote.symbol == "AAPL"
        assert quote.price == 190.5
        assert quote.previous_close == 190.0
        assert quote.timestamp == 1707580800
        assert quote.volume == 1200.0

    def test_volume_is_optional(self):
        quote = Quote.from_payload("AAPL", quote_body())
        assert quote.volume is None
        assert "v" not in quote.to_dict()

    @pytest.mark.parametrize("price", [0, -3.5, "190.5", None, float("nan"), True])
    def test_unusable_price_rejected(self, price):
        with pytest.raises(InvalidPayloadError):
            Quote.from_payload("AAPL", quote_body(price=100.0) | {"c": price})

    def test_non_object_rejected(self):
        with pytest.raises(InvalidPayloadError):
            Quote.from_payload("AAPL", ["not", "a", "quote"])

    def test_tick_recomputes_against_previous_close(self):
        """Change is measured from previous close, not the prior price."""
        quote = Quote.from_payload("AAPL", quote_body(price=100.0, previous_close=95.0))
        patched = quote.with_tick(102.0, 1707580860000)

        assert patched.price == 102.0
        assert patched.change == pytest.approx(7.0)
        assert patched.change_percent == pytest.approx(7.37, abs=0.01)
        assert patched.previous_close == 95.0
        assert patched.timestamp == 1707580860

    def test_many_ticks_do_not_drift(self):
        quote = Quote.from_payload("AAPL", quote_body(price=100.0, previous_close=95.0))
        for price in (101.0, 99.0, 104.0, 102.0):
            quote = quote.with_tick(price)
        assert quote.change == pytest.approx(7.0)
        assert quote.change_percent == pytest.approx(7.0 / 95.0 * 100)

    def test_tick_without_timestamp_keeps_old_one(self):
        quote = Quote.from_payload("AAPL", quote_body())
        assert quote.with_tick(101.0).timestamp == quote.timestamp
        assert quote.with_tick(101.0, 0).timestamp == quote.timestamp

    def test_tick_with_zero_previous_close(self):
        quote = Quote.from_payload("NEW", quote_body() | {"pc": 0})
        patched = quote.with_tick(10.0)
        assert patched.change_percent == 0.0

    def test_direction(self):
        quote = Quote.from_payload("AAPL", quote_body(price=100.0, previous_close=95.0))
        assert quote.direction == "up"
        assert quote.with_tick(90.0).direction == "down"
        assert quote.with_tick(95.0).direction == "flat"

    def test_immutability(self):
        quote = Quote.from_payload("AAPL", quote_body())
        with pytest.raises(AttributeError):
            quote.price = 200.0

    def test_to_dict_uses_short_keys(self):
        quote = Quote.from_payload("AAPL", quote_body(price=102.0, previous_close=95.0))
        data = quote.to_dict()
        assert data["c"] == 102.0
        assert data["pc"] == 95.0
        assert data["d"] == 7.0


class TestProfile:
    def test_from_payload(self):
        profile = Profile.from_payload("AAPL", profile_body())
        assert profile.name == "Apple Inc"
        assert profile.industry == "Technology"
        assert profile.market_cap == 2950000.0
        assert profile.logo.startswith("https://static2.finnhub.io/")

    def test_empty_body_rejected(self):
        """Upstream answers {} for unknown symbols."""
        with pytest.raises(InvalidPayloadError):
            Profile.from_payload("ZZZZ", {})

    def test_name_falls_back_to_symbol(self):
        assert Profile.from_payload("XYZ", {"country": "US"}).name == "XYZ"


class TestResolveLogo:
    def test_upgrades_http_logo(self):
        assert resolve_logo({"logo": "http://cdn.example.com/a.png"}) == "https://cdn.example.com/a.png"

    def test_clearbit_fallback_from_website(self):
        assert resolve_logo({"logo": "", "weburl": "https://www.apple.com/"}) == "https://logo.clearbit.com/apple.com"

    def test_bare_domain_website(self):
        assert resolve_logo({"website": "tesla.com"}) == "https://logo.clearbit.com/tesla.com"

    def test_nothing_usable(self):
        assert resolve_logo({}) == ""


class TestMarketStatus:
    def test_from_payload(self):
        status = MarketStatus.from_payload(
            "US", {"exchange": "US", "isOpen": False, "session": "pre-market", "t": 1707580800}
        )
        assert status.is_open is False
        assert status.session == "pre-market"
        assert status.to_dict()["isOpen"] is False

    def test_missing_is_open_rejected(self):
        with pytest.raises(InvalidPayloadError):
            MarketStatus.from_payload("US", {"exchange": "US"})


class TestMisc:
    def test_priority_rank_order(self):
        ranked = sorted(["low", "high", "medium"], key=lambda p: Priority(p).rank)
        assert ranked == ["high", "medium", "low"]

    def test_unknown_priority_fails_loudly(self):
        with pytest.raises(ValueError):
            Priority("urgent")

    def test_cache_entry_freshness_boundary(self):
        entry = CacheEntry(data="x", fetched_at=1000.0)
        assert entry.is_fresh(1599.999, 600)
        assert not entry.is_fresh(1600.0, 600)

    def test_ticker_record_with_missing_halves(self):
        record = TickerRecord(symbol="AAPL")
        assert record.logo == ""
        assert record.to_dict() == {"symbol": "AAPL", "quote": None, "profile": None, "logo": ""}

    def test_ticker_record_to_dict(self):
        record = TickerRecord(
            symbol="AAPL",
            quote=Quote.from_payload("AAPL", quote_body()),
            profile=Profile.from_payload("AAPL", profile_body()),
        )
        data = record.to_dict()
        assert data["quote"]["c"] == 100.0
        assert data["profile"]["name"] == "Apple Inc"
        assert not math.isnan(data["quote"]["dp"])
