"""Tests for chip availability and usage rules."""
import sys
import os
import asyncio
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from h2h_analytics.chips import (
    chips_from_api, get_available_chips, validate_chip_usage, chips_summary,
    fetch_available_chips, season_half,
)
from h2h_analytics.errors import InvalidGameweek, InvalidInput
from h2h_analytics.models import ChipUsage


class TestAvailability:
    def test_all_available_at_start(self):
        assert get_available_chips([], 1) == {
            "3xc": True, "bboost": True, "freehit": True, "wildcard": True,
        }

    def test_used_chip_unavailable_in_same_half(self):
        used = [ChipUsage(1, 5, "wildcard"), ChipUsage(1, 8, "bboost")]
        available = get_available_chips(used, 12)
        assert available["wildcard"] is False
        assert available["bboost"] is False
        assert available["3xc"] is True

    def test_chips_renew_at_gameweek_20(self):
        used = [ChipUsage(1, 5, "wildcard"), ChipUsage(1, 8, "bboost")]
        assert get_available_chips(used, 19)["wildcard"] is False
        assert all(get_available_chips(used, 20).values())

    def test_second_half_usage(self):
        used = [ChipUsage(1, 5, "3xc"), ChipUsage(1, 25, "3xc")]
        assert get_available_chips(used, 30)["3xc"] is False

    def test_invalid_gameweek(self):
        with pytest.raises(InvalidGameweek):
            get_available_chips([], 39)

    def test_season_half(self):
        assert season_half(19) == 1
        assert season_half(20) == 2

    def test_unknown_chip_name_rejected(self):
        with pytest.raises(InvalidInput):
            ChipUsage(1, 3, "doublecaptain")


class TestUsageRules:
    def test_valid_history(self):
        rows = validate_chip_usage([ChipUsage(1, 25, "bboost"), ChipUsage(1, 3, "bboost")])
        assert [c.gameweek for c in rows] == [3, 25]

    def test_twice_in_one_half(self):
        with pytest.raises(InvalidInput):
            validate_chip_usage([ChipUsage(1, 3, "freehit"), ChipUsage(1, 9, "freehit")])

    def test_more_than_two_uses(self):
        with pytest.raises(InvalidInput):
            validate_chip_usage([ChipUsage(1, g, "3xc") for g in (2, 21, 30)])

    def test_two_chips_in_one_gameweek(self):
        with pytest.raises(InvalidInput):
            validate_chip_usage([ChipUsage(1, 4, "3xc"), ChipUsage(1, 4, "bboost")])

    def test_different_managers_independent(self):
        rows = validate_chip_usage([ChipUsage(1, 4, "3xc"), ChipUsage(2, 4, "3xc")])
        assert len(rows) == 2


class TestFetch:
    def test_summary(self):
        summary = chips_summary([ChipUsage(1, 8, "bboost")], 10)
        assert summary["available"]["bboost"] is False
        assert summary["played"] == [{"chip": "bboost", "display": "BB", "gw": 8}]

    def test_fetch_ok(self, fake_feed):
        feed = fake_feed(chips={5: [ChipUsage(5, 2, "wildcard")]})
        result = asyncio.run(fetch_available_chips(5, 10, feed))
        assert result.is_ok
        assert result.value["available"]["wildcard"] is False

    def test_fetch_degrades_to_all_available(self, fake_feed):
        feed = fake_feed()
        feed.fail_picks = {5}
        result = asyncio.run(fetch_available_chips(5, 10, feed))
        assert result.is_degraded
        assert all(result.value["available"].values())
        assert result.value["played"] == []


class TestParsing:
    def test_unknown_upstream_chip_skipped(self, caplog):
        rows = [{"name": "manager", "event": 1}, {"name": "bboost", "event": 4}]
        with caplog.at_level(logging.WARNING, logger="h2h_analytics"):
            chips = chips_from_api(rows, 9)
        assert chips == [ChipUsage(9, 4, "bboost")]
        assert "manager" in caplog.text

    def test_unknown_chip_from_caller_rejected(self):
        with pytest.raises(InvalidInput):
            ChipUsage(9, 4, "manager")
