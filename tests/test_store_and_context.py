"""Tests for the snapshot store and the per-request context."""
import sys
import os
import asyncio
import json

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from h2h_analytics.context import RequestContext
from h2h_analytics.store import SnapshotStore


SNAPSHOT = {
    "saved_at": "2025-12-01T10:00:00",
    "leagues": {
        "7": {
            "matches": [
                {"event": 1, "entry_1_entry": 11, "entry_2_entry": 12,
                 "entry_1_points": 55, "entry_2_points": 48, "winner": 11},
                {"event": 1, "entry_1_entry": 13, "entry_2_entry": 14,
                 "entry_1_points": 40, "entry_2_points": 40, "winner": None},
            ],
        },
    },
    "histories": {
        "11": [{"event": 1, "points": 59, "event_transfers": 1, "event_transfers_cost": 4,
                "points_on_bench": 6, "rank": 120000}],
    },
    "chips": {"12": [{"name": "3xc", "event": 1}]},
    "picks": {
        "11": {"1": [{"element": 300, "position": 1, "multiplier": 1},
                     {"element": 301, "position": 2, "multiplier": 2, "is_captain": True}]},
    },
    "player_points": {"1": {"300": {"position": 1, "minutes": 90, "points": 6, "web_name": "Keeper"}}},
}


class TestSnapshotStore:
    def test_from_dict(self):
        store = SnapshotStore.from_dict(SNAPSHOT)
        history = store.get_history(11, 1)
        assert history.points == 59
        assert history.transfer_cost == 4
        assert history.points_on_bench == 6
        assert store.get_history(11, 2) is None

        matches = store.get_matches(7)
        assert len(matches) == 2
        assert matches[0].winner == 11
        assert matches[1].winner is None
        assert matches[0].league_id == 7

        assert store.get_chip(12, 1) == "3xc"
        assert store.get_chip(12, 2) is None
        picks = store.get_picks(11, 1)
        assert [p.player_id for p in picks] == [300, 301]
        assert picks[1].is_captain
        assert store.get_player_points(1)[300].points == 6
        assert store.saved_at.year == 2025

    def test_roster_derived_from_matches(self):
        store = SnapshotStore.from_dict(SNAPSHOT)
        assert store.get_roster(7) == [11, 12, 13, 14]
        assert store.get_roster(8) == []

    def test_explicit_roster_wins(self):
        data = dict(SNAPSHOT, leagues={"7": {"roster": [14, 11], "matches": []}})
        assert SnapshotStore.from_dict(data).get_roster(7) == [14, 11]

    def test_load_file(self, tmp_path):
        path = tmp_path / "snapshot.json"
        path.write_text(json.dumps(SNAPSHOT))
        store = SnapshotStore.load(str(path))
        assert store.get_history(11, 1).points == 59

    def test_load_missing_or_broken(self, tmp_path):
        assert SnapshotStore.load(None).get_matches(7) == []
        assert SnapshotStore.load(str(tmp_path / "absent.json")).saved_at is None
        broken = tmp_path / "broken.json"
        broken.write_text("{not json")
        assert SnapshotStore.load(str(broken)).get_roster(7) == []

    def test_unknown_chip_row_skipped_not_fatal(self, tmp_path):
        data = dict(SNAPSHOT, chips={"12": [{"name": "manager", "event": 1}, {"name": "3xc", "event": 2}]})
        path = tmp_path / "snapshot.json"
        path.write_text(json.dumps(data))
        store = SnapshotStore.load(str(path))
        assert len(store.get_matches(7)) == 2
        assert store.get_chip(12, 1) is None
        assert store.get_chip(12, 2) == "3xc"

    def test_histories_for_roster(self):
        store = SnapshotStore.from_dict(SNAPSHOT)
        assert [(h.entry_id, h.event) for h in store.get_histories([11, 12])] == [(11, 1)]

    def test_reads_return_copies(self):
        store = SnapshotStore.from_dict(SNAPSHOT)
        store.get_matches(7).clear()
        assert len(store.get_matches(7)) == 2


class TestRequestContext:
    def test_from_bootstrap(self):
        ctx = RequestContext.from_bootstrap({
            "events": [{"id": 1, "finished": True, "deadline_time": "2025-08-15T17:30:00Z"}],
            "elements": [{"id": 5, "web_name": "Saka", "element_type": 3}],
        })
        assert ctx.event(1).finished
        assert ctx.event(1).deadline_time.tzinfo is not None
        assert ctx.event(2) is None
        assert ctx.player_names == {5: "Saka"}
        assert ctx.player_positions == {5: 3}

    def test_live_stats_fetched_once(self, fake_feed):
        feed = fake_feed()

        async def _run():
            ctx = await RequestContext.build(feed)
            results = await asyncio.gather(*(ctx.live_stats(10) for _ in range(5)))
            return ctx, results

        ctx, results = asyncio.run(_run())
        assert feed.calls["live"] == 1
        assert all(r is results[0] for r in results)
        line = results[0][10]
        assert line.goals_scored == 1
        assert line.position == 4
        assert line.web_name == "Player10"

    def test_unknown_live_element_skipped(self):
        ctx = RequestContext([], player_names={1: "A"}, player_positions={1: 2})
        stats = ctx.parse_live({"elements": [
            {"id": 1, "stats": {"minutes": 90}},
            {"id": 999, "stats": {"minutes": 90}},
        ]}, 3)
        assert list(stats) == [1]
        assert stats[1].gameweek == 3

    def test_live_stats_without_feed(self):
        ctx = RequestContext([])
        with pytest.raises(RuntimeError):
            asyncio.run(ctx.live_stats(1))

    def test_preset_live_stats(self, make_stat_line):
        ctx = RequestContext([])
        ctx.set_live_stats(4, {1: make_stat_line(gameweek=4)})
        assert asyncio.run(ctx.live_stats(4))[1].gameweek == 4
