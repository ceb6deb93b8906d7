"""Tests for the live score aggregator: captaincy, chips, auto-subs, hits."""
import sys
import os
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from h2h_analytics.aggregator import LiveScoreAggregator, score_aggregator
from h2h_analytics.config import AutoSubPolicy
from h2h_analytics.errors import InvalidInput


def _sub_pairs(result):
    return [(s.player_out_id, s.player_in_id) for s in result.auto_subs]


class TestNetScore:
    def test_head_to_head_net_comparison(self, make_squad, make_points):
        """65 gross with a 4-point hit beats 58 gross with no hit by 3."""
        a = score_aggregator.aggregate(
            make_squad(captain=10), make_points(points={2: 0, 10: 10}, default_points=5),
            transfer_cost=4,
        )
        b = score_aggregator.aggregate(
            make_squad(captain=10), make_points(points={10: 9}, default_points=4),
        )
        assert a.gross_total == 65
        assert a.net_total == 61
        assert b.gross_total == 58
        assert b.net_total == 58
        assert a.net_total - b.net_total == 3

    def test_negative_transfer_cost_rejected(self, make_squad, make_points):
        with pytest.raises(InvalidInput):
            score_aggregator.aggregate(make_squad(), make_points(), transfer_cost=-4)

    def test_unknown_chip_rejected(self, make_squad, make_points):
        with pytest.raises(InvalidInput):
            score_aggregator.aggregate(make_squad(), make_points(), chip="doublecaptain")

    def test_none_transfer_cost_is_zero(self, make_squad, make_points):
        result = score_aggregator.aggregate(make_squad(), make_points(), transfer_cost=None)
        assert result.transfer_cost == 0
        assert result.net_total == result.gross_total


class TestCaptaincy:
    def test_captain_doubled(self, make_squad, make_points):
        result = score_aggregator.aggregate(make_squad(captain=10), make_points(points={10: 8}))
        assert result.captain_id == 10
        assert result.captain_name == "Player10"
        assert result.captain_multiplier == 2
        assert result.captain_bonus == 8
        # 10 starters on 2 + captain 8 doubled
        assert result.gross_total == 20 + 16

    def test_triple_captain(self, make_squad, make_points):
        result = score_aggregator.aggregate(
            make_squad(captain=10, chip="3xc"), make_points(points={10: 8}), chip="3xc",
        )
        assert result.captain_multiplier == 3
        assert result.captain_bonus == 16
        assert result.gross_total == 20 + 24

    def test_vice_promoted_when_captain_did_not_play(self, make_squad, make_points):
        pts = make_points(points={6: 7, 10: 0}, minutes={10: 0})
        result = score_aggregator.aggregate(make_squad(captain=10, vice=6), pts)
        assert result.captain_id == 6
        assert result.captain_bonus == 7

    def test_no_multiplier_when_neither_played(self, make_squad, make_points):
        pts = make_points(points={6: 0, 10: 0}, minutes={6: 0, 10: 0, 13: 0, 14: 0, 15: 0, 12: 0})
        result = score_aggregator.aggregate(make_squad(captain=10, vice=6), pts)
        assert result.captain_id is None
        assert result.captain_multiplier == 1
        assert result.captain_bonus == 0

    def test_multiplier_applied_to_one_player_only(self, make_squad, make_points):
        result = score_aggregator.aggregate(make_squad(captain=7, vice=8), make_points(default_points=3))
        counted_points = 3 * len(result.counted_player_ids)
        assert result.gross_total == counted_points + result.captain_bonus
        assert result.captain_bonus == 3

    def test_captain_found_by_multiplier_without_flags(self, make_squad, make_points):
        squad = [
            p.__class__(**{**p.__dict__, "is_captain": False}) for p in make_squad(captain=9)
        ]
        result = score_aggregator.aggregate(squad, make_points(points={9: 5}))
        assert result.captain_id == 9


class TestBenchBoost:
    def test_all_fifteen_counted(self, make_squad, make_points):
        result = score_aggregator.aggregate(make_squad(captain=10), make_points(), chip="bboost")
        assert len(result.counted_player_ids) == 15
        assert result.bench_boost_total == 8
        assert result.gross_total == 15 * 2 + 2
        assert result.points_on_bench == 0

    def test_no_auto_subs_under_bench_boost(self, make_squad, make_points):
        pts = make_points(minutes={3: 0}, points={3: 0})
        result = score_aggregator.aggregate(make_squad(), pts, chip="bboost")
        assert result.auto_subs == []
        assert result.gross_total == 14 * 2 + 2


class TestAutoSubs:
    def test_first_playing_bench_player_comes_in(self, make_squad, make_points):
        pts = make_points(points={3: 0, 13: 6}, minutes={3: 0})
        result = score_aggregator.aggregate(make_squad(), pts)
        assert _sub_pairs(result) == [(3, 13)]
        assert result.auto_sub_total == 6
        assert 13 in result.counted_player_ids
        assert 3 not in result.counted_player_ids
        # 12, 14 and 15 stay on the bench
        assert result.points_on_bench == 6

    def test_goalkeeper_only_replaced_by_goalkeeper(self, make_squad, make_points):
        pts = make_points(points={1: 0}, minutes={1: 0, 12: 0})
        result = score_aggregator.aggregate(make_squad(), pts)
        assert result.auto_subs == []
        assert 1 in result.counted_player_ids

    def test_bench_goalkeeper_not_used_for_outfield(self, make_squad, make_points):
        pts = make_points(points={4: 0}, minutes={4: 0})
        result = score_aggregator.aggregate(make_squad(), pts)
        assert _sub_pairs(result) == [(4, 13)]

    def test_formation_minimum_blocks_substitute(self, make_squad, make_points):
        """Both forwards out: the second cannot be replaced by a midfielder."""
        pts = make_points(points={10: 0, 11: 0}, minutes={10: 0, 11: 0, 15: 0})
        result = score_aggregator.aggregate(make_squad(captain=6), pts)
        assert _sub_pairs(result) == [(10, 13)]
        assert 14 not in result.counted_player_ids

    def test_bench_order_respected(self, make_squad, make_points):
        pts = make_points(points={7: 0, 13: 1, 14: 9}, minutes={7: 0})
        result = score_aggregator.aggregate(make_squad(), pts)
        # 13 is first in bench order and keeps a valid 5-3-2
        assert _sub_pairs(result) == [(7, 13)]

    def test_custom_policy_allows_outfield_for_goalkeeper(self, make_squad, make_points):
        policy = AutoSubPolicy(
            goalkeeper_for_goalkeeper_only=False,
            min_per_position={1: 0, 2: 3, 3: 2, 4: 1},
        )
        agg = LiveScoreAggregator(policy=policy)
        pts = make_points(points={1: 0}, minutes={1: 0, 12: 0})
        result = agg.aggregate(make_squad(), pts)
        assert _sub_pairs(result) == [(1, 13)]


class TestInputs:
    def test_missing_player_counts_zero_and_is_logged(self, make_squad, make_points, caplog):
        pts = make_points()
        del pts[5]
        with caplog.at_level(logging.WARNING, logger="h2h_analytics"):
            result = score_aggregator.aggregate(make_squad(), pts)
        assert result.missing_players == [5]
        assert "no stats for players [5]" in caplog.text
        # Missing starter has 0 minutes and is auto-subbed
        assert _sub_pairs(result) == [(5, 13)]

    def test_live_stat_lines_are_scored(self, make_squad, make_stat_line):
        stats = {
            pid: make_stat_line(player_id=pid, position=pos, minutes=90)
            for pid, pos in make_squad.positions.items()
        }
        stats[10] = make_stat_line(player_id=10, position=4, minutes=90, goals_scored=1)
        result = score_aggregator.aggregate(make_squad(captain=10), stats)
        # 11 starters x 2 appearance + goal 4, captain 6 doubled
        assert result.gross_total == 22 + 4 + 6

    def test_bare_points(self, make_squad):
        stats = {pid: 1 for pid in range(1, 16)}
        result = score_aggregator.aggregate(make_squad(captain=10), stats)
        assert result.gross_total == 12
