"""Tests for the UI-thread state that consumes background messages."""

import queue

from channels import drain
from model import (
    CatalogDelta,
    Chunk,
    CounterCache,
    CounterEntry,
    Done,
    EnemyRef,
    Error,
    HarvestDone,
    HarvestProgress,
    HistoryResult,
    MatchEntry,
    MatchSnapshot,
    PlayerRef,
)
from state import AppState, ai_cache_key

ANNIE = EnemyRef(1, "Annie", "annie", "MIDDLE")
ZED = EnemyRef(238, "Zed", "zed", "TOP")


def teammate(name):
    return PlayerRef(name, "JP1", "", 0, 1, "Annie", "MIDDLE", "", "", 0, True)


class TestApplySnapshot:
    def test_full_snapshot(self):
        st = AppState()
        st.apply_snapshot(MatchSnapshot(
            connected=True,
            enemies=(ANNIE, ZED),
            teammates=(teammate("a"),),
            my_position="TOP",
            lane_opponent_id=238,
        ))
        assert st.connected
        assert st.enemies == [ANNIE, ZED]
        assert st.lane_enemy() == ZED

    def test_error_snapshot_keeps_previous_roster(self):
        st = AppState()
        st.apply_snapshot(MatchSnapshot(connected=True, enemies=(ANNIE,), teammates=(teammate("a"),), my_position="MIDDLE"))
        st.apply_snapshot(MatchSnapshot(connected=True, error="not in champ select: HTTP 404"))

        assert st.enemies == [ANNIE]
        assert [t.summoner_name for t in st.teammates] == ["a"]
        assert st.my_position == "MIDDLE"
        assert st.error == "not in champ select: HTTP 404"

    def test_empty_snapshot_without_error_keeps_enemies(self):
        st = AppState()
        st.apply_snapshot(MatchSnapshot(connected=True, enemies=(ANNIE,)))
        st.apply_snapshot(MatchSnapshot(connected=True))
        assert st.enemies == [ANNIE]

    def test_catalog_merged(self):
        st = AppState()
        delta = CatalogDelta(icons={1: (b"\x00" * 4, 1, 1)}, slug_to_id={"annie": 1}, name_to_id={"Annie": 1}, id_to_name={1: "Annie"})
        st.apply_snapshot(MatchSnapshot(connected=True, champion_catalog=delta))
        st.apply_snapshot(MatchSnapshot(connected=True))

        assert st.slug_to_id == {"annie": 1}
        assert st.champion_names == {1: "Annie"}
        assert 1 in st.icons


class TestHarvest:
    def test_guard_blocks_second_harvest(self):
        st = AppState()
        assert st.begin_harvest()
        assert not st.begin_harvest()

        st.apply_harvest_message(HarvestDone(cache=CounterCache(updated_at=1.0)))
        assert st.begin_harvest()

    def test_progress_text(self):
        st = AppState()
        st.begin_harvest()
        st.apply_harvest_message(HarvestProgress(3, 10, "Annie(MID)"))
        assert "3/10" in st.progress_text
        assert "Annie(MID)" in st.progress_text

    def test_failure_keeps_cache(self):
        old = CounterCache(counters={"annie:MID": [CounterEntry("zed", 0.5, 1)]}, updated_at=1.0)
        st = AppState(old)
        st.begin_harvest()
        st.apply_harvest_message(HarvestDone(error="champion list: offline"))

        assert not st.updating
        assert st.counter_cache is old
        assert "offline" in st.progress_text

    def test_done_refreshes_shown_counters(self):
        st = AppState()
        st.load_counter_data("annie", "Annie", "MIDDLE")
        assert st.counter_data == []
        assert st.counter_error

        st.begin_harvest()
        st.apply_harvest_message(HarvestDone(cache=CounterCache(
            champions={"zed": "Zed"},
            counters={"annie:MID": [CounterEntry("zed", 0.54, 1200)]},
            updated_at=1.0,
            total_entries=1,
        )))
        assert [c.name for c in st.counter_data] == ["Zed"]
        assert st.counter_error == ""

    def test_data_time_text(self):
        assert "No local data" in AppState().data_time_text()
        text = AppState(CounterCache(counters={"a": []}, updated_at=1700000000.0, total_entries=4)).data_time_text()
        assert text.startswith("Data: 1/4")


class TestCounterTable:
    CACHE = CounterCache(
        champions={"zed": "Zed", "lux": "Lux", "ahri": "Ahri", "garen": "Garen"},
        counters={
            "annie:MID": [CounterEntry("zed", 0.48, 900), CounterEntry("lux", 0.55, 300), CounterEntry("ahri", 0.51, 2000)],
            "annie:TOP": [CounterEntry("garen", 0.53, 150)],
        },
        updated_at=1.0,
        total_entries=2,
    )

    def test_default_order_is_win_rate_descending(self):
        st = AppState(self.CACHE)
        st.load_counter_data("annie", "Annie", "MIDDLE")
        assert [c.name for c in st.counter_data] == ["Lux", "Ahri", "Zed"]

    def test_same_column_flips_order(self):
        st = AppState(self.CACHE)
        st.load_counter_data("annie", "Annie", "MIDDLE")
        st.set_counter_sort("win_rate")
        assert [c.name for c in st.counter_data] == ["Zed", "Ahri", "Lux"]

    def test_new_column_starts_descending(self):
        st = AppState(self.CACHE)
        st.load_counter_data("annie", "Annie", "MIDDLE")
        st.set_counter_sort("win_rate")
        st.set_counter_sort("games")
        assert st.counter_sort_desc
        assert [c.games for c in st.counter_data] == [2000, 900, 300]

        st.set_counter_sort("name")
        st.set_counter_sort("name")
        assert [c.name for c in st.counter_data] == ["Ahri", "Lux", "Zed"]

    def test_unknown_column_ignored(self):
        st = AppState(self.CACHE)
        st.load_counter_data("annie", "Annie", "MIDDLE")
        st.set_counter_sort("bogus")
        assert st.counter_sort_col == "win_rate"
        assert [c.name for c in st.counter_data] == ["Lux", "Ahri", "Zed"]

    def test_sort_survives_reload(self):
        st = AppState(self.CACHE)
        st.set_counter_sort("games")
        st.load_counter_data("annie", "Annie", "MIDDLE")
        assert [c.name for c in st.counter_data] == ["Ahri", "Zed", "Lux"]

    def test_position_override_requeries(self):
        st = AppState(self.CACHE)
        st.load_counter_data("annie", "Annie", "MIDDLE")
        st.set_counter_position("TOP")

        assert st.counter_position == "TOP"
        assert st.counter_slug == "annie"
        assert [c.name for c in st.counter_data] == ["Garen"]

    def test_position_override_without_champion_is_noop(self):
        st = AppState(self.CACHE)
        st.set_counter_position("TOP")
        assert st.counter_data == []
        assert st.counter_slug == ""


class TestAnalysis:
    def test_stream_then_cache(self):
        st = AppState()
        key = ai_cache_key("Annie", "Zed", "MIDDLE", "m")
        assert st.begin_analysis(key)

        for event in (Chunk("He"), Chunk("llo"), Done("Hello")):
            st.apply_stream_event(event)
        assert st.ai_text == "Hello"
        assert not st.ai_loading

        assert not st.begin_analysis(key)
        assert st.ai_text == "Hello"
        assert "cached" in st.ai_title

    def test_error_is_not_cached(self):
        st = AppState()
        key = ai_cache_key("Annie", "Zed", "MIDDLE", "m")
        st.begin_analysis(key)
        st.apply_stream_event(Error("request failed (401): bad key"))

        assert "401" in st.ai_text
        assert st.begin_analysis(key)

    def test_cache_key_includes_model(self):
        assert ai_cache_key("A", "B", "TOP", "m1") != ai_cache_key("A", "B", "TOP", "m2")


class TestHistory:
    def test_entries_cached(self):
        st = AppState()
        st.history_loading = True
        entry = MatchEntry(1, True, 5, 1, 7, 1800, 0, 420, "SOLORANKED")
        st.apply_history(HistoryResult("a#JP1", "a#JP1", "https://op.gg/x", entries=(entry,)))

        assert not st.history_loading
        assert st.history == [entry]
        assert st.history_cache["a#JP1"] == [entry]

    def test_error(self):
        st = AppState()
        st.apply_history(HistoryResult("a#JP1", "a#JP1", "https://op.gg/x", error="summoner not found: a#JP1"))
        assert st.history == []
        assert "not found" in st.history_name
        assert "a#JP1" not in st.history_cache


class TestDrain:
    def test_drains_in_order_without_blocking(self):
        q = queue.Queue()
        for i in range(3):
            q.put(i)
        assert list(drain(q)) == [0, 1, 2]
        assert list(drain(q)) == []

    def test_limit(self):
        q = queue.Queue()
        for i in range(3):
            q.put(i)
        assert list(drain(q, limit=2)) == [0, 1]
        assert q.qsize() == 1
