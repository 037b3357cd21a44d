"""Tests for the session poller's poll cycle."""

import queue
import threading
from unittest.mock import Mock

import pytest

import catalog
import lcu
import poller
from catalog import ChampionSummary
from channels import drain
from errors import RemoteFailure
from model import EnemyRef
from poller import SessionPoller

CHAMPIONS = {
    1: ChampionSummary(1, "Annie", "Annie"),
    2: ChampionSummary(2, "Olaf", "Olaf"),
    3: ChampionSummary(3, "Galio", "Galio"),
}

CHAMP_SELECT = {
    "localPlayerCellId": 0,
    "myTeam": [
        {"cellId": 0, "summonerId": 100, "championId": 1, "assignedPosition": "middle"},
        {"cellId": 1, "summonerId": 101, "championId": 0, "assignedPosition": "top"},
    ],
    "theirTeam": [
        {"cellId": 5, "summonerId": 0, "championId": 2, "assignedPosition": ""},
        {"cellId": 6, "summonerId": 201, "championId": 3, "assignedPosition": "middle"},
        {"cellId": 7, "summonerId": 202, "championId": 77, "assignedPosition": "top"},
    ],
}

IN_GAME = {
    "phase": "InProgress",
    "gameData": {
        "teamOne": [
            {"summonerId": 300, "summonerName": "Enemy", "championId": 2, "selectedPosition": "JUNGLE"},
        ],
        "teamTwo": [
            {"summonerId": 100, "summonerName": "Me", "championId": 1, "selectedPosition": "JUNGLE"},
        ],
    },
}


@pytest.fixture
def lockfile(tmp_path):
    path = tmp_path / "lockfile"
    path.write_text("LeagueClient:1:2999:pw:https", encoding="utf-8")
    return path


@pytest.fixture
def client(monkeypatch):
    """Patch every LCU call the poller makes; tests override what they need."""
    monkeypatch.setattr(catalog, "load_champion_catalog", Mock(return_value=(dict(CHAMPIONS), "non_zh")))
    monkeypatch.setattr(catalog, "load_icons", Mock(return_value={1: (b"\x00" * 4, 1, 1)}))
    monkeypatch.setattr(lcu, "get_current_summoner", Mock(return_value={"summonerId": 100}))
    monkeypatch.setattr(lcu, "get_champ_select_session", Mock(return_value=CHAMP_SELECT))
    monkeypatch.setattr(lcu, "get_gameflow_session", Mock(return_value={"phase": "Lobby"}))
    monkeypatch.setattr(lcu, "get_summoner", lambda _s, _a, sid: {"gameName": f"p{sid}", "tagLine": "JP1", "puuid": f"u{sid}"})
    monkeypatch.setattr(lcu, "get_ranked_stats", Mock(return_value={}))
    return lcu


def make_poller(lockfile_path, **kwargs):
    channel = queue.Queue()
    p = SessionPoller(channel, find_lockfile=lambda _d: lockfile_path, session=Mock(), **kwargs)
    return p, channel


class TestUnavailable:
    def test_no_lockfile(self):
        p, channel = make_poller(None)
        assert p.run_once() == poller.UNAVAILABLE_BACKOFF
        snap = channel.get_nowait()
        assert snap.connected is False
        assert "lockfile" in snap.error
        assert channel.empty()

    def test_malformed_lockfile(self, tmp_path):
        path = tmp_path / "lockfile"
        path.write_text("only:three:fields", encoding="utf-8")
        p, channel = make_poller(path)

        assert p.run_once() == poller.UNAVAILABLE_BACKOFF
        snap = channel.get_nowait()
        assert snap.connected is False
        assert snap.error
        assert len(snap.error) <= poller.ERROR_LIMIT

    def test_binary_lockfile(self, tmp_path):
        path = tmp_path / "lockfile"
        path.write_bytes(b"LeagueClient:1:\xff\xfe:pw:https")
        p, channel = make_poller(path)

        assert p.run_once() == poller.UNAVAILABLE_BACKOFF
        snap = channel.get_nowait()
        assert snap.connected is False
        assert "not text" in snap.error


class TestChampSelect:
    def test_roster(self, lockfile, client):
        p, channel = make_poller(lockfile)
        assert p.run_once() == poller.ACTIVE_INTERVAL

        snap = channel.get_nowait()
        assert snap.connected
        assert snap.error == ""
        assert snap.my_position == "middle"
        assert [e.champion_id for e in snap.enemies] == [2, 3, 77]
        assert snap.enemies[1] == EnemyRef(3, "Galio", "galio", "middle")
        assert snap.enemies[2].display_name == "Unknown"
        assert snap.lane_opponent_id == 3
        # summoner id 0 is a hidden enemy and never enriched
        assert {t.summoner_name for t in snap.teammates} == {"p100", "p101", "p201", "p202"}
        assert [t.is_ally for t in snap.teammates if t.summoner_name == "p201"] == [False]
        assert snap.locale_tag == "non_zh"
        assert snap.credential.port == 2999

    def test_catalog_is_sent_once(self, lockfile, client):
        p, channel = make_poller(lockfile)
        p.run_once()
        p.run_once()

        first, second = channel.get_nowait(), channel.get_nowait()
        assert first.champion_catalog is not None
        assert first.champion_catalog.slug_to_id["annie"] == 1
        assert 1 in first.champion_catalog.icons
        assert second.champion_catalog is None

    def test_enriched_players_are_cached(self, lockfile, client, monkeypatch):
        lookups = Mock(side_effect=lambda _s, _a, sid: {"gameName": f"p{sid}", "puuid": f"u{sid}"})
        monkeypatch.setattr(lcu, "get_summoner", lookups)
        p, _ = make_poller(lockfile)

        p.run_once()
        calls = lookups.call_count
        p.run_once()
        assert calls == 4
        assert lookups.call_count == calls


class TestNotInChampSelect:
    def test_idle(self, lockfile, client, monkeypatch):
        monkeypatch.setattr(lcu, "get_champ_select_session", Mock(side_effect=RemoteFailure("HTTP 404 for /lol-champ-select/v1/session")))
        p, channel = make_poller(lockfile)

        assert p.run_once() == poller.IDLE_BACKOFF
        snap = channel.get_nowait()
        assert snap.connected
        assert snap.error.startswith("not in champ select: HTTP 404")
        assert snap.enemies == ()

    def test_session_body_not_an_object(self, lockfile, client, monkeypatch):
        monkeypatch.setattr(lcu, "get_champ_select_session", Mock(return_value=None))
        p, channel = make_poller(lockfile)

        assert p.run_once() == poller.IDLE_BACKOFF
        snap = channel.get_nowait()
        assert snap.connected
        assert snap.error.startswith("not in champ select: unexpected session body: NoneType")

    def test_gameflow_body_not_an_object(self, lockfile, client, monkeypatch):
        monkeypatch.setattr(lcu, "get_champ_select_session", Mock(side_effect=RemoteFailure("HTTP 404")))
        monkeypatch.setattr(lcu, "get_gameflow_session", Mock(return_value=["InProgress"]))
        p, channel = make_poller(lockfile)

        assert p.run_once() == poller.IDLE_BACKOFF
        assert channel.get_nowait().error.startswith("not in champ select")

    def test_current_summoner_not_an_object(self, lockfile, client, monkeypatch):
        monkeypatch.setattr(lcu, "get_current_summoner", Mock(return_value=[100]))
        monkeypatch.setattr(lcu, "get_champ_select_session", Mock(side_effect=RemoteFailure("HTTP 404")))
        p, channel = make_poller(lockfile)

        assert p.run_once() == poller.IDLE_BACKOFF
        assert p.cache.my_summoner_id == 0

    def test_in_game_roster(self, lockfile, client, monkeypatch):
        monkeypatch.setattr(lcu, "get_champ_select_session", Mock(side_effect=RemoteFailure("HTTP 404")))
        monkeypatch.setattr(lcu, "get_gameflow_session", Mock(return_value=IN_GAME))
        p, channel = make_poller(lockfile)

        assert p.run_once() == poller.ACTIVE_INTERVAL
        snap = channel.get_nowait()
        assert [e.display_name for e in snap.enemies] == ["Olaf"]
        assert snap.my_position == "JUNGLE"
        assert snap.lane_opponent_id == 2
        names = {t.summoner_name: t.is_ally for t in snap.teammates}
        assert names == {"Me": True, "Enemy": False}

    def test_no_in_game_check_without_own_id(self, lockfile, client, monkeypatch):
        monkeypatch.setattr(lcu, "get_current_summoner", Mock(side_effect=RemoteFailure("HTTP 503")))
        monkeypatch.setattr(lcu, "get_champ_select_session", Mock(side_effect=RemoteFailure("HTTP 404")))
        flow = Mock(return_value=IN_GAME)
        monkeypatch.setattr(lcu, "get_gameflow_session", flow)
        p, channel = make_poller(lockfile)

        assert p.run_once() == poller.IDLE_BACKOFF
        flow.assert_not_called()
        assert channel.get_nowait().error.startswith("not in champ select")


class TestLaneOpponent:
    def test_matches_canonical_positions(self):
        enemies = [EnemyRef(1, "A", "a", "TOP"), EnemyRef(2, "B", "b", "BOTTOM")]
        assert poller.lane_opponent(enemies, "bottom") == 2

    def test_no_position(self):
        assert poller.lane_opponent([EnemyRef(1, "A", "a", "")], "") is None


class TestStop:
    def test_stop_ends_loop(self):
        stop = threading.Event()
        channel = queue.Queue()
        p = SessionPoller(channel, stop=stop, session=Mock(), find_lockfile=lambda _d: None, on_snapshot=stop.set)

        t = p.start()
        t.join(timeout=5)

        assert not t.is_alive()
        assert channel.qsize() == 1

    def test_already_stopped(self):
        stop = threading.Event()
        stop.set()
        channel = queue.Queue()
        SessionPoller(channel, stop=stop, session=Mock(), find_lockfile=lambda _d: None).run()
        assert channel.empty()

    def test_loop_survives_a_failing_cycle(self, monkeypatch):
        monkeypatch.setattr(poller, "UNAVAILABLE_BACKOFF", 0.01)
        stop = threading.Event()
        channel = queue.Queue()

        def stop_after_two():
            if channel.qsize() >= 2:
                stop.set()

        p = SessionPoller(channel, stop=stop, session=Mock(), find_lockfile=lambda _d: None, on_snapshot=stop_after_two)
        p.run_once = Mock(side_effect=[RuntimeError("boom"), KeyError("phase"), 0.01])

        t = p.start()
        t.join(timeout=5)

        assert not t.is_alive()
        first, second = channel.get_nowait(), channel.get_nowait()
        assert first.connected is False
        assert first.error.startswith("poll failed: RuntimeError")
        assert len(first.error) <= poller.ERROR_LIMIT
        assert "KeyError" in second.error
        assert p.run_once.call_count == 2

    def test_binary_lockfile_keeps_loop_alive(self, tmp_path, monkeypatch):
        monkeypatch.setattr(poller, "UNAVAILABLE_BACKOFF", 0.01)
        path = tmp_path / "lockfile"
        path.write_bytes(b"LeagueClient:1:\xff\xfe:pw:https")
        stop = threading.Event()
        channel = queue.Queue()

        def stop_after_three():
            if channel.qsize() >= 3:
                stop.set()

        p = SessionPoller(channel, stop=stop, session=Mock(), find_lockfile=lambda _d: path, on_snapshot=stop_after_three)
        t = p.start()
        t.join(timeout=5)

        assert not t.is_alive()
        assert channel.qsize() == 3
        assert all(not s.connected for s in drain(channel))
