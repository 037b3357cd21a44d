from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Dict, Optional

from PySide6.QtWidgets import QApplication, QInputDialog, QLineEdit
from PySide6.QtCore import QTimer

import lcu
from channels import drain
from completion import build_matchup_prompts, run_completion
from history import region_from_locale, spawn_match_history
from logging_utils import configure_logging
from model import CounterDisplay, EnemyRef, PlayerRef
from opgg import load_local_data, spawn_harvest
from poller import spawn_session_poller
from settings import AppSettings, load_settings, save_api_key_to_appdata
from state import AppState, ai_cache_key
from ui_main import MainWindow

logger = logging.getLogger(__name__)

TICK_MS = 100


def ensure_api_key(win: MainWindow) -> AppSettings:
    settings = load_settings()
    if settings.openai_api_key:
        return settings

    key, accepted = QInputDialog.getText(
        win,
        "OpenAI API Key",
        "Paste your OPENAI_API_KEY (stored in %APPDATA%\\Lanesight\\.env):",
        QLineEdit.Password,
        ""
    )

    if accepted and key.strip():
        save_api_key_to_appdata(key.strip())
        return load_settings()

    win.set_status("No OPENAI_API_KEY; AI analysis is disabled. Add it to %APPDATA%\\Lanesight\\.env")
    return settings


class Controller:
    """
    Owns the channels and AppState. Background threads only ever put onto
    the channels; tick() drains them on the UI thread.
    """

    def __init__(self, win: MainWindow, settings: AppSettings):
        self.win = win
        self.settings = settings
        self.state = AppState(load_local_data(settings.cache_path()))

        self.snapshots: "queue.Queue" = queue.Queue()
        self.harvest: "queue.Queue" = queue.Queue()
        self.ai: "queue.Queue" = queue.Queue()
        self.history: "queue.Queue" = queue.Queue()

        self.stop = threading.Event()

        self.selected_enemy: Optional[EnemyRef] = None
        self._auto_lane_id: Optional[int] = None
        self._regions: Dict[str, str] = {}

        win.set_update_callback(self.start_harvest)
        win.set_enemy_callback(self.select_enemy)
        win.set_counter_callback(self.analyze_counter)
        win.set_player_callback(self.show_history)
        win.set_counter_sort_callback(self.sort_counters)
        win.set_counter_position_callback(self.change_counter_position)

    def start(self):
        spawn_session_poller(self.snapshots, self.settings.lockfile_dir, self.stop)
        self.render()

    def shutdown(self):
        self.stop.set()

    # -------------------
    # Tick
    # -------------------
    def tick(self):
        st = self.state
        changed = False

        for snap in drain(self.snapshots):
            st.apply_snapshot(snap)
            changed = True
        for msg in drain(self.harvest):
            st.apply_harvest_message(msg)
            changed = True
        for event in drain(self.ai):
            st.apply_stream_event(event)
            changed = True
        for result in drain(self.history):
            st.apply_history(result)
            changed = True

        if changed:
            self._follow_lane_opponent()
            self.render()

    def _follow_lane_opponent(self):
        # show counters for the lane opponent once, without overriding a manual pick
        enemy = self.state.lane_enemy()
        if enemy is None or enemy.champion_id == self._auto_lane_id:
            return
        self._auto_lane_id = enemy.champion_id
        self.select_enemy(enemy)

    def render(self):
        st = self.state
        win = self.win

        if st.connected:
            pos = f" | {st.my_position}" if st.my_position else ""
            status = f"Connected [{st.locale_tag}]{pos} @ {st.last_update_time}"
        else:
            status = "Waiting for the League client"
        if st.error:
            status += f"\n{st.error}"
        win.set_status(status)

        win.set_data_text(st.data_time_text(), st.progress_text, st.updating)
        win.set_enemies(st.enemies, st.lane_opponent_id, st.icons)

        title = f"Counters vs {st.counter_name}" if st.counter_name else "Select an enemy"
        win.set_counters(title, st.counter_data, st.counter_error if st.counter_slug else "", st.counter_position)
        win.set_players(st.teammates)

        ai_title = st.ai_title + (" …" if st.ai_loading else "")
        win.set_ai(ai_title, st.ai_text)

        if st.history_loading:
            win.set_history(f"{st.history_name}\nLoading…", [])
        else:
            win.set_history(st.history_name, st.history)

    # -------------------
    # Actions
    # -------------------
    def start_harvest(self):
        if not self.state.begin_harvest():
            return
        logger.info("starting full counter update")
        spawn_harvest(self.harvest, store_path=self.settings.cache_path())
        self.render()

    def select_enemy(self, enemy: EnemyRef):
        self.selected_enemy = enemy
        self.state.load_counter_data(enemy.slug, enemy.display_name, enemy.position or self.state.my_position)
        self.render()

    def sort_counters(self, column: str):
        self.state.set_counter_sort(column)
        self.render()

    def change_counter_position(self, position: str):
        self.state.set_counter_position(position)
        self.render()

    def analyze_counter(self, row: CounterDisplay):
        enemy = self.selected_enemy
        if enemy is None:
            return
        if not self.settings.openai_api_key:
            self.win.set_status("Set OPENAI_API_KEY to enable AI analysis")
            return

        position = enemy.position or self.state.my_position
        key = ai_cache_key(row.name, enemy.display_name, position, self.settings.openai_model)
        if not self.state.begin_analysis(key, f"{row.name} vs {enemy.display_name}"):
            self.render()
            return

        system_prompt, user_prompt = build_matchup_prompts(row.name, enemy.display_name, position, row.win_rate)
        run_completion(
            self.ai,
            self.settings.openai_api_url,
            self.settings.openai_api_key,
            self.settings.openai_model,
            system_prompt,
            user_prompt,
        )
        self.render()

    def show_history(self, player: PlayerRef):
        st = self.state
        if not player.tag_line:
            st.history_name = f"{player.summoner_name}\nNo Riot tag; cannot look up history"
            st.history = []
            self.render()
            return

        cache_key = f"{player.summoner_name}#{player.tag_line}"
        cached = st.history_cache.get(cache_key)
        if cached is not None:
            st.history_name = player.riot_id
            st.history = cached
            self.render()
            return

        st.history_loading = True
        st.history_name = player.riot_id
        spawn_match_history(
            self.history,
            self.settings.region,
            player.summoner_name,
            player.tag_line,
            player.riot_id,
            resolve_region=self._region_lookup(),
        )
        self.render()

    def _region_lookup(self) -> Optional[Callable[[], str]]:
        """Region from the connected client; the returned callable runs on the history worker."""
        auth = self.state.credential
        if auth is None:
            return None
        regions = self._regions
        fallback = self.settings.region

        def lookup() -> str:
            if auth.base_url not in regions:
                payload = lcu.get_region_locale(lcu.lcu_client(), auth)
                regions[auth.base_url] = region_from_locale(payload, fallback)
            return regions[auth.base_url]

        return lookup


def main():
    log_file = configure_logging()
    logger.info("Lanesight starting, logging to %s", log_file)

    app = QApplication([])
    win = MainWindow()
    win.apply_theme()
    win.show()

    settings = ensure_api_key(win)
    controller = Controller(win, settings)
    app.aboutToQuit.connect(controller.shutdown)

    timer = QTimer()
    timer.timeout.connect(controller.tick)
    timer.start(TICK_MS)

    QTimer.singleShot(0, controller.start)

    app.exec()


if __name__ == "__main__":
    main()
