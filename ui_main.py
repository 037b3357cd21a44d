from __future__ import annotations
from typing import Callable, Dict, List, Optional, Tuple

from PySide6.QtCore import Qt, QSize
from PySide6.QtGui import QIcon, QImage, QPixmap
from PySide6.QtWidgets import (
    QComboBox,
    QHBoxLayout,
    QHeaderView,
    QLabel,
    QListWidget,
    QListWidgetItem,
    QMainWindow,
    QPlainTextEdit,
    QPushButton,
    QTableWidget,
    QTableWidgetItem,
    QVBoxLayout,
    QWidget,
)

from catalog import canonical_position, position_label
from history import queue_name, rank_label
from model import CounterDisplay, EnemyRef, MatchEntry, PlayerRef


BASE_FONT = 13
MINITITLE_FONT = 13

DARK_QSS = f"""
QMainWindow, QWidget {{
  background-color: #000000;
  color: #ffffff;
  font-family: Segoe UI;
  font-size: {BASE_FONT}px;
}}

QLabel#Subtle {{ color: #d8d8d8; }}

QLabel#MiniTitle {{
  font-size: {MINITITLE_FONT}px;
  font-weight: 700;
}}

QWidget#Card {{
  background-color: #000000;
  border: 1px solid #ffffff;
}}

QPushButton {{
  background-color: #000000;
  border: 1px solid #ffffff;
  padding: 6px 12px;
}}
QPushButton:hover {{ background-color: #101010; }}
QPushButton:disabled {{ color: #777777; border-color: #777777; }}

QListWidget, QTableWidget, QPlainTextEdit {{
  background-color: #000000;
  border: 1px solid #ffffff;
  gridline-color: #222222;
}}
QListWidget::item:selected, QTableWidget::item:selected {{ background-color: #1a1a1a; }}

QHeaderView::section {{
  background-color: #000000;
  color: #ffffff;
  border: 1px solid #ffffff;
  padding: 4px;
}}
"""

ICON_SIZE = 32

COUNTER_COLUMNS = ("name", "win_rate", "games")
LANE_CHOICES = ("TOP", "JUNGLE", "MIDDLE", "BOTTOM", "UTILITY")

_PIXMAP_CACHE: Dict[int, QPixmap] = {}


def pixmap_from_rgba(champion_id: int, icon: Tuple[bytes, int, int]) -> QPixmap:
    if champion_id in _PIXMAP_CACHE:
        return _PIXMAP_CACHE[champion_id]
    rgba, w, h = icon
    img = QImage(rgba, w, h, 4 * w, QImage.Format_RGBA8888).copy()  # copy: rgba may be freed
    pix = QPixmap.fromImage(img).scaled(QSize(ICON_SIZE, ICON_SIZE), Qt.KeepAspectRatio, Qt.SmoothTransformation)
    _PIXMAP_CACHE[champion_id] = pix
    return pix


def _card(title: str) -> Tuple[QWidget, QVBoxLayout]:
    card = QWidget()
    card.setObjectName("Card")
    lay = QVBoxLayout(card)
    lay.setContentsMargins(10, 8, 10, 10)
    lay.setSpacing(6)
    t = QLabel(f"[{title}]")
    t.setObjectName("MiniTitle")
    lay.addWidget(t)
    return card, lay


def _table(headers: List[str]) -> QTableWidget:
    t = QTableWidget(0, len(headers))
    t.setHorizontalHeaderLabels(headers)
    t.verticalHeader().setVisible(False)
    t.setEditTriggers(QTableWidget.NoEditTriggers)
    t.setSelectionBehavior(QTableWidget.SelectRows)
    t.horizontalHeader().setSectionResizeMode(QHeaderView.Stretch)
    return t


class MainWindow(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("Lanesight")
        self.resize(420, 900)

        root = QWidget()
        self.setCentralWidget(root)
        outer = QVBoxLayout(root)
        outer.setContentsMargins(8, 8, 8, 8)
        outer.setSpacing(8)

        top = QHBoxLayout()
        self.status = QLabel("Starting…")
        self.status.setObjectName("Subtle")
        self.status.setWordWrap(True)
        self.update_btn = QPushButton("Full update")
        top.addWidget(self.status, 1)
        top.addWidget(self.update_btn)
        outer.addLayout(top)

        self.data_line = QLabel("")
        self.data_line.setObjectName("Subtle")
        outer.addWidget(self.data_line)

        enemy_card, enemy_lay = _card("Enemies")
        self.enemy_list = QListWidget()
        self.enemy_list.setIconSize(QSize(ICON_SIZE, ICON_SIZE))
        self.enemy_list.setMaximumHeight(5 * (ICON_SIZE + 8))
        enemy_lay.addWidget(self.enemy_list)
        outer.addWidget(enemy_card)

        counter_card, counter_lay = _card("Counters")
        counter_top = QHBoxLayout()
        self.counter_title = QLabel("-")
        self.counter_title.setObjectName("Subtle")
        self.counter_pos = QComboBox()
        self.counter_pos.addItem("Lane", "")
        for pos in LANE_CHOICES:
            self.counter_pos.addItem(position_label(pos), pos)
        counter_top.addWidget(self.counter_title, 1)
        counter_top.addWidget(self.counter_pos)
        self.counter_table = _table(["Champion", "Win rate", "Games"])
        self.counter_table.horizontalHeader().setSectionsClickable(True)
        counter_lay.addLayout(counter_top)
        counter_lay.addWidget(self.counter_table)
        outer.addWidget(counter_card, 2)

        players_card, players_lay = _card("Players")
        self.players_table = _table(["Player", "Champion", "Rank"])
        players_lay.addWidget(self.players_table)
        outer.addWidget(players_card, 2)

        ai_card, ai_lay = _card("AI")
        self.ai_title = QLabel("")
        self.ai_title.setObjectName("Subtle")
        self.ai_text = QPlainTextEdit()
        self.ai_text.setReadOnly(True)
        ai_lay.addWidget(self.ai_title)
        ai_lay.addWidget(self.ai_text)
        outer.addWidget(ai_card, 2)

        history_card, history_lay = _card("Recent games")
        self.history_title = QLabel("")
        self.history_title.setObjectName("Subtle")
        self.history_title.setWordWrap(True)
        self.history_table = _table(["Result", "KDA", "Queue", "Min"])
        history_lay.addWidget(self.history_title)
        history_lay.addWidget(self.history_table)
        outer.addWidget(history_card, 2)

        self._enemies: List[EnemyRef] = []
        self._counters: List[CounterDisplay] = []
        self._players: List[PlayerRef] = []

    def apply_theme(self):
        self.setStyleSheet(DARK_QSS)

    # -------------------
    # Callbacks
    # -------------------
    def set_update_callback(self, fn: Callable[[], None]):
        self.update_btn.clicked.connect(lambda: fn())

    def set_enemy_callback(self, fn: Callable[[EnemyRef], None]):
        self.enemy_list.itemClicked.connect(lambda item: fn(self._enemies[self.enemy_list.row(item)]))

    def set_counter_callback(self, fn: Callable[[CounterDisplay], None]):
        self.counter_table.cellDoubleClicked.connect(lambda row, _col: fn(self._counters[row]))

    def set_counter_sort_callback(self, fn: Callable[[str], None]):
        self.counter_table.horizontalHeader().sectionClicked.connect(lambda col: fn(COUNTER_COLUMNS[col]))

    def set_counter_position_callback(self, fn: Callable[[str], None]):
        self.counter_pos.activated.connect(lambda idx: fn(self.counter_pos.itemData(idx) or ""))

    def set_player_callback(self, fn: Callable[[PlayerRef], None]):
        self.players_table.cellDoubleClicked.connect(lambda row, _col: fn(self._players[row]))

    # -------------------
    # Setters
    # -------------------
    def set_status(self, text: str):
        self.status.setText(text)

    def set_data_text(self, text: str, progress: str = "", updating: bool = False):
        self.data_line.setText(progress or text)
        self.update_btn.setEnabled(not updating)

    def set_enemies(self, enemies: List[EnemyRef], lane_id: Optional[int], icons: Dict[int, Tuple[bytes, int, int]]):
        if enemies == self._enemies and self.enemy_list.count() == len(enemies):
            return
        self._enemies = list(enemies)
        self.enemy_list.clear()
        for e in enemies:
            label = e.display_name
            pos = position_label(e.position)
            if pos:
                label += f"  ({pos})"
            if e.champion_id == lane_id:
                label += "  ← lane"
            item = QListWidgetItem(label)
            icon = icons.get(e.champion_id)
            if icon:
                item.setIcon(QIcon(pixmap_from_rgba(e.champion_id, icon)))
            self.enemy_list.addItem(item)

    def set_counters(self, title: str, rows: List[CounterDisplay], error: str = "", position: str = ""):
        self.counter_title.setText(error or title)
        target = canonical_position(position)
        idx = 0
        for i in range(1, self.counter_pos.count()):
            if target and canonical_position(self.counter_pos.itemData(i)) == target:
                idx = i
        self.counter_pos.setCurrentIndex(idx)
        self._counters = list(rows)
        self.counter_table.setRowCount(len(rows))
        for i, r in enumerate(rows):
            self.counter_table.setItem(i, 0, QTableWidgetItem(r.name))
            self.counter_table.setItem(i, 1, QTableWidgetItem(f"{r.win_rate:.1f}%"))
            self.counter_table.setItem(i, 2, QTableWidgetItem(str(r.games)))

    def set_players(self, players: List[PlayerRef]):
        if players == self._players:
            return
        self._players = list(players)
        self.players_table.setRowCount(len(players))
        for i, p in enumerate(players):
            name = p.riot_id if p.is_ally else f"{p.riot_id} (enemy)"
            self.players_table.setItem(i, 0, QTableWidgetItem(name))
            self.players_table.setItem(i, 1, QTableWidgetItem(p.champion_name or "-"))
            self.players_table.setItem(i, 2, QTableWidgetItem(rank_label(p.rank_tier, p.rank_division, p.rank_lp)))

    def set_ai(self, title: str, text: str):
        self.ai_title.setText(title)
        if self.ai_text.toPlainText() != text:
            self.ai_text.setPlainText(text)
            self.ai_text.verticalScrollBar().setValue(self.ai_text.verticalScrollBar().maximum())

    def set_history(self, title: str, entries: List[MatchEntry]):
        self.history_title.setText(title)
        self.history_table.setRowCount(len(entries))
        for i, m in enumerate(entries):
            self.history_table.setItem(i, 0, QTableWidgetItem("Win" if m.win else "Loss"))
            self.history_table.setItem(i, 1, QTableWidgetItem(m.kda_str))
            self.history_table.setItem(i, 2, QTableWidgetItem(queue_name(m.queue_id)))
            self.history_table.setItem(i, 3, QTableWidgetItem(str(m.duration_min)))
