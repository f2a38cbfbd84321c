from datetime import datetime

from smartgrid.config import config
from smartgrid.models.schemas import Backpack, Module


def test_backpack_grid_defaults_follow_config(monkeypatch):
    monkeypatch.setattr(config, "DEFAULT_GRID_COLS", 7)
    monkeypatch.setattr(config, "DEFAULT_GRID_ROWS", 3)

    kit = Backpack(id="BP-9", qr_code="smartgrid:bp:BP-9", name="Trauma")

    assert (kit.grid_cols, kit.grid_rows) == (7, 3)
    assert Backpack(id="BP-9", qr_code="x", name="Trauma", grid_cols=2).grid_cols == 2


def test_naive_timestamps_read_as_utc():
    module = Module(id="01010001", last_update=datetime(2026, 3, 1, 12, 0))
    assert module.last_update.utcoffset().total_seconds() == 0
