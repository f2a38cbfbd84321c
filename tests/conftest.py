"""
Pytest configuration and fixtures
"""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from smartgrid.api.state import AppState
from smartgrid.database import DatabaseManager
from smartgrid.main import create_app
from smartgrid.models.enums import ModuleStatus, OperationalStatus
from smartgrid.models.schemas import Backpack, ContentDefinition, MasterLayout, Module, SlotTemplate
from smartgrid.services.change_feed import ChangeFeed
from smartgrid.services.inventory_repository import InventoryRepository
from smartgrid.services.kit_monitor import KitMonitor

LAYOUT_ID = "default_mug"
KIT_ID = "BP-1"

SCHEMA = [
    """
    CREATE TABLE catalog (
        code TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        default_width INTEGER DEFAULT 1,
        default_height INTEGER DEFAULT 1
    )
    """,
    """
    CREATE TABLE backpacks (
        id TEXT PRIMARY KEY,
        qr_code TEXT,
        name TEXT NOT NULL,
        hospital TEXT,
        type TEXT,
        last_sync TEXT,
        battery_level INTEGER,
        operational_status TEXT,
        grid_cols INTEGER,
        grid_rows INTEGER
    )
    """,
    """
    CREATE TABLE modules (
        id TEXT PRIMARY KEY,
        name TEXT,
        status TEXT,
        last_update TEXT,
        backpack_id TEXT,
        color TEXT,
        calculated_expiry TEXT,
        pos_x INTEGER,
        pos_y INTEGER,
        width INTEGER,
        height INTEGER
    )
    """,
    """
    CREATE TABLE module_contents (
        id TEXT PRIMARY KEY,
        module_id TEXT NOT NULL,
        article_name TEXT NOT NULL,
        batch_number TEXT,
        expiry_date TEXT,
        quantity INTEGER
    )
    """,
    """
    CREATE TABLE master_layouts (
        id TEXT PRIMARY KEY,
        grid_cols INTEGER NOT NULL,
        grid_rows INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE master_modules (
        id TEXT PRIMARY KEY,
        master_layout_id TEXT NOT NULL,
        name TEXT,
        pos_x INTEGER,
        pos_y INTEGER,
        width INTEGER,
        height INTEGER,
        color TEXT
    )
    """,
]


def make_module(module_id, x=0, y=0, width=1, height=1, status=ModuleStatus.OK, backpack_id=KIT_ID, **extra):
    return Module(
        id=module_id,
        pos_x=x,
        pos_y=y,
        width=width,
        height=height,
        status=status,
        backpack_id=backpack_id,
        **extra,
    )


def make_layout():
    """Two slots: a red airway pouch spanning two columns and a blue bandage pouch."""
    return MasterLayout(
        id=LAYOUT_ID,
        grid_cols=4,
        grid_rows=6,
        slots=[
            SlotTemplate(id="slot-airway", name="Airway", color="red", pos_x=0, pos_y=0, width=2, height=1),
            SlotTemplate(id="slot-bandage", name="Bandages", color="blue", pos_x=2, pos_y=0),
        ],
    )


def make_kit(modules=None, status=OperationalStatus.OPERATIONAL, last_sync=None):
    if modules is None:
        modules = [
            make_module("01010001", 0, 0, width=2, name="Airway", color="red"),
            make_module("02010002", 2, 0, name="Bandages", color="blue"),
        ]
    return Backpack(
        id=KIT_ID,
        qr_code=f"smartgrid:bp:{KIT_ID}",
        name="Spoed Ambulance 1",
        hospital="AZ Test",
        type="Spoed",
        last_sync=last_sync or datetime.now(timezone.utc),
        operational_status=status,
        modules=modules,
    )


def stale(minutes=30):
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite://")
    with manager.get_connection() as conn:
        for ddl in SCHEMA:
            conn.execute(text(ddl))
    yield manager
    manager.dispose()


@pytest.fixture
def repo(db):
    return InventoryRepository(db, ChangeFeed())


def seed(repository):
    """Layout, catalog, one complete kit and two spare pouches."""
    repository.save_master_layout(make_layout())
    repository.add_content_definition(ContentDefinition(code="1", name="Airway"))
    repository.add_content_definition(ContentDefinition(code="2", name="Bandages"))
    repository.save_backpack(make_kit())
    repository.register_module("01020001", "Airway", "red")
    repository.register_module("02020002", "Bandages", "blue")


@pytest.fixture
def seeded_repo(repo):
    seed(repo)
    return repo


@pytest.fixture
def monitor(seeded_repo):
    kit_monitor = KitMonitor(seeded_repo, LAYOUT_ID)
    kit_monitor.start()
    yield kit_monitor
    kit_monitor.stop()


@pytest.fixture
def state(db):
    app_state = AppState(db=db, layout_id=LAYOUT_ID)
    seed(app_state.repository)
    return app_state


@pytest.fixture
def client(state):
    with TestClient(create_app(state)) as test_client:
        yield test_client


@pytest.fixture
def clock_ahead(monkeypatch):
    """Move the clock the status rules read forward by a timedelta."""

    def advance(offset):
        class _Later(datetime):
            @classmethod
            def now(cls, tz=None):
                return datetime.now(tz) + offset

        monkeypatch.setattr("smartgrid.services.status_resolver.datetime", _Later)

    return advance
