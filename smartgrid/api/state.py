# =======================================================================================
# smartgrid/api/state.py - Shared Application State
# =======================================================================================
from typing import Optional
from ..config import config
from ..database import DatabaseManager
from ..services.backpack_service import BackpackService
from ..services.change_feed import ChangeFeed
from ..services.inventory_repository import InventoryRepository
from ..services.kit_monitor import KitMonitor
from ..services.layout_designer import LayoutDesigner
from ..services.replacement import ReplacementService


class AppState:
    """Everything the routes share: one database, one change feed, one kit snapshot."""

    def __init__(self, db: Optional[DatabaseManager] = None, layout_id: Optional[str] = None):
        self.db = db or DatabaseManager()
        self.feed = ChangeFeed()
        self.repository = InventoryRepository(self.db, self.feed)
        self.monitor = KitMonitor(self.repository, layout_id or config.MASTER_LAYOUT_ID)
        self.backpacks = BackpackService(self.repository, self.monitor)
        self.replacement = ReplacementService(self.repository, self.monitor)
        self.designer = LayoutDesigner(self.repository, self.monitor.layout_id)

    def start(self) -> None:
        self.monitor.start()

    def stop(self) -> None:
        self.monitor.stop()
        self.db.dispose()
