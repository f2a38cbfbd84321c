# =======================================================================================
# smartgrid/services/backpack_service.py - Kit Lifecycle Service
# =======================================================================================
import logging
from datetime import datetime, timezone
from typing import Optional
from ..config import config
from ..models.enums import OperationalStatus
from ..models.schemas import Backpack, CreateBackpackRequest
from ..utils.exceptions import NotFoundError, ProtocolError
from .inventory_repository import InventoryRepository
from .kit_monitor import KitMonitor

logger = logging.getLogger(__name__)


class BackpackService:
    """Handles kit creation, removal, preparation mode and controller check-ins."""

    def __init__(self, repository: InventoryRepository, monitor: KitMonitor):
        self.repository = repository
        self.monitor = monitor

    def create_backpack(self, request: CreateBackpackRequest) -> Backpack:
        """New kits start empty (so they need attention) on the master layout's grid."""
        kit_id = request.id.strip()
        if self.repository.get_backpack(kit_id) is not None:
            raise ProtocolError(f"Backpack {kit_id} already exists", code="ALREADY_EXISTS")

        layout = self.monitor.layout
        backpack = Backpack(
            id=kit_id,
            qr_code=f"smartgrid:bp:{kit_id}",
            name=request.name,
            hospital=request.hospital,
            type=request.type,
            last_sync=datetime.now(timezone.utc),
            battery_level=100,
            grid_cols=layout.grid_cols if layout else config.DEFAULT_GRID_COLS,
            grid_rows=layout.grid_rows if layout else config.DEFAULT_GRID_ROWS,
            operational_status=OperationalStatus.NEEDS_ATTENTION,
            modules=[],
        )
        self.repository.save_backpack(backpack)
        logger.info("Backpack %s (%s) created", kit_id, request.name)
        return self.monitor.get_backpack(kit_id) if self._in_snapshot(kit_id) else backpack

    def delete_backpack(self, backpack_id: str) -> None:
        """Removes the kit; its pouches are released back to the pool."""
        self.repository.delete_backpack(backpack_id)
        self.monitor.remove_backpack(backpack_id)
        logger.info("Backpack %s deleted", backpack_id)

    def begin_preparation(self, backpack_id: str) -> Backpack:
        self.monitor.get_backpack(backpack_id)
        self.repository.update_backpack_status(backpack_id, OperationalStatus.IN_PREPARATION)
        return self.monitor.get_backpack(backpack_id)

    def end_preparation(self, backpack_id: str) -> Backpack:
        """Leave preparation mode: the kit's real status is derived again and stored."""
        backpack = self.monitor.get_backpack(backpack_id)
        if backpack.operational_status != OperationalStatus.IN_PREPARATION:
            raise ProtocolError(f"Backpack {backpack_id} is not being prepared", code="NOT_IN_PREPARATION")

        resolved = self.monitor.resolver.resolve(backpack, self.monitor.layout, honor_preparation=False)
        self.repository.update_backpack_status(backpack_id, resolved)
        logger.info("Backpack %s preparation finished, status %s", backpack_id, resolved.value)
        return self.monitor.get_backpack(backpack_id)

    def record_sync(self, backpack_id: str, battery_level: Optional[int] = None) -> Backpack:
        self.repository.record_sync(backpack_id, battery_level)
        return self.monitor.get_backpack(backpack_id)

    def lookup(self, query: str) -> Backpack:
        backpack = self.monitor.lookup(query)
        if backpack is None:
            raise NotFoundError(f"No backpack matches '{query}'")
        return backpack

    def _in_snapshot(self, backpack_id: str) -> bool:
        try:
            self.monitor.get_backpack(backpack_id)
        except NotFoundError:
            return False
        return True
