# =======================================================================================
# smartgrid/services/kit_monitor.py - Snapshot Refresh & Status Correction
# =======================================================================================
import logging
import threading
from typing import Callable, List, Optional
from ..config import config
from ..models.enums import OperationalStatus
from ..models.schemas import Backpack, ContentDefinition, MasterLayout, Module, PickListItem
from ..utils.exceptions import NotFoundError, TransportError
from .inventory_repository import InventoryRepository
from .layout_reconciler import LayoutReconciler
from .status_resolver import StatusResolver

logger = logging.getLogger(__name__)


class KitMonitor:
    """
    Holds the last-known-good snapshot of kits, master layout and catalog.

    Every change signal triggers a full re-fetch, re-resolution of each kit's
    status and a push of corrected statuses (never over a kit that is being
    prepared). Signals arriving while a refresh runs are folded into one
    follow-up refresh. A background timer refreshes as well, and every read
    re-resolves the kit it returns, so time-driven changes (a controller gone
    quiet, a pouch entering its expiry window) surface without a write.
    """

    def __init__(
        self,
        repository: InventoryRepository,
        layout_id: Optional[str] = None,
        resolver: Optional[StatusResolver] = None,
        reconciler: Optional[LayoutReconciler] = None,
    ):
        self.repository = repository
        self.layout_id = layout_id or config.MASTER_LAYOUT_ID
        self.resolver = resolver or StatusResolver()
        self.reconciler = reconciler or LayoutReconciler()

        self.backpacks: List[Backpack] = []
        self.layout: Optional[MasterLayout] = None
        self.catalog: List[ContentDefinition] = []
        self.connection_error: Optional[str] = None

        self._lock = threading.Lock()
        self._refreshing = False
        self._pending = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._poll_stop = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Start / Stop
    # ------------------------------------------------------------------
    def start(self, interval: Optional[float] = None) -> None:
        """
        Subscribe to change signals, load the first snapshot and start the
        periodic re-resolution thread. Staleness and expiry windows move with
        the clock, so kits are re-resolved every `interval` seconds even when
        nothing is written. An interval of 0 disables the thread.
        """
        if self._unsubscribe is None:
            self._unsubscribe = self.repository.feed.subscribe(self._on_change)
        self.refresh()

        interval = config.MONITOR_INTERVAL_SECONDS if interval is None else interval
        if interval > 0 and self._poll_thread is None:
            self._poll_stop = threading.Event()
            self._poll_thread = threading.Thread(
                target=self._poll_loop,
                args=(self._poll_stop, interval),
                daemon=True,
            )
            self._poll_thread.start()
            logger.info("Kit monitor polling every %ss", interval)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._poll_thread is not None:
            self._poll_stop.set()
            self._poll_thread.join(timeout=5.0)
            self._poll_thread = None

    def _poll_loop(self, stop_event: threading.Event, interval: float) -> None:
        while not stop_event.wait(timeout=interval):
            try:
                self.refresh()
            except Exception as e:
                logger.warning("Periodic refresh: %s", e)

    def _on_change(self, table: str) -> None:
        logger.debug("Change on %s, refreshing", table)
        self.refresh()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------
    def refresh(self) -> bool:
        """Re-fetch everything. On transport failure keep the previous snapshot."""
        with self._lock:
            if self._refreshing:
                self._pending = True
                return True
            self._refreshing = True

        try:
            while True:
                ok = self._refresh_once()
                with self._lock:
                    if not self._pending:
                        return ok
                    self._pending = False
        finally:
            with self._lock:
                self._refreshing = False
                self._pending = False

    def _refresh_once(self) -> bool:
        try:
            layout = self.repository.get_master_layout(self.layout_id)
            catalog = self.repository.get_catalog()
            backpacks = self.repository.get_backpacks()
        except TransportError as e:
            self.connection_error = e.message
            logger.warning("Refresh failed, keeping last known snapshot: %s", e.message)
            return False

        corrected = [self._correct_status(bp, layout) for bp in backpacks]
        with self._lock:
            self.layout = layout
            self.catalog = catalog
            self.backpacks = corrected
            self.connection_error = None
        return True

    def _correct_status(self, backpack: Backpack, layout: Optional[MasterLayout]) -> Backpack:
        resolved = self.resolver.resolve(backpack, layout)
        if not self.resolver.needs_correction(backpack, resolved):
            return backpack

        logger.info(
            "Backpack %s status %s -> %s",
            backpack.id, backpack.operational_status.value, resolved.value,
        )
        try:
            self.repository.update_backpack_status(backpack.id, resolved)
        except (TransportError, NotFoundError) as e:
            logger.warning("Could not push status for backpack %s: %s", backpack.id, e)
        return backpack.model_copy(update={"operational_status": resolved})

    # ------------------------------------------------------------------
    # Snapshot access
    # ------------------------------------------------------------------
    def list_backpacks(self) -> List[Backpack]:
        """All kits, each re-resolved against the current clock."""
        with self._lock:
            backpacks = list(self.backpacks)
        return [self._reresolve(bp) for bp in backpacks]

    def get_backpack(self, backpack_id: str) -> Backpack:
        with self._lock:
            found = next((bp for bp in self.backpacks if bp.id == backpack_id), None)
        if found is None:
            raise NotFoundError(f"Backpack {backpack_id} not found")
        return self._reresolve(found)

    def _reresolve(self, backpack: Backpack) -> Backpack:
        corrected = self._correct_status(backpack, self.layout)
        if corrected is backpack:
            return backpack
        # Only swap in if no refresh replaced the entry meanwhile
        with self._lock:
            self.backpacks = [corrected if bp is backpack else bp for bp in self.backpacks]
        return corrected

    def replace_backpack(self, backpack: Backpack) -> None:
        """Swap one kit in the snapshot (after a local commit, before the change signal lands)."""
        with self._lock:
            self.backpacks = [backpack if bp.id == backpack.id else bp for bp in self.backpacks]
            if not any(bp.id == backpack.id for bp in self.backpacks):
                self.backpacks.append(backpack)

    def remove_backpack(self, backpack_id: str) -> None:
        with self._lock:
            self.backpacks = [bp for bp in self.backpacks if bp.id != backpack_id]

    def effective_modules(self, backpack_id: str) -> List[Module]:
        backpack = self.get_backpack(backpack_id)
        return self.reconciler.project(backpack, self.layout, self.catalog)

    def pick_list(self, backpack_id: str) -> List[PickListItem]:
        backpack = self.get_backpack(backpack_id)
        modules = self.reconciler.project(backpack, self.layout, self.catalog)
        configuring = backpack.operational_status == OperationalStatus.IN_PREPARATION
        return self.reconciler.build_pick_list(modules, configuring)

    def lookup(self, query: str) -> Optional[Backpack]:
        """Find a kit from a scanned QR payload, its id, or part of its name."""
        needle = (query or "").strip()
        if not needle:
            return None
        lowered = needle.lower()
        with self._lock:
            backpacks = list(self.backpacks)
        for bp in backpacks:
            if bp.id.lower() == lowered or bp.qr_code == needle:
                return self._reresolve(bp)
        for bp in backpacks:
            if lowered in bp.name.lower():
                return self._reresolve(bp)
        return None
