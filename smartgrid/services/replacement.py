# =======================================================================================
# smartgrid/services/replacement.py - Two-Step Pouch Replacement Protocol
# =======================================================================================
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Optional, Union
from ..models.enums import ModuleStatus, ReplacementStep
from ..models.schemas import Backpack, MasterLayout, Module, ReplacementResult, ReplacementSessionOut
from ..utils.exceptions import (
    CompatibilityError,
    FormatError,
    NotFoundError,
    ProtocolError,
    TransportError,
)
from ..utils.validators import FamilyValidator, rectangles_overlap, validate_replacement
from .identifier_codec import format_identifier
from .inventory_repository import InventoryRepository
from .kit_monitor import KitMonitor
from .layout_reconciler import LayoutReconciler
from .status_resolver import StatusResolver

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Pure state machine
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class ReplacementSession:
    backpack_id: str
    target_x: int
    target_y: int
    step: ReplacementStep


@dataclass(frozen=True)
class ScanOld:
    scanned_id: str


@dataclass(frozen=True)
class SkipOld:
    pass


@dataclass(frozen=True)
class ScanNew:
    scanned_id: str
    found: Optional[Module]


@dataclass(frozen=True)
class Cancel:
    pass


Event = Union[ScanOld, SkipOld, ScanNew, Cancel]


@dataclass(frozen=True)
class Transition:
    session: ReplacementSession
    result: ReplacementResult
    placed: Optional[Module] = None


def open_session(backpack_id: str, target: Module) -> ReplacementSession:
    """An empty slot has nothing to take out: go straight to scanning the new pouch."""
    step = ReplacementStep.SCAN_NEW if target.status == ModuleStatus.MISSING else ReplacementStep.SCAN_OLD
    return ReplacementSession(backpack_id, target.pos_x, target.pos_y, step)


def _fail(session: ReplacementSession, message: str, code: str) -> Transition:
    return Transition(session, ReplacementResult(success=False, message=message, code=code, step=session.step))


def _check_available(scanned_id: str, found: Optional[Module]) -> Module:
    if found is None:
        raise ProtocolError(f"Pouch {scanned_id} is not registered.", code="NOT_REGISTERED")
    if found.backpack_id:
        raise ProtocolError(
            f"Pouch is already assigned to backpack {found.backpack_id}.", code="ALREADY_ASSIGNED"
        )
    if found.status != ModuleStatus.WAITING_FOR_MATCHMAKING:
        raise ProtocolError(
            f"Pouch is not available (status: {found.status.value}).", code="NOT_AVAILABLE"
        )
    return found


def transition(
    session: ReplacementSession,
    event: Event,
    target: Module,
    now: Optional[datetime] = None,
) -> Transition:
    """
    Advance the protocol by one event. Failures leave the session at its current
    step; only a successful SCAN_NEW (or a cancel) returns it to IDLE.
    """
    if isinstance(event, Cancel):
        idle = replace(session, step=ReplacementStep.IDLE)
        return Transition(idle, ReplacementResult(success=True, message="Replacement cancelled.", step=idle.step))

    if isinstance(event, SkipOld):
        if session.step != ReplacementStep.SCAN_OLD:
            return _fail(session, "Nothing to skip at this step.", "OUT_OF_STEP")
        advanced = replace(session, step=ReplacementStep.SCAN_NEW)
        return Transition(
            advanced,
            ReplacementResult(success=True, message="Removal skipped. Scan the new pouch.", step=advanced.step),
        )

    if isinstance(event, ScanOld):
        if session.step != ReplacementStep.SCAN_OLD:
            return _fail(session, "Not expecting the old pouch at this step.", "OUT_OF_STEP")
        if event.scanned_id.strip() != target.id.strip():
            return _fail(session, f"Wrong pouch scanned. Expected: {target.id}", "WRONG_MODULE")
        advanced = replace(session, step=ReplacementStep.SCAN_NEW)
        return Transition(
            advanced,
            ReplacementResult(success=True, message="Old pouch verified. Now scan the new pouch.", step=advanced.step),
        )

    if session.step != ReplacementStep.SCAN_NEW:
        return _fail(session, "Scan the old pouch first.", "OUT_OF_STEP")

    try:
        found = _check_available(event.scanned_id, event.found)
        message = FamilyValidator.check(target.id, event.scanned_id)
    except (FormatError, ProtocolError, CompatibilityError) as e:
        return _fail(session, e.message, e.code)

    placed = found.model_copy(
        update={
            "pos_x": target.pos_x,
            "pos_y": target.pos_y,
            "width": target.width,
            "height": target.height,
            "status": ModuleStatus.OK,
            "last_update": now or datetime.now(timezone.utc),
            "backpack_id": session.backpack_id,
        }
    )
    idle = replace(session, step=ReplacementStep.IDLE)
    return Transition(idle, ReplacementResult(success=True, message=message, step=idle.step), placed)


def apply_placement(
    backpack: Backpack,
    placed: Module,
    template: Optional[MasterLayout],
    resolver: Optional[StatusResolver] = None,
) -> Backpack:
    """Put the placed pouch into the kit, dropping every module its rectangle overlaps, and re-resolve."""
    modules = [
        m for m in backpack.modules
        if m.id != placed.id and not rectangles_overlap(m, placed)
    ]
    modules.append(placed)
    updated = backpack.model_copy(update={"modules": modules})
    status = (resolver or StatusResolver()).resolve(updated, template)
    return updated.model_copy(update={"operational_status": status})


# ----------------------------------------------------------------------
# Session orchestration
# ----------------------------------------------------------------------
class ReplacementService:
    """
    One open session per kit. Scans for a kit are processed one at a time; the
    target slot is re-read from the current effective view on every scan so a
    background refresh never changes which slot is being worked on.
    """

    def __init__(self, repository: InventoryRepository, monitor: KitMonitor):
        self.repository = repository
        self.monitor = monitor
        self._sessions: Dict[str, ReplacementSession] = {}
        self._kit_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def _kit_lock(self, backpack_id: str) -> threading.Lock:
        with self._lock:
            return self._kit_locks.setdefault(backpack_id, threading.Lock())

    def _target(self, session: ReplacementSession) -> Optional[Module]:
        modules = self.monitor.effective_modules(session.backpack_id)
        return LayoutReconciler.find_at(modules, session.target_x, session.target_y)

    def describe(self, session: ReplacementSession) -> ReplacementSessionOut:
        return ReplacementSessionOut(
            backpack_id=session.backpack_id,
            target_x=session.target_x,
            target_y=session.target_y,
            step=session.step,
            target=self._target(session),
        )

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def start(self, backpack_id: str, pos_x: int, pos_y: int) -> ReplacementSessionOut:
        """Select a target slot; any open session on this kit is abandoned."""
        with self._kit_lock(backpack_id):
            modules = self.monitor.effective_modules(backpack_id)
            target = LayoutReconciler.find_at(modules, pos_x, pos_y)
            if target is None:
                raise NotFoundError(f"No slot at ({pos_x},{pos_y}) in backpack {backpack_id}")

            session = open_session(backpack_id, target)
            with self._lock:
                abandoned = self._sessions.get(backpack_id)
                self._sessions[backpack_id] = session
            if abandoned is not None:
                logger.info("Backpack %s: abandoned replacement at (%s,%s)",
                            backpack_id, abandoned.target_x, abandoned.target_y)
            return ReplacementSessionOut(
                backpack_id=backpack_id,
                target_x=pos_x,
                target_y=pos_y,
                step=session.step,
                target=target,
            )

    def get(self, backpack_id: str) -> Optional[ReplacementSession]:
        with self._lock:
            return self._sessions.get(backpack_id)

    def cancel(self, backpack_id: str) -> ReplacementResult:
        with self._lock:
            session = self._sessions.pop(backpack_id, None)
        if session is None:
            return ReplacementResult(success=False, message="No replacement in progress.", code="NO_SESSION")
        return ReplacementResult(success=True, message="Replacement cancelled.")

    def skip(self, backpack_id: str) -> ReplacementResult:
        """The old pouch is physically gone already: jump to scanning the new one."""
        with self._kit_lock(backpack_id):
            session = self.get(backpack_id)
            if session is None:
                return ReplacementResult(success=False, message="No replacement in progress.", code="NO_SESSION")
            target = self._target(session)
            if target is None:
                return self._target_lost(session)
            outcome = transition(session, SkipOld(), target)
            self._store(backpack_id, outcome.session)
            return outcome.result

    def scan(self, backpack_id: str, scanned_id: str) -> ReplacementResult:
        scanned_id = (scanned_id or "").strip()
        with self._kit_lock(backpack_id):
            session = self.get(backpack_id)
            if session is None:
                return ReplacementResult(success=False, message="No replacement in progress.", code="NO_SESSION")
            target = self._target(session)
            if target is None:
                return self._target_lost(session)

            if session.step == ReplacementStep.SCAN_OLD:
                outcome = transition(session, ScanOld(scanned_id), target)
                self._store(backpack_id, outcome.session)
                return outcome.result

            try:
                found = self.repository.get_module_by_id(FamilyValidator.normalize(scanned_id))
            except TransportError as e:
                return ReplacementResult(success=False, message=e.message, code=e.code, step=session.step)

            outcome = transition(session, ScanNew(scanned_id, found), target)
            if outcome.placed is None:
                return outcome.result
            return self._commit(backpack_id, session, outcome)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _store(self, backpack_id: str, session: ReplacementSession) -> None:
        with self._lock:
            if session.step == ReplacementStep.IDLE:
                self._sessions.pop(backpack_id, None)
            else:
                self._sessions[backpack_id] = session

    def _target_lost(self, session: ReplacementSession) -> ReplacementResult:
        return ReplacementResult(
            success=False,
            message=f"Target slot ({session.target_x},{session.target_y}) not found.",
            code="TARGET_NOT_FOUND",
            step=session.step,
        )

    def _commit(self, backpack_id: str, session: ReplacementSession, outcome: Transition) -> ReplacementResult:
        """
        Read the stored kit, swap the pouch in and write it back as one unit. The
        pouch is claimed inside that transaction; on any failure the session stays
        at SCAN_NEW.
        """
        placed = outcome.placed
        layout, resolver = self.monitor.layout, self.monitor.resolver
        try:
            updated = self.repository.commit_placement(
                backpack_id,
                placed,
                lambda stored: apply_placement(stored, placed, layout, resolver),
            )
        except ProtocolError as e:
            logger.warning("Backpack %s: pouch %s was claimed concurrently: %s", backpack_id, placed.id, e)
            return ReplacementResult(success=False, message=e.message, code=e.code, step=session.step)
        except (TransportError, FormatError, NotFoundError) as e:
            logger.error("Backpack %s: commit of pouch %s failed: %s", backpack_id, outcome.placed.id, e)
            return ReplacementResult(
                success=False,
                message=f"Saving failed, try again: {e.message}",
                code="COMMIT_FAILED",
                step=session.step,
            )

        self.monitor.replace_backpack(updated)
        self._store(backpack_id, outcome.session)
        logger.info(
            "Backpack %s: pouch %s placed at (%s,%s), status %s",
            backpack_id, format_identifier(outcome.placed.id),
            session.target_x, session.target_y, updated.operational_status.value,
        )
        return outcome.result

    @staticmethod
    def validate(old_id: str, new_id: str) -> ReplacementResult:
        return validate_replacement(old_id, new_id)
