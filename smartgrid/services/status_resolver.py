# =======================================================================================
# smartgrid/services/status_resolver.py - Operational Status Derivation
# =======================================================================================
from datetime import datetime, timezone
from typing import Optional
from ..config import config
from ..models.enums import ModuleStatus, OperationalStatus, ExpiryStatus
from ..models.schemas import Backpack, MasterLayout
from ..utils.exceptions import IntegrityError
from .expiry import classify


class StatusResolver:
    """Derives the single operational status of a kit."""

    @staticmethod
    def is_stale(kit: Backpack, now: datetime) -> bool:
        return now - kit.last_sync > config.in_use_threshold

    @staticmethod
    def ensure_template(template: Optional[MasterLayout]) -> MasterLayout:
        if template is None or not template.slots:
            raise IntegrityError("No master layout to check completeness against")
        return template

    @staticmethod
    def uncovered_slots(kit: Backpack, template: MasterLayout):
        """Template slots with no kit module at their exact placement."""
        occupied = {(m.pos_x, m.pos_y) for m in kit.modules}
        return [s for s in template.slots if (s.pos_x, s.pos_y) not in occupied]

    def resolve(
        self,
        kit: Backpack,
        template: Optional[MasterLayout],
        now: Optional[datetime] = None,
        honor_preparation: bool = True,
    ) -> OperationalStatus:
        """
        First match wins:
        1. last sync older than the in-use threshold -> IN_USE
        2. kit is being prepared -> IN_PREPARATION (sticky)
        3. no template, or a template slot without a module -> NEEDS_ATTENTION
        4. any module not OK, or not fresh -> NEEDS_ATTENTION
        5. OPERATIONAL
        """
        now = now or datetime.now(timezone.utc)

        if self.is_stale(kit, now):
            return OperationalStatus.IN_USE

        if honor_preparation and kit.operational_status == OperationalStatus.IN_PREPARATION:
            return OperationalStatus.IN_PREPARATION

        try:
            template = self.ensure_template(template)
        except IntegrityError:
            return OperationalStatus.NEEDS_ATTENTION

        if len(kit.modules) < len(template.slots) or self.uncovered_slots(kit, template):
            return OperationalStatus.NEEDS_ATTENTION

        for module in kit.modules:
            if module.status != ModuleStatus.OK:
                return OperationalStatus.NEEDS_ATTENTION
            if classify(module.calculated_expiry, now) != ExpiryStatus.OK:
                return OperationalStatus.NEEDS_ATTENTION

        return OperationalStatus.OPERATIONAL

    @staticmethod
    def needs_correction(kit: Backpack, resolved: OperationalStatus) -> bool:
        """A background recomputation never overwrites a kit that is being prepared."""
        return (
            kit.operational_status != resolved
            and kit.operational_status != OperationalStatus.IN_PREPARATION
        )
