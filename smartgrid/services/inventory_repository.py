# =======================================================================================
# smartgrid/services/inventory_repository.py - Kit / Module Persistence
# =======================================================================================
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from ..config import config
from ..database import DatabaseManager
from ..models.enums import ModuleStatus, OperationalStatus
from ..models.schemas import (
    AddContentRequest,
    Backpack,
    ContentDefinition,
    MasterLayout,
    Module,
    ModuleContent,
    SlotTemplate,
    as_utc,
)
from ..utils.exceptions import FormatError, NotFoundError, ProtocolError, TransportError
from .change_feed import ChangeFeed
from .identifier_codec import content_code, is_real_identifier

logger = logging.getLogger(__name__)

VALID_MODULE_STATUSES = {s.value for s in ModuleStatus}
VALID_OPERATIONAL_STATUSES = {s.value for s in OperationalStatus}

MODULE_COLUMNS = (
    "id, name, status, last_update, backpack_id, color, calculated_expiry, "
    "pos_x, pos_y, width, height"
)
BACKPACK_COLUMNS = (
    "id, qr_code, name, hospital, type, last_sync, battery_level, "
    "operational_status, grid_cols, grid_rows"
)


def _db_time(value: Optional[datetime]) -> Optional[str]:
    """Timestamps are stored as naive UTC text so every backend reads them back the same way."""
    if value is None:
        return None
    return as_utc(value).astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")


def sanitize_status(status: Any) -> ModuleStatus:
    if status in VALID_MODULE_STATUSES:
        return ModuleStatus(status)
    logger.warning("Invalid module status %r read from DB, defaulting to ERROR", status)
    return ModuleStatus.ERROR


def _row_to_module(row) -> Module:
    return Module(
        id=row["id"],
        name=row["name"] or "",
        status=sanitize_status(row["status"]),
        last_update=row["last_update"] or datetime.now(timezone.utc),
        backpack_id=row["backpack_id"],
        color=row["color"],
        calculated_expiry=row["calculated_expiry"],
        pos_x=row["pos_x"] or 0,
        pos_y=row["pos_y"] or 0,
        width=row["width"] or 1,
        height=row["height"] or 1,
    )


def _row_to_backpack(row, modules: List[Module]) -> Backpack:
    status = row["operational_status"]
    return Backpack(
        id=row["id"],
        qr_code=row["qr_code"] or "",
        name=row["name"],
        hospital=row["hospital"],
        type=row["type"],
        last_sync=row["last_sync"] or datetime.now(timezone.utc),
        battery_level=row["battery_level"] if row["battery_level"] is not None else 100,
        operational_status=status if status in VALID_OPERATIONAL_STATUSES else OperationalStatus.OPERATIONAL,
        grid_cols=row["grid_cols"] or config.DEFAULT_GRID_COLS,
        grid_rows=row["grid_rows"] or config.DEFAULT_GRID_ROWS,
        modules=modules,
    )


def _module_params(module: Module, backpack_id: Optional[str]) -> Dict[str, Any]:
    return {
        "id": module.id,
        "name": module.name,
        "status": module.status.value,
        "last_update": _db_time(module.last_update),
        "backpack_id": backpack_id,
        "color": module.color,
        "calculated_expiry": _db_time(module.calculated_expiry),
        "pos_x": module.pos_x,
        "pos_y": module.pos_y,
        "width": module.width,
        "height": module.height,
    }


class InventoryRepository:
    """
    Record store for kits, modules, catalog and the master layout.
    Every write runs in one transaction and is announced on the change feed
    after it commits. Database failures surface as TransportError.
    """

    def __init__(self, db: DatabaseManager, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.feed = feed or ChangeFeed()

    # ----------------------------------------------------------------------
    # Plumbing
    # ----------------------------------------------------------------------
    @contextmanager
    def _transaction(self, action: str):
        try:
            with self.db.get_connection() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error("%s failed: %s", action, e)
            raise TransportError(f"{action} failed: {e}") from e

    def _notify(self, table: str) -> None:
        self.feed.publish(table)

    def ping(self) -> bool:
        with self._transaction("Connection test") as conn:
            conn.execute(text("SELECT 1"))
        return True

    @staticmethod
    def _exists(conn: Connection, table: str, key_col: str, key: Any) -> bool:
        row = conn.execute(
            text(f"SELECT 1 FROM {table} WHERE {key_col} = :key"), {"key": key}
        ).first()
        return row is not None

    # ----------------------------------------------------------------------
    # Backpacks
    # ----------------------------------------------------------------------
    def get_backpacks(self) -> List[Backpack]:
        with self._transaction("Fetching backpacks") as conn:
            rows = conn.execute(
                text(f"SELECT {BACKPACK_COLUMNS} FROM backpacks ORDER BY name")
            ).mappings().all()
            module_rows = conn.execute(
                text(f"SELECT {MODULE_COLUMNS} FROM modules WHERE backpack_id IS NOT NULL")
            ).mappings().all()

        modules_by_kit: Dict[str, List[Module]] = {}
        for m in module_rows:
            modules_by_kit.setdefault(m["backpack_id"], []).append(_row_to_module(m))

        return [_row_to_backpack(r, modules_by_kit.get(r["id"], [])) for r in rows]

    def get_backpack(self, backpack_id: str) -> Optional[Backpack]:
        with self._transaction("Fetching backpack") as conn:
            return self._fetch_backpack(conn, backpack_id)

    @staticmethod
    def _fetch_backpack(conn: Connection, backpack_id: str) -> Optional[Backpack]:
        row = conn.execute(
            text(f"SELECT {BACKPACK_COLUMNS} FROM backpacks WHERE id = :id"),
            {"id": backpack_id},
        ).mappings().first()
        if not row:
            return None
        module_rows = conn.execute(
            text(f"SELECT {MODULE_COLUMNS} FROM modules WHERE backpack_id = :id"),
            {"id": backpack_id},
        ).mappings().all()
        return _row_to_backpack(row, [_row_to_module(m) for m in module_rows])

    def save_backpack(self, backpack: Backpack) -> None:
        """
        Persist kit metadata and its module set as one unit. Modules that were
        in the kit but are no longer part of it are detached and become
        available again (WAITING_FOR_MATCHMAKING, no kit reference). A module
        that belongs to another kit is refused with ProtocolError ALREADY_ASSIGNED
        and nothing is written.
        """
        self._check_storable(backpack)
        with self._transaction("Saving backpack") as conn:
            self._write_backpack(conn, backpack)
        self._notify("backpacks")

    def commit_placement(
        self,
        backpack_id: str,
        placed: Module,
        apply: Callable[[Backpack], Backpack],
    ) -> Backpack:
        """
        Claim a pouch for a kit as one read-modify-write. The stored kit and the
        pouch's owner are read inside the transaction, `apply` builds the new kit
        from the stored one, and the result is written before the transaction
        commits. Returns the kit as written.
        """
        if not is_real_identifier(placed.id):
            raise FormatError(f"Module {placed.id!r} is not a real tag and cannot be stored")

        with self._transaction("Placing module") as conn:
            current = self._fetch_backpack(conn, backpack_id)
            if current is None:
                raise NotFoundError(f"Backpack {backpack_id} not found")

            row = conn.execute(
                text("SELECT backpack_id, status FROM modules WHERE id = :id"), {"id": placed.id}
            ).mappings().first()
            if row is None:
                raise ProtocolError(f"Module {placed.id} is not registered", code="NOT_REGISTERED")
            owner = row["backpack_id"]
            if owner and owner != backpack_id:
                raise ProtocolError(
                    f"Module {placed.id} is already assigned to backpack {owner}",
                    code="ALREADY_ASSIGNED",
                )
            if not owner and sanitize_status(row["status"]) != ModuleStatus.WAITING_FOR_MATCHMAKING:
                raise ProtocolError(f"Module {placed.id} is not available", code="NOT_AVAILABLE")

            updated = apply(current)
            self._check_storable(updated)
            self._write_backpack(conn, updated)

        self._notify("backpacks")
        return updated

    @staticmethod
    def _check_storable(backpack: Backpack) -> None:
        for module in backpack.modules:
            if not is_real_identifier(module.id):
                raise FormatError(f"Module {module.id!r} is not a real tag and cannot be stored")

    def _write_backpack(self, conn: Connection, backpack: Backpack) -> None:
        params = {
            "id": backpack.id,
            "qr_code": backpack.qr_code,
            "name": backpack.name,
            "hospital": backpack.hospital,
            "type": backpack.type,
            "last_sync": _db_time(backpack.last_sync),
            "battery_level": backpack.battery_level,
            "operational_status": backpack.operational_status.value,
            "grid_cols": backpack.grid_cols,
            "grid_rows": backpack.grid_rows,
        }
        if self._exists(conn, "backpacks", "id", backpack.id):
            conn.execute(
                text("""
                    UPDATE backpacks
                    SET qr_code=:qr_code, name=:name, hospital=:hospital, type=:type,
                        last_sync=:last_sync, battery_level=:battery_level,
                        operational_status=:operational_status,
                        grid_cols=:grid_cols, grid_rows=:grid_rows
                    WHERE id=:id
                """),
                params,
            )
        else:
            conn.execute(
                text(f"""
                    INSERT INTO backpacks ({BACKPACK_COLUMNS})
                    VALUES (:id, :qr_code, :name, :hospital, :type, :last_sync,
                            :battery_level, :operational_status, :grid_cols, :grid_rows)
                """),
                params,
            )

        kept_ids = {m.id for m in backpack.modules}
        current_ids = conn.execute(
            text("SELECT id FROM modules WHERE backpack_id = :bid"), {"bid": backpack.id}
        ).scalars().all()
        for module_id in current_ids:
            if module_id not in kept_ids:
                self._detach_module(conn, module_id)

        for module in backpack.modules:
            self._upsert_module(conn, _module_params(module, backpack.id))

    def update_backpack_status(self, backpack_id: str, status: OperationalStatus) -> None:
        with self._transaction("Updating backpack status") as conn:
            result = conn.execute(
                text("UPDATE backpacks SET operational_status=:status WHERE id=:id"),
                {"status": status.value, "id": backpack_id},
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Backpack {backpack_id} not found")
        self._notify("backpacks")

    def record_sync(self, backpack_id: str, battery_level: Optional[int] = None) -> datetime:
        """The kit controller checked in: stamp last_sync (and battery if reported)."""
        now = datetime.now(timezone.utc)
        with self._transaction("Recording backpack sync") as conn:
            result = conn.execute(
                text("""
                    UPDATE backpacks
                    SET last_sync=:ts, battery_level=COALESCE(:battery, battery_level)
                    WHERE id=:id
                """),
                {"ts": _db_time(now), "battery": battery_level, "id": backpack_id},
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Backpack {backpack_id} not found")
        self._notify("backpacks")
        return now

    def delete_backpack(self, backpack_id: str) -> None:
        with self._transaction("Deleting backpack") as conn:
            module_ids = conn.execute(
                text("SELECT id FROM modules WHERE backpack_id = :bid"), {"bid": backpack_id}
            ).scalars().all()
            for module_id in module_ids:
                self._detach_module(conn, module_id)
            result = conn.execute(text("DELETE FROM backpacks WHERE id=:id"), {"id": backpack_id})
            if result.rowcount == 0:
                raise NotFoundError(f"Backpack {backpack_id} not found")
        self._notify("backpacks")

    # ----------------------------------------------------------------------
    # Modules
    # ----------------------------------------------------------------------
    @staticmethod
    def _detach_module(conn: Connection, module_id: str) -> None:
        conn.execute(
            text("""
                UPDATE modules
                SET backpack_id=NULL, status=:status, last_update=:ts
                WHERE id=:id
            """),
            {
                "status": ModuleStatus.WAITING_FOR_MATCHMAKING.value,
                "ts": _db_time(datetime.now(timezone.utc)),
                "id": module_id,
            },
        )

    def _upsert_module(self, conn: Connection, params: Dict[str, Any]) -> None:
        """Write a kit module; a module owned by another kit is not taken over."""
        if self._exists(conn, "modules", "id", params["id"]):
            result = conn.execute(
                text("""
                    UPDATE modules
                    SET name=:name, status=:status, last_update=:last_update,
                        backpack_id=:backpack_id, color=:color,
                        calculated_expiry=:calculated_expiry,
                        pos_x=:pos_x, pos_y=:pos_y, width=:width, height=:height
                    WHERE id=:id AND (backpack_id IS NULL OR backpack_id=:backpack_id)
                """),
                params,
            )
            if result.rowcount == 0:
                raise ProtocolError(
                    f"Module {params['id']} is already assigned to another backpack",
                    code="ALREADY_ASSIGNED",
                )
        else:
            conn.execute(
                text(f"""
                    INSERT INTO modules ({MODULE_COLUMNS})
                    VALUES (:id, :name, :status, :last_update, :backpack_id, :color,
                            :calculated_expiry, :pos_x, :pos_y, :width, :height)
                """),
                params,
            )

    def get_module_by_id(self, module_id: str) -> Optional[Module]:
        with self._transaction("Fetching module") as conn:
            row = conn.execute(
                text(f"SELECT {MODULE_COLUMNS} FROM modules WHERE id = :id"), {"id": module_id}
            ).mappings().first()
        return _row_to_module(row) if row else None

    def get_all_modules(self) -> List[Module]:
        with self._transaction("Fetching modules") as conn:
            rows = conn.execute(
                text(f"SELECT {MODULE_COLUMNS} FROM modules ORDER BY last_update DESC")
            ).mappings().all()
        return [_row_to_module(r) for r in rows]

    def register_module(self, module_id: str, name: str, color: str) -> Module:
        """Register a scanned tag as an available (unassigned) pouch."""
        module_id = (module_id or "").strip()
        if not is_real_identifier(module_id):
            raise FormatError(f'Invalid identifier format. Expected 8 digits, received: "{module_id}".')

        module = Module(id=module_id, name=name, color=color, status=ModuleStatus.WAITING_FOR_MATCHMAKING)
        with self._transaction("Registering module") as conn:
            existing = conn.execute(
                text("SELECT backpack_id FROM modules WHERE id = :id"), {"id": module_id}
            ).mappings().first()
            if existing and existing["backpack_id"]:
                raise ProtocolError(
                    f"Pouch {module_id} is assigned to backpack {existing['backpack_id']}",
                    code="ALREADY_ASSIGNED",
                )
            self._upsert_module(conn, _module_params(module, None))
        self._notify("modules")
        return module

    # ----------------------------------------------------------------------
    # Module contents
    # ----------------------------------------------------------------------
    def get_module_contents(self, module_id: str) -> List[ModuleContent]:
        with self._transaction("Fetching module contents") as conn:
            rows = conn.execute(
                text("""
                    SELECT id, module_id, article_name, batch_number, expiry_date, quantity
                    FROM module_contents WHERE module_id = :mid
                    ORDER BY expiry_date
                """),
                {"mid": module_id},
            ).mappings().all()
        return [ModuleContent(**dict(r)) for r in rows]

    def add_module_content(self, module_id: str, content: AddContentRequest) -> ModuleContent:
        item = ModuleContent(
            id=str(uuid.uuid4()),
            module_id=module_id,
            article_name=content.article_name,
            batch_number=content.batch_number,
            expiry_date=content.expiry_date,
            quantity=content.quantity,
        )
        with self._transaction("Adding module content") as conn:
            if not self._exists(conn, "modules", "id", module_id):
                raise NotFoundError(f"Module {module_id} not found")
            conn.execute(
                text("""
                    INSERT INTO module_contents (id, module_id, article_name, batch_number, expiry_date, quantity)
                    VALUES (:id, :module_id, :article_name, :batch_number, :expiry_date, :quantity)
                """),
                {**item.model_dump(), "expiry_date": _db_time(item.expiry_date)},
            )
            self._recalculate_expiry(conn, module_id)
        self._notify("modules")
        return item

    def clear_module_contents(self, module_id: str) -> None:
        with self._transaction("Clearing module contents") as conn:
            conn.execute(text("DELETE FROM module_contents WHERE module_id = :mid"), {"mid": module_id})
            self._recalculate_expiry(conn, module_id)
        self._notify("modules")

    def recalculate_module_expiry(self, module_id: str) -> None:
        with self._transaction("Recalculating module expiry") as conn:
            self._recalculate_expiry(conn, module_id)
        self._notify("modules")

    @staticmethod
    def _recalculate_expiry(conn: Connection, module_id: str) -> None:
        """A pouch expires with its earliest-expiring content."""
        earliest = conn.execute(
            text("SELECT MIN(expiry_date) FROM module_contents WHERE module_id = :mid"),
            {"mid": module_id},
        ).scalar()
        conn.execute(
            text("UPDATE modules SET calculated_expiry=:exp WHERE id=:id"),
            {"exp": _db_time(as_utc(earliest)), "id": module_id},
        )

    # ----------------------------------------------------------------------
    # Catalog
    # ----------------------------------------------------------------------
    def get_catalog(self) -> List[ContentDefinition]:
        with self._transaction("Fetching catalog") as conn:
            rows = conn.execute(
                text("""
                    SELECT code, name, description, default_width, default_height
                    FROM catalog ORDER BY code
                """)
            ).mappings().all()
        return [
            ContentDefinition(
                code=r["code"],
                name=r["name"],
                description=r["description"],
                default_width=r["default_width"] or 1,
                default_height=r["default_height"] or 1,
            )
            for r in rows
        ]

    def add_content_definition(self, definition: ContentDefinition) -> ContentDefinition:
        definition = definition.model_copy(update={"code": content_code(definition.code)})
        with self._transaction("Saving content definition") as conn:
            params = definition.model_dump()
            if self._exists(conn, "catalog", "code", definition.code):
                conn.execute(
                    text("""
                        UPDATE catalog
                        SET name=:name, description=:description,
                            default_width=:default_width, default_height=:default_height
                        WHERE code=:code
                    """),
                    params,
                )
            else:
                conn.execute(
                    text("""
                        INSERT INTO catalog (code, name, description, default_width, default_height)
                        VALUES (:code, :name, :description, :default_width, :default_height)
                    """),
                    params,
                )
        self._notify("catalog")
        return definition

    def get_content_name(self, code: str) -> str:
        with self._transaction("Fetching content name") as conn:
            name = conn.execute(
                text("SELECT name FROM catalog WHERE code = :code"), {"code": code}
            ).scalar()
        return name or "Unknown content"

    # ----------------------------------------------------------------------
    # Master layout
    # ----------------------------------------------------------------------
    def get_master_layout(self, layout_id: str) -> Optional[MasterLayout]:
        with self._transaction("Fetching master layout") as conn:
            layout = conn.execute(
                text("SELECT id, grid_cols, grid_rows FROM master_layouts WHERE id = :id"),
                {"id": layout_id},
            ).mappings().first()
            if not layout:
                return None
            slot_rows = conn.execute(
                text("""
                    SELECT id, name, color, pos_x, pos_y, width, height
                    FROM master_modules WHERE master_layout_id = :id
                    ORDER BY pos_y, pos_x
                """),
                {"id": layout_id},
            ).mappings().all()

        return MasterLayout(
            id=layout["id"],
            grid_cols=layout["grid_cols"],
            grid_rows=layout["grid_rows"],
            slots=[SlotTemplate(**dict(r)) for r in slot_rows],
        )

    def save_master_layout(self, layout: MasterLayout) -> MasterLayout:
        """Replace the layout's grid size and full slot set."""
        slots = [s if s.id else s.model_copy(update={"id": str(uuid.uuid4())}) for s in layout.slots]
        layout = layout.model_copy(update={"slots": slots})

        with self._transaction("Saving master layout") as conn:
            params = {"id": layout.id, "cols": layout.grid_cols, "rows": layout.grid_rows}
            if self._exists(conn, "master_layouts", "id", layout.id):
                conn.execute(
                    text("UPDATE master_layouts SET grid_cols=:cols, grid_rows=:rows WHERE id=:id"),
                    params,
                )
            else:
                conn.execute(
                    text("INSERT INTO master_layouts (id, grid_cols, grid_rows) VALUES (:id, :cols, :rows)"),
                    params,
                )

            conn.execute(
                text("DELETE FROM master_modules WHERE master_layout_id = :id"), {"id": layout.id}
            )
            for slot in slots:
                conn.execute(
                    text("""
                        INSERT INTO master_modules (id, master_layout_id, name, pos_x, pos_y, width, height, color)
                        VALUES (:id, :layout_id, :name, :pos_x, :pos_y, :width, :height, :color)
                    """),
                    {**slot.model_dump(), "layout_id": layout.id},
                )
        self._notify("master_layouts")
        return layout
