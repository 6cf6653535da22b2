"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

from canteen.domain.models import (
    Alert,
    Booking,
    BookingItem,
    BookingModification,
    BookingStatus,
    MenuCategory,
    MenuItem,
    Slot,
    StaffMember,
)
from canteen.utils.clock import from_storage, to_storage
from canteen.utils.config import Settings, get_settings
from canteen.utils.logger import get_logger


logger = get_logger(__name__)

_BOOKING_COLUMNS = """
    id, student_id, slot_id, token_number, status, queue_position, sequence,
    created_at, enqueued_at, serving_at, served_at, cancelled_at
"""

_BOOKING_TIMESTAMP_COLUMNS = frozenset({"created_at", "served_at", "cancelled_at"})

_SEED_MENU: tuple[tuple[str, str, str, float], ...] = (
    ("Idli Sambar", "Steamed rice cakes with lentil stew", "veg", 30.0),
    ("Poha", "Flattened rice with peanuts", "veg", 25.0),
    ("Veg Thali", "Rice, dal, two curries, roti", "veg", 80.0),
    ("Chicken Biryani", "Dum-cooked rice with chicken", "non-veg", 120.0),
    ("Samosa", "Fried pastry with spiced potato", "veg", 15.0),
    ("Masala Chai", "Spiced milk tea", "beverage", 12.0),
    ("Gulab Jamun", "Two pieces in syrup", "dessert", 20.0),
)


@dataclass(frozen=True)
class ServiceDuration:
    """Serving interval of one served token, used for rolling service times."""

    serving_at: datetime
    served_at: datetime

    @property
    def minutes(self) -> float:
        return (self.served_at - self.serving_at).total_seconds() / 60.0


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_timeout_seconds,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _use(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        connection = self._connect()
        try:
            with connection:
                yield connection
        finally:
            connection.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction; everything inside commits together or not at all."""
        connection = self._connect()
        connection.isolation_level = None
        try:
            connection.execute("BEGIN IMMEDIATE;")
            try:
                yield connection
            except BaseException:
                connection.execute("ROLLBACK;")
                raise
            connection.execute("COMMIT;")
        finally:
            connection.close()

    @contextmanager
    def snapshot(self) -> Iterator[sqlite3.Connection]:
        """Read transaction; all queries inside see the same committed state."""
        connection = self._connect()
        connection.isolation_level = None
        try:
            connection.execute("BEGIN;")
            try:
                yield connection
            finally:
                connection.execute("COMMIT;")
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._use(None) as conn:
                cursor = conn.cursor()
                cursor.execute("PRAGMA journal_mode = WAL;")

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Slots (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS MenuItems (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        description TEXT,
                        category TEXT NOT NULL
                            CHECK (category IN ('veg','non-veg','beverage','dessert')),
                        price REAL NOT NULL CHECK (price >= 0),
                        is_available INTEGER NOT NULL DEFAULT 1 CHECK (is_available IN (0,1)),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS SlotMenuItems (
                        slot_id INTEGER NOT NULL,
                        menu_item_id INTEGER NOT NULL,
                        PRIMARY KEY (slot_id, menu_item_id),
                        FOREIGN KEY (slot_id) REFERENCES Slots(id),
                        FOREIGN KEY (menu_item_id) REFERENCES MenuItems(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Bookings (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT NOT NULL,
                        slot_id INTEGER NOT NULL,
                        token_number TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'pending'
                            CHECK (status IN ('pending','serving','served','cancelled')),
                        queue_position INTEGER,
                        sequence INTEGER NOT NULL UNIQUE,
                        created_at TEXT NOT NULL,
                        enqueued_at TEXT NOT NULL,
                        serving_at TEXT,
                        served_at TEXT,
                        cancelled_at TEXT,
                        FOREIGN KEY (slot_id) REFERENCES Slots(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS BookingItems (
                        booking_id INTEGER NOT NULL,
                        line_no INTEGER NOT NULL,
                        menu_item_id INTEGER NOT NULL,
                        quantity INTEGER NOT NULL CHECK (quantity >= 1),
                        PRIMARY KEY (booking_id, line_no),
                        FOREIGN KEY (booking_id) REFERENCES Bookings(id),
                        FOREIGN KEY (menu_item_id) REFERENCES MenuItems(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS BookingModifications (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        booking_id INTEGER NOT NULL,
                        modified_at TEXT NOT NULL,
                        changes TEXT NOT NULL,
                        FOREIGN KEY (booking_id) REFERENCES Bookings(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS TokenCounters (
                        slot_id INTEGER NOT NULL,
                        token_day TEXT NOT NULL,
                        last_number INTEGER NOT NULL,
                        PRIMARY KEY (slot_id, token_day),
                        FOREIGN KEY (slot_id) REFERENCES Slots(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Alerts (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        slot_id INTEGER NOT NULL,
                        severity TEXT NOT NULL,
                        message TEXT NOT NULL,
                        occupancy_rate REAL NOT NULL,
                        created_at TEXT NOT NULL,
                        resolved INTEGER NOT NULL DEFAULT 0 CHECK (resolved IN (0,1)),
                        resolved_by TEXT,
                        resolved_at TEXT,
                        resolution_note TEXT,
                        FOREIGN KEY (slot_id) REFERENCES Slots(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS StaffMembers (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                        created_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_slot_status_order
                    ON Bookings(slot_id, status, enqueued_at, sequence);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_student_slot
                    ON Bookings(student_id, slot_id, status);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_bookings_created_at
                    ON Bookings(created_at);
                    """
                )
                cursor.execute(
                    """
                    CREATE UNIQUE INDEX IF NOT EXISTS uq_alerts_open_per_slot
                    ON Alerts(slot_id) WHERE resolved = 0;
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_default_catalog(self) -> None:
        """Seed meal slots and a starter menu only when no slot exists yet."""
        try:
            with self._use(None) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Slots;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Catalog already present; skipping seed")
                    return

                cursor.executemany(
                    """
                    INSERT INTO Slots (name, start_time, end_time, capacity)
                    VALUES (?, ?, ?, ?);
                    """,
                    list(self._settings.seed_slots),
                )
                cursor.executemany(
                    """
                    INSERT INTO MenuItems (name, description, category, price)
                    VALUES (?, ?, ?, ?);
                    """,
                    list(_SEED_MENU),
                )
                cursor.execute(
                    """
                    INSERT INTO SlotMenuItems (slot_id, menu_item_id)
                    SELECT s.id, m.id FROM Slots AS s CROSS JOIN MenuItems AS m;
                    """
                )
            logger.info(
                "Catalog seed completed with %s slots and %s menu items",
                len(self._settings.seed_slots),
                len(_SEED_MENU),
            )
        except sqlite3.Error as exc:
            raise RuntimeError(f"Catalog seeding failed: {exc}") from exc

    # ------------------------------------------------------------------ slots

    @staticmethod
    def _row_to_slot(row: sqlite3.Row) -> Slot:
        return Slot(
            slot_id=int(row["id"]),
            name=str(row["name"]),
            start_time=str(row["start_time"]),
            end_time=str(row["end_time"]),
            capacity=int(row["capacity"]),
            is_active=bool(row["is_active"]),
        )

    def create_slot(
        self,
        name: str,
        start_time: str,
        end_time: str,
        capacity: int,
        is_active: bool = True,
    ) -> int:
        with self._use(None) as conn:
            cursor = conn.execute(
                """
                INSERT INTO Slots (name, start_time, end_time, capacity, is_active)
                VALUES (?, ?, ?, ?, ?);
                """,
                (name, start_time, end_time, capacity, int(is_active)),
            )
            return int(cursor.lastrowid)

    def update_slot(
        self,
        slot_id: int,
        *,
        name: str,
        start_time: str,
        end_time: str,
        capacity: int,
        is_active: bool,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._use(conn) as connection:
            connection.execute(
                """
                UPDATE Slots
                SET name = ?, start_time = ?, end_time = ?, capacity = ?, is_active = ?
                WHERE id = ?;
                """,
                (name, start_time, end_time, capacity, int(is_active), slot_id),
            )

    def get_slot(
        self,
        slot_id: int,
        conn: sqlite3.Connection | None = None,
    ) -> Optional[Slot]:
        with self._use(conn) as connection:
            row = connection.execute(
                """
                SELECT id, name, start_time, end_time, capacity, is_active
                FROM Slots WHERE id = ?;
                """,
                (slot_id,),
            ).fetchone()
            return None if row is None else self._row_to_slot(row)

    def list_slots(
        self,
        active_only: bool = False,
        conn: sqlite3.Connection | None = None,
    ) -> list[Slot]:
        query = "SELECT id, name, start_time, end_time, capacity, is_active FROM Slots"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY start_time ASC, id ASC;"
        with self._use(conn) as connection:
            return [self._row_to_slot(row) for row in connection.execute(query).fetchall()]

    # ------------------------------------------------------------------- menu

    @staticmethod
    def _row_to_menu_item(row: sqlite3.Row) -> MenuItem:
        return MenuItem(
            menu_item_id=int(row["id"]),
            name=str(row["name"]),
            description=None if row["description"] is None else str(row["description"]),
            category=MenuCategory(str(row["category"])),
            price=float(row["price"]),
            is_available=bool(row["is_available"]),
        )

    def create_menu_item(
        self,
        name: str,
        description: str | None,
        category: str,
        price: float,
        is_available: bool = True,
    ) -> int:
        with self._use(None) as conn:
            cursor = conn.execute(
                """
                INSERT INTO MenuItems (name, description, category, price, is_available)
                VALUES (?, ?, ?, ?, ?);
                """,
                (name, description, category, price, int(is_available)),
            )
            return int(cursor.lastrowid)

    def update_menu_item(
        self,
        menu_item_id: int,
        *,
        name: str,
        description: str | None,
        category: str,
        price: float,
        is_available: bool,
    ) -> None:
        with self._use(None) as conn:
            conn.execute(
                """
                UPDATE MenuItems
                SET name = ?, description = ?, category = ?, price = ?, is_available = ?
                WHERE id = ?;
                """,
                (name, description, category, price, int(is_available), menu_item_id),
            )

    def get_menu_item(self, menu_item_id: int) -> Optional[MenuItem]:
        items = self.get_menu_items([menu_item_id])
        return items.get(menu_item_id)

    def get_menu_items(
        self,
        menu_item_ids: Iterable[int],
        conn: sqlite3.Connection | None = None,
    ) -> dict[int, MenuItem]:
        ids = sorted(set(menu_item_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        with self._use(conn) as connection:
            rows = connection.execute(
                f"""
                SELECT id, name, description, category, price, is_available
                FROM MenuItems WHERE id IN ({placeholders});
                """,
                tuple(ids),
            ).fetchall()
            return {int(row["id"]): self._row_to_menu_item(row) for row in rows}

    def list_menu_items(self, available_only: bool = False) -> list[MenuItem]:
        query = "SELECT id, name, description, category, price, is_available FROM MenuItems"
        if available_only:
            query += " WHERE is_available = 1"
        query += " ORDER BY id ASC;"
        with self._use(None) as conn:
            return [self._row_to_menu_item(row) for row in conn.execute(query).fetchall()]

    def list_menu_prices(self, conn: sqlite3.Connection | None = None) -> dict[int, float]:
        with self._use(conn) as connection:
            rows = connection.execute("SELECT id, price FROM MenuItems;").fetchall()
            return {int(row["id"]): float(row["price"]) for row in rows}

    def assign_slot_menu(self, slot_id: int, menu_item_ids: Sequence[int]) -> None:
        """Replace the slot's menu with the given item ids."""
        with self._use(None) as conn:
            conn.execute("DELETE FROM SlotMenuItems WHERE slot_id = ?;", (slot_id,))
            conn.executemany(
                "INSERT INTO SlotMenuItems (slot_id, menu_item_id) VALUES (?, ?);",
                [(slot_id, item_id) for item_id in sorted(set(menu_item_ids))],
            )

    def list_slot_menu_item_ids(
        self,
        slot_id: int,
        conn: sqlite3.Connection | None = None,
    ) -> set[int]:
        with self._use(conn) as connection:
            rows = connection.execute(
                "SELECT menu_item_id FROM SlotMenuItems WHERE slot_id = ?;",
                (slot_id,),
            ).fetchall()
            return {int(row["menu_item_id"]) for row in rows}

    # --------------------------------------------------------------- bookings

    def _load_items(
        self,
        conn: sqlite3.Connection,
        booking_ids: Sequence[int],
    ) -> dict[int, tuple[BookingItem, ...]]:
        if not booking_ids:
            return {}
        items: dict[int, list[BookingItem]] = {booking_id: [] for booking_id in booking_ids}
        # Chunked to stay under SQLite's bound-parameter limit.
        for offset in range(0, len(booking_ids), 500):
            chunk = booking_ids[offset:offset + 500]
            placeholders = ",".join("?" for _ in chunk)
            rows = conn.execute(
                f"""
                SELECT booking_id, menu_item_id, quantity
                FROM BookingItems
                WHERE booking_id IN ({placeholders})
                ORDER BY booking_id ASC, line_no ASC;
                """,
                tuple(chunk),
            ).fetchall()
            for row in rows:
                items[int(row["booking_id"])].append(
                    BookingItem(
                        menu_item_id=int(row["menu_item_id"]),
                        quantity=int(row["quantity"]),
                    )
                )
        return {booking_id: tuple(lines) for booking_id, lines in items.items()}

    def _rows_to_bookings(
        self,
        conn: sqlite3.Connection,
        rows: Sequence[sqlite3.Row],
    ) -> list[Booking]:
        items = self._load_items(conn, [int(row["id"]) for row in rows])
        return [
            Booking(
                booking_id=int(row["id"]),
                student_id=str(row["student_id"]),
                slot_id=int(row["slot_id"]),
                token_number=str(row["token_number"]),
                status=BookingStatus(str(row["status"])),
                items=items.get(int(row["id"]), ()),
                queue_position=(
                    None if row["queue_position"] is None else int(row["queue_position"])
                ),
                sequence=int(row["sequence"]),
                created_at=from_storage(row["created_at"]),
                enqueued_at=from_storage(row["enqueued_at"]),
                serving_at=from_storage(row["serving_at"]),
                served_at=from_storage(row["served_at"]),
                cancelled_at=from_storage(row["cancelled_at"]),
            )
            for row in rows
        ]

    def get_booking(
        self,
        booking_id: int,
        conn: sqlite3.Connection | None = None,
    ) -> Optional[Booking]:
        with self._use(conn) as connection:
            row = connection.execute(
                f"SELECT {_BOOKING_COLUMNS} FROM Bookings WHERE id = ?;",
                (booking_id,),
            ).fetchone()
            if row is None:
                return None
            return self._rows_to_bookings(connection, [row])[0]

    def list_active_bookings(
        self,
        slot_id: int,
        conn: sqlite3.Connection | None = None,
    ) -> list[Booking]:
        """Pending and serving bookings of a slot in FIFO order."""
        with self._use(conn) as connection:
            rows = connection.execute(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM Bookings
                WHERE slot_id = ? AND status IN ('pending', 'serving')
                ORDER BY enqueued_at ASC, sequence ASC;
                """,
                (slot_id,),
            ).fetchall()
            return self._rows_to_bookings(connection, rows)

    def count_active_bookings(
        self,
        slot_id: int,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        with self._use(conn) as connection:
            row = connection.execute(
                """
                SELECT COUNT(*) AS count FROM Bookings
                WHERE slot_id = ? AND status IN ('pending', 'serving');
                """,
                (slot_id,),
            ).fetchone()
            return int(row["count"])

    def count_active_bookings_by_slot(
        self,
        conn: sqlite3.Connection | None = None,
    ) -> dict[int, int]:
        with self._use(conn) as connection:
            rows = connection.execute(
                """
                SELECT slot_id, COUNT(*) AS count FROM Bookings
                WHERE status IN ('pending', 'serving')
                GROUP BY slot_id;
                """
            ).fetchall()
            return {int(row["slot_id"]): int(row["count"]) for row in rows}

    def find_active_booking_for_student(
        self,
        student_id: str,
        slot_id: int,
        day_start: datetime,
        day_end: datetime,
        conn: sqlite3.Connection | None = None,
    ) -> Optional[int]:
        with self._use(conn) as connection:
            row = connection.execute(
                """
                SELECT id FROM Bookings
                WHERE student_id = ?
                  AND slot_id = ?
                  AND status IN ('pending', 'serving')
                  AND enqueued_at >= ?
                  AND enqueued_at < ?
                ORDER BY id ASC
                LIMIT 1;
                """,
                (student_id, slot_id, to_storage(day_start), to_storage(day_end)),
            ).fetchone()
            return None if row is None else int(row["id"])

    def list_student_bookings(
        self,
        student_id: str,
        active_only: bool = False,
    ) -> list[Booking]:
        query = f"SELECT {_BOOKING_COLUMNS} FROM Bookings WHERE student_id = ?"
        if active_only:
            query += " AND status IN ('pending', 'serving')"
        query += " ORDER BY created_at DESC, sequence DESC;"
        with self._use(None) as conn:
            rows = conn.execute(query, (student_id,)).fetchall()
            return self._rows_to_bookings(conn, rows)

    def list_bookings_between(
        self,
        column: str,
        start: datetime,
        end: datetime,
        conn: sqlite3.Connection | None = None,
    ) -> list[Booking]:
        """Bookings whose ``column`` timestamp falls in [start, end)."""
        if column not in _BOOKING_TIMESTAMP_COLUMNS:
            raise ValueError(f"unsupported booking timestamp column: {column}")
        with self._use(conn) as connection:
            rows = connection.execute(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM Bookings
                WHERE {column} >= ? AND {column} < ?
                ORDER BY {column} ASC, sequence ASC;
                """,
                (to_storage(start), to_storage(end)),
            ).fetchall()
            return self._rows_to_bookings(connection, rows)

    def list_bookings_for_window(
        self,
        start: datetime,
        end: datetime,
        conn: sqlite3.Connection | None = None,
    ) -> list[Booking]:
        """Bookings created or (re-)enqueued inside [start, end)."""
        with self._use(conn) as connection:
            rows = connection.execute(
                f"""
                SELECT {_BOOKING_COLUMNS}
                FROM Bookings
                WHERE (created_at >= ? OR enqueued_at >= ?)
                  AND created_at < ?
                ORDER BY enqueued_at ASC, sequence ASC;
                """,
                (to_storage(start), to_storage(start), to_storage(end)),
            ).fetchall()
            return self._rows_to_bookings(connection, rows)

    def list_service_durations(
        self,
        slot_id: int,
        since: datetime,
        conn: sqlite3.Connection | None = None,
    ) -> list[ServiceDuration]:
        with self._use(conn) as connection:
            rows = connection.execute(
                """
                SELECT serving_at, served_at
                FROM Bookings
                WHERE slot_id = ?
                  AND status = 'served'
                  AND serving_at IS NOT NULL
                  AND served_at >= ?;
                """,
                (slot_id, to_storage(since)),
            ).fetchall()
            return [
                ServiceDuration(
                    serving_at=from_storage(row["serving_at"]),
                    served_at=from_storage(row["served_at"]),
                )
                for row in rows
            ]

    def next_booking_sequence(self, conn: sqlite3.Connection) -> int:
        row = conn.execute(
            "SELECT COALESCE(MAX(sequence), 0) + 1 AS next_sequence FROM Bookings;"
        ).fetchone()
        return int(row["next_sequence"])

    def next_token_number(self, conn: sqlite3.Connection, slot_id: int, token_day: str) -> int:
        """Increment and return the per slot-day token counter."""
        conn.execute(
            """
            INSERT INTO TokenCounters (slot_id, token_day, last_number)
            VALUES (?, ?, 1)
            ON CONFLICT (slot_id, token_day)
            DO UPDATE SET last_number = last_number + 1;
            """,
            (slot_id, token_day),
        )
        row = conn.execute(
            "SELECT last_number FROM TokenCounters WHERE slot_id = ? AND token_day = ?;",
            (slot_id, token_day),
        ).fetchone()
        return int(row["last_number"])

    def insert_booking(
        self,
        conn: sqlite3.Connection,
        *,
        student_id: str,
        slot_id: int,
        token_number: str,
        sequence: int,
        created_at: datetime,
        items: Sequence[BookingItem],
    ) -> int:
        cursor = conn.execute(
            """
            INSERT INTO Bookings (
                student_id, slot_id, token_number, status, sequence,
                created_at, enqueued_at
            )
            VALUES (?, ?, ?, 'pending', ?, ?, ?);
            """,
            (
                student_id,
                slot_id,
                token_number,
                sequence,
                to_storage(created_at),
                to_storage(created_at),
            ),
        )
        booking_id = int(cursor.lastrowid)
        self.replace_booking_items(conn, booking_id, items)
        return booking_id

    def replace_booking_items(
        self,
        conn: sqlite3.Connection,
        booking_id: int,
        items: Sequence[BookingItem],
    ) -> None:
        conn.execute("DELETE FROM BookingItems WHERE booking_id = ?;", (booking_id,))
        conn.executemany(
            """
            INSERT INTO BookingItems (booking_id, line_no, menu_item_id, quantity)
            VALUES (?, ?, ?, ?);
            """,
            [
                (booking_id, line_no, item.menu_item_id, item.quantity)
                for line_no, item in enumerate(items, start=1)
            ],
        )

    def update_booking_status(
        self,
        conn: sqlite3.Connection,
        booking_id: int,
        status: BookingStatus,
        at: datetime,
    ) -> None:
        timestamp_column = {
            BookingStatus.SERVING: "serving_at",
            BookingStatus.SERVED: "served_at",
            BookingStatus.CANCELLED: "cancelled_at",
        }[status]
        conn.execute(
            f"""
            UPDATE Bookings
            SET status = ?, {timestamp_column} = ?, queue_position = NULL
            WHERE id = ?;
            """,
            (status.value, to_storage(at), booking_id),
        )

    def move_booking(
        self,
        conn: sqlite3.Connection,
        booking_id: int,
        *,
        slot_id: int,
        token_number: str,
        sequence: int,
        enqueued_at: datetime,
    ) -> None:
        conn.execute(
            """
            UPDATE Bookings
            SET slot_id = ?, token_number = ?, sequence = ?, enqueued_at = ?,
                queue_position = NULL
            WHERE id = ?;
            """,
            (slot_id, token_number, sequence, to_storage(enqueued_at), booking_id),
        )

    def renumber_queue(self, conn: sqlite3.Connection, slot_id: int) -> list[tuple[int, int]]:
        """Rewrite pending positions as 1..k in FIFO order; returns (id, position)."""
        rows = conn.execute(
            """
            SELECT id FROM Bookings
            WHERE slot_id = ? AND status = 'pending'
            ORDER BY enqueued_at ASC, sequence ASC;
            """,
            (slot_id,),
        ).fetchall()
        positions = [(int(row["id"]), index) for index, row in enumerate(rows, start=1)]
        conn.executemany(
            "UPDATE Bookings SET queue_position = ? WHERE id = ?;",
            [(position, booking_id) for booking_id, position in positions],
        )
        conn.execute(
            """
            UPDATE Bookings SET queue_position = NULL
            WHERE slot_id = ? AND status != 'pending' AND queue_position IS NOT NULL;
            """,
            (slot_id,),
        )
        return positions

    def record_modification(
        self,
        conn: sqlite3.Connection,
        booking_id: int,
        modified_at: datetime,
        changes: str,
    ) -> None:
        conn.execute(
            """
            INSERT INTO BookingModifications (booking_id, modified_at, changes)
            VALUES (?, ?, ?);
            """,
            (booking_id, to_storage(modified_at), changes),
        )

    def list_modifications(self, booking_id: int) -> list[BookingModification]:
        with self._use(None) as conn:
            rows = conn.execute(
                """
                SELECT booking_id, modified_at, changes
                FROM BookingModifications
                WHERE booking_id = ?
                ORDER BY id ASC;
                """,
                (booking_id,),
            ).fetchall()
            return [
                BookingModification(
                    booking_id=int(row["booking_id"]),
                    modified_at=from_storage(row["modified_at"]),
                    changes=str(row["changes"]),
                )
                for row in rows
            ]

    # ----------------------------------------------------------------- alerts

    @staticmethod
    def _row_to_alert(row: sqlite3.Row) -> Alert:
        return Alert(
            alert_id=int(row["id"]),
            slot_id=int(row["slot_id"]),
            severity=str(row["severity"]),
            message=str(row["message"]),
            occupancy_rate=float(row["occupancy_rate"]),
            created_at=from_storage(row["created_at"]),
            resolved=bool(row["resolved"]),
            resolved_by=None if row["resolved_by"] is None else str(row["resolved_by"]),
            resolved_at=from_storage(row["resolved_at"]),
            resolution_note=(
                None if row["resolution_note"] is None else str(row["resolution_note"])
            ),
        )

    def create_alert(
        self,
        conn: sqlite3.Connection,
        *,
        slot_id: int,
        severity: str,
        message: str,
        occupancy_rate: float,
        created_at: datetime,
    ) -> int:
        cursor = conn.execute(
            """
            INSERT INTO Alerts (slot_id, severity, message, occupancy_rate, created_at)
            VALUES (?, ?, ?, ?, ?);
            """,
            (slot_id, severity, message, occupancy_rate, to_storage(created_at)),
        )
        return int(cursor.lastrowid)

    def get_alert(
        self,
        alert_id: int,
        conn: sqlite3.Connection | None = None,
    ) -> Optional[Alert]:
        with self._use(conn) as connection:
            row = connection.execute("SELECT * FROM Alerts WHERE id = ?;", (alert_id,)).fetchone()
            return None if row is None else self._row_to_alert(row)

    def find_unresolved_alert(
        self,
        slot_id: int,
        conn: sqlite3.Connection | None = None,
    ) -> Optional[Alert]:
        with self._use(conn) as connection:
            row = connection.execute(
                "SELECT * FROM Alerts WHERE slot_id = ? AND resolved = 0;",
                (slot_id,),
            ).fetchone()
            return None if row is None else self._row_to_alert(row)

    def resolve_alert(
        self,
        conn: sqlite3.Connection,
        alert_id: int,
        *,
        resolved_by: str,
        note: str | None,
        resolved_at: datetime,
    ) -> None:
        conn.execute(
            """
            UPDATE Alerts
            SET resolved = 1, resolved_by = ?, resolution_note = ?, resolved_at = ?
            WHERE id = ? AND resolved = 0;
            """,
            (resolved_by, note, to_storage(resolved_at), alert_id),
        )

    def list_alerts(
        self,
        resolved: bool | None = None,
        since: datetime | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> list[Alert]:
        clauses: list[str] = []
        params: list[object] = []
        if resolved is not None:
            clauses.append("resolved = ?")
            params.append(int(resolved))
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(to_storage(since))
        query = "SELECT * FROM Alerts"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, id DESC;"
        with self._use(conn) as connection:
            return [self._row_to_alert(row) for row in connection.execute(query, params).fetchall()]

    # ------------------------------------------------------------------ staff

    @staticmethod
    def _row_to_staff(row: sqlite3.Row) -> StaffMember:
        return StaffMember(
            staff_id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            created_at=from_storage(row["created_at"]),
        )

    def find_staff_by_email(
        self,
        email: str,
        conn: sqlite3.Connection | None = None,
    ) -> Optional[StaffMember]:
        with self._use(conn) as connection:
            row = connection.execute(
                "SELECT * FROM StaffMembers WHERE email = ?;",
                (email,),
            ).fetchone()
            return None if row is None else self._row_to_staff(row)

    def create_staff(
        self,
        conn: sqlite3.Connection,
        *,
        name: str,
        email: str,
        created_at: datetime,
    ) -> int:
        cursor = conn.execute(
            "INSERT INTO StaffMembers (name, email, created_at) VALUES (?, ?, ?);",
            (name, email, to_storage(created_at)),
        )
        return int(cursor.lastrowid)

    def get_staff(
        self,
        staff_id: int,
        conn: sqlite3.Connection | None = None,
    ) -> Optional[StaffMember]:
        with self._use(conn) as connection:
            row = connection.execute(
                "SELECT * FROM StaffMembers WHERE id = ?;",
                (staff_id,),
            ).fetchone()
            return None if row is None else self._row_to_staff(row)

    def list_staff(self) -> list[StaffMember]:
        with self._use(None) as conn:
            rows = conn.execute("SELECT * FROM StaffMembers ORDER BY id ASC;").fetchall()
            return [self._row_to_staff(row) for row in rows]

    def delete_staff(self, staff_id: int) -> bool:
        with self._use(None) as conn:
            cursor = conn.execute("DELETE FROM StaffMembers WHERE id = ?;", (staff_id,))
            return cursor.rowcount > 0

    def count_staff(self, conn: sqlite3.Connection | None = None) -> int:
        with self._use(conn) as connection:
            row = connection.execute("SELECT COUNT(*) AS count FROM StaffMembers;").fetchone()
            return int(row["count"])
