"""SQLite-backed persistence of queries, rentals and crawl sessions."""

from __future__ import annotations

import datetime as dt
import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Tuple

from openpyxl import Workbook

from .errors import StorageError
from .models import CrawlBatch, DedupResult, DedupStatus, RentalRecord, SessionSummary

SQLITE_PREFIX = "sqlite://"

EXPORT_COLUMNS = [
    "query_id",
    "property_id",
    "title",
    "price",
    "house_type",
    "rooms",
    "metro_title",
    "metro_value",
    "tags",
    "link",
    "first_seen",
    "last_seen",
    "active",
]


def resolve_sqlite_path(database_url: str) -> Path:
    """Translate a DATABASE_URL into a filesystem path."""
    if not database_url:
        raise ValueError("DATABASE_URL must not be empty")

    if database_url.startswith(SQLITE_PREFIX):
        raw_path = database_url[len(SQLITE_PREFIX) :]
        # Allow sqlite:///path/to/file and sqlite://path/to/file styles.
        if raw_path.startswith("/"):
            raw_path = raw_path[1:]
        path = Path(raw_path)
    else:
        path = Path(database_url)

    if not path.is_absolute():
        path = Path.cwd() / path

    return path.expanduser().resolve()


def _now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


@dataclass
class Database:
    """Thin wrapper around sqlite3 acting as the crawl storage collaborator."""

    path: Path

    def connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.path)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(f"SQLite error on {self.path}: {exc}") from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS queries (
                    query_id TEXT PRIMARY KEY,
                    url TEXT NOT NULL,
                    description TEXT,
                    created_at TEXT NOT NULL,
                    last_crawled_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS rentals (
                    query_id TEXT NOT NULL,
                    property_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    link TEXT,
                    price TEXT,
                    house_type TEXT,
                    rooms TEXT,
                    location TEXT,
                    metro_title TEXT,
                    metro_value TEXT,
                    tags TEXT,
                    stations TEXT,
                    fingerprint TEXT NOT NULL,
                    first_seen TEXT NOT NULL,
                    last_seen TEXT NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1,
                    FOREIGN KEY(query_id) REFERENCES queries(query_id),
                    PRIMARY KEY(query_id, property_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS rental_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    query_id TEXT NOT NULL,
                    property_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    details TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS crawl_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    query_id TEXT NOT NULL,
                    executed_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    total INTEGER NOT NULL DEFAULT 0,
                    new_count INTEGER NOT NULL DEFAULT 0,
                    changed_count INTEGER NOT NULL DEFAULT 0,
                    unchanged_count INTEGER NOT NULL DEFAULT 0,
                    removed_count INTEGER NOT NULL DEFAULT 0,
                    failed_stations TEXT,
                    notes TEXT
                )
                """
            )

    def upsert_query(self, query_id: str, url: str, description: str = "") -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO queries (query_id, url, description, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(query_id) DO UPDATE SET
                    url=excluded.url,
                    description=excluded.description
                """,
                (query_id, url, description, _now()),
            )

    def get_existing_identities(self, query_id: str) -> Dict[str, str]:
        """Return ``property_id -> fingerprint`` of every rental ever stored for a query.

        Inactive rentals are included so a listing that reappears is not
        reported as new again.
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                "SELECT property_id, fingerprint FROM rentals WHERE query_id = ?",
                (query_id,),
            )
            return {row[0]: row[1] for row in cursor.fetchall()}

    def fetch_rentals(self, query_id: str | None = None, active_only: bool = False) -> Dict[str, RentalRecord]:
        """Return rentals keyed by property_id."""
        query = """
            SELECT query_id, property_id, title, link, price, house_type, rooms,
                   metro_title, metro_value, tags, fingerprint, first_seen, last_seen, active
            FROM rentals
        """
        params: tuple = ()
        conditions = []
        if query_id:
            conditions.append("query_id = ?")
            params += (query_id,)
        if active_only:
            conditions.append("active = 1")
        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        with self.transaction() as conn:
            records = {}
            for row in conn.execute(query, params).fetchall():
                record = RentalRecord(
                    query_id=row[0],
                    property_id=row[1],
                    title=row[2],
                    link=row[3],
                    price=row[4] or "",
                    house_type=row[5] or "",
                    rooms=row[6] or "",
                    metro_title=row[7] or "",
                    metro_value=row[8] or "",
                    tags=json.loads(row[9]) if row[9] else [],
                    fingerprint=row[10],
                    first_seen=row[11],
                    last_seen=row[12],
                    active=bool(row[13]),
                )
                records[record.property_id] = record
            return records

    def save_results(
        self,
        query_id: str,
        batch: CrawlBatch,
        dedup: DedupResult,
        executed_at: str | None = None,
        notes: str | None = None,
    ) -> SessionSummary:
        """Persist one classified batch and record the crawl session."""
        executed_at = executed_at or _now()
        failed_stations = [failure.station_id or failure.url for failure in batch.failures]
        # A partial batch cannot prove that a listing disappeared.
        missing = list(dedup.missing) if not failed_stations else []

        with self.transaction() as conn:
            active = {
                row[0]
                for row in conn.execute(
                    "SELECT property_id FROM rentals WHERE query_id = ? AND active = 1",
                    (query_id,),
                )
            }
            removed = [property_id for property_id in missing if property_id in active]
            conn.execute(
                """
                INSERT INTO queries (query_id, url, description, created_at, last_crawled_at)
                VALUES (?, ?, '', ?, ?)
                ON CONFLICT(query_id) DO UPDATE SET last_crawled_at=excluded.last_crawled_at
                """,
                (query_id, batch.url, executed_at, executed_at),
            )
            for entry in dedup.entries:
                listing = entry.listing
                values = (
                    listing.title,
                    listing.link,
                    listing.price,
                    listing.house_type,
                    listing.rooms,
                    listing.location,
                    listing.metro_title,
                    listing.metro_value,
                    json.dumps(list(listing.tags), ensure_ascii=False),
                    ",".join(listing.stations),
                    entry.fingerprint,
                    executed_at,
                )
                if entry.status is DedupStatus.NEW:
                    conn.execute(
                        """
                        INSERT INTO rentals (
                            title, link, price, house_type, rooms, location, metro_title,
                            metro_value, tags, stations, fingerprint, last_seen,
                            query_id, property_id, first_seen, active
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
                        ON CONFLICT(query_id, property_id) DO UPDATE SET
                            title=excluded.title, link=excluded.link, price=excluded.price,
                            house_type=excluded.house_type, rooms=excluded.rooms,
                            location=excluded.location, metro_title=excluded.metro_title,
                            metro_value=excluded.metro_value, tags=excluded.tags,
                            stations=excluded.stations, fingerprint=excluded.fingerprint,
                            last_seen=excluded.last_seen, active=1
                        """,
                        values + (query_id, entry.primary_key, executed_at),
                    )
                else:
                    conn.execute(
                        """
                        UPDATE rentals
                        SET title = ?, link = ?, price = ?, house_type = ?, rooms = ?, location = ?,
                            metro_title = ?, metro_value = ?, tags = ?, stations = ?,
                            fingerprint = ?, last_seen = ?, active = 1
                        WHERE query_id = ? AND property_id = ?
                        """,
                        values + (query_id, entry.primary_key),
                    )
                if entry.status is not DedupStatus.UNCHANGED:
                    conn.execute(
                        """
                        INSERT INTO rental_events (query_id, property_id, event_type, occurred_at, details)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (query_id, entry.primary_key, entry.status.value, executed_at, listing.title),
                    )

            for property_id in removed:
                conn.execute(
                    """
                    UPDATE rentals SET active = 0, last_seen = ?
                    WHERE query_id = ? AND property_id = ?
                    """,
                    (executed_at, query_id, property_id),
                )
                conn.execute(
                    """
                    INSERT INTO rental_events (query_id, property_id, event_type, occurred_at, details)
                    VALUES (?, ?, 'removed', ?, NULL)
                    """,
                    (query_id, property_id, executed_at),
                )

            status = batch.state.value
            cursor = conn.execute(
                """
                INSERT INTO crawl_sessions (
                    query_id, executed_at, status, total, new_count, changed_count,
                    unchanged_count, removed_count, failed_stations, notes
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    query_id,
                    executed_at,
                    status,
                    len(dedup.entries),
                    len(dedup.new),
                    len(dedup.changed),
                    len(dedup.unchanged),
                    len(removed),
                    ",".join(failed_stations),
                    notes,
                ),
            )
            session_id = cursor.lastrowid

        return SessionSummary(
            session_id=session_id,
            query_id=query_id,
            executed_at=executed_at,
            status=status,
            total=len(dedup.entries),
            new=len(dedup.new),
            changed=len(dedup.changed),
            unchanged=len(dedup.unchanged),
            removed=len(removed),
            failed_stations=failed_stations,
        )

    def record_failure(self, query_id: str, executed_at: str, notes: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO crawl_sessions (query_id, executed_at, status, notes) VALUES (?, ?, 'error', ?)",
                (query_id, executed_at, notes),
            )

    def recent_sessions(self, limit: int = 10) -> List[Tuple[str, str, str, str | None]]:
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                SELECT query_id, executed_at, status, notes
                FROM crawl_sessions ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            )
            return cursor.fetchall()

    def export_rentals_to_xlsx(self, path: Path, query_id: str | None = None) -> Path:
        """Write the stored rentals to an Excel workbook."""
        records: Iterable[RentalRecord] = self.fetch_rentals(query_id=query_id).values()
        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = "rentals"
        worksheet.append(EXPORT_COLUMNS)
        for record in sorted(records, key=lambda item: (item.query_id, item.first_seen, item.property_id)):
            worksheet.append([
                record.query_id,
                record.property_id,
                record.title,
                record.price,
                record.house_type,
                record.rooms,
                record.metro_title,
                record.metro_value,
                ", ".join(record.tags),
                record.link,
                record.first_seen,
                record.last_seen,
                "yes" if record.active else "no",
            ])
        path.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(path)
        return path
