#!/usr/bin/env python3
"""
Database connection pooling, transaction management and the SPJ claim store.
"""

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from queue import Queue, Empty
import threading
import logging
from typing import Optional, Any, Dict, List

from validators import ClaimSubmission, COST_COMPONENT_FIELDS, DOCUMENT_FIELDS

logger = logging.getLogger(__name__)

class ConnectionPool:
    """Thread-safe SQLite connection pool with transaction support."""

    def __init__(self, database_path: str, pool_size: int = 5, max_overflow: int = 10, timeout: int = 30):
        """
        Initialize connection pool.

        Args:
            database_path: Path to SQLite database
            pool_size: Number of persistent connections
            max_overflow: Maximum overflow connections
            timeout: Connection timeout in seconds
        """
        # Every ':memory:' connection is a separate database, so share one.
        if database_path == ':memory:':
            pool_size, max_overflow = 1, 0

        self.database_path = database_path
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.timeout = timeout

        self._pool = Queue(maxsize=pool_size)
        self._overflow = 0
        self._overflow_lock = threading.Lock()

        # Initialize the pool with connections
        for _ in range(pool_size):
            conn = self._create_connection()
            self._pool.put(conn)

    def _create_connection(self) -> sqlite3.Connection:
        """Create a new database connection."""
        conn = sqlite3.connect(
            self.database_path,
            timeout=self.timeout,
            check_same_thread=False,
            isolation_level=None  # Use autocommit mode by default
        )
        conn.row_factory = sqlite3.Row

        # Enable foreign keys
        conn.execute("PRAGMA foreign_keys = ON")

        if self.database_path != ':memory:':
            # Optimize for concurrent access
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

        return conn

    def get_connection(self, timeout: Optional[float] = None) -> sqlite3.Connection:
        """
        Get a connection from the pool.

        Args:
            timeout: Maximum time to wait for a connection

        Returns:
            Database connection

        Raises:
            TimeoutError: If no connection available within timeout
        """
        timeout = timeout or self.timeout

        try:
            # Try to get from pool
            conn = self._pool.get(block=False)

            # Verify connection is still valid
            try:
                conn.execute("SELECT 1")
            except sqlite3.Error:
                logger.warning("Stale connection detected, creating new one")
                conn = self._create_connection()

            return conn

        except Empty:
            # Pool is empty, try to create overflow connection
            with self._overflow_lock:
                if self._overflow < self.max_overflow:
                    self._overflow += 1
                    try:
                        return self._create_connection()
                    except Exception:
                        self._overflow -= 1
                        raise

            # Wait for a connection to become available
            try:
                conn = self._pool.get(block=True, timeout=timeout)

                # Verify connection
                try:
                    conn.execute("SELECT 1")
                except sqlite3.Error:
                    conn = self._create_connection()

                return conn

            except Empty:
                raise TimeoutError(f"No database connection available within {timeout} seconds")

    def return_connection(self, conn: sqlite3.Connection, close_overflow: bool = False):
        """
        Return a connection to the pool.

        Args:
            conn: Connection to return
            close_overflow: Whether to close overflow connections
        """
        if conn is None:
            return

        try:
            # Check if this is an overflow connection
            if close_overflow or self._pool.full():
                with self._overflow_lock:
                    if self._overflow > 0:
                        conn.close()
                        self._overflow -= 1
                        return

            # Return to pool
            self._pool.put_nowait(conn)

        except Exception as e:
            logger.error(f"Error returning connection to pool: {e}")
            try:
                conn.close()
            except sqlite3.Error:
                pass

    @contextmanager
    def get_connection_context(self):
        """
        Context manager for database connections.

        Usage:
            with pool.get_connection_context() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT * FROM spj")
        """
        conn = None
        try:
            conn = self.get_connection()
            yield conn
        finally:
            if conn:
                self.return_connection(conn)

    @contextmanager
    def transaction(self, conn: Optional[sqlite3.Connection] = None):
        """
        Context manager for database transactions.

        Takes the write lock up front (BEGIN IMMEDIATE) so that writers are
        serialized for the whole unit of work.

        Usage:
            with pool.transaction() as conn:
                cursor = conn.cursor()
                cursor.execute("INSERT INTO table VALUES (?)", (value,))
                # Automatically commits on success, rolls back on exception
        """
        own_connection = conn is None
        if own_connection:
            conn = self.get_connection()

        try:
            # Begin transaction
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            # Commit on success
            conn.execute("COMMIT")
        except Exception as e:
            # Rollback on error
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as rollback_error:
                logger.error(f"Error during rollback: {rollback_error}")
            raise e
        finally:
            if own_connection:
                self.return_connection(conn)

    def execute(self, query: str, params: tuple = (), fetch: str = None) -> Any:
        """
        Execute a query with automatic connection management.

        Args:
            query: SQL query to execute
            params: Query parameters
            fetch: 'one', 'all', or None

        Returns:
            Query result or None
        """
        with self.get_connection_context() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)

            if fetch == 'one':
                return cursor.fetchone()
            elif fetch == 'all':
                return cursor.fetchall()
            else:
                return cursor.lastrowid

    def close_all(self):
        """Close all connections in the pool."""
        while not self._pool.empty():
            try:
                conn = self._pool.get_nowait()
                conn.close()
            except Empty:
                break
            except sqlite3.Error as e:
                logger.error(f"Error closing connection: {e}")

        logger.info("All pool connections closed")


class ClaimStoreError(Exception):
    """Opaque storage failure surfaced to callers of the claim store."""


@dataclass
class CreatedClaim:
    id: int
    no_spj: str


@dataclass
class SPJStats:
    """The five dashboard aggregates. Missing sums are 0, never None."""
    total_dipa: float = 0
    total_pnbp: float = 0
    count_perjadin: int = 0
    count_rapat: int = 0
    kkp_usage: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalDipa': self.total_dipa,
            'totalPnbp': self.total_pnbp,
            'countPerjadin': self.count_perjadin,
            'countRapat': self.count_rapat,
            'kkpUsage': self.kkp_usage,
        }


SCHEMA = """
    CREATE TABLE IF NOT EXISTS spj (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        no_spj TEXT UNIQUE NOT NULL,
        no_spt TEXT NOT NULL,
        no_sppd TEXT,
        no_spm TEXT,
        no_drpp TEXT,
        kode_mak TEXT,
        sumber_anggaran TEXT NOT NULL,
        jenis_kegiatan TEXT NOT NULL,
        metode_pembayaran TEXT NOT NULL,
        metode_bayar_transport TEXT,
        metode_bayar_hotel TEXT,
        tanggal_spt TEXT,
        tanggal_sppd TEXT,
        tanggal_berangkat TEXT NOT NULL,
        tanggal_pulang TEXT NOT NULL,
        lama_perjalanan INTEGER,
        tujuan TEXT NOT NULL,
        provinsi_tujuan TEXT,
        unit_organisasi TEXT,
        representasi REAL DEFAULT 0,
        uang_harian REAL DEFAULT 0,
        penginapan REAL DEFAULT 0,
        transport_pp REAL DEFAULT 0,
        transport_lokal REAL DEFAULT 0,
        biaya_pendaftaran REAL DEFAULT 0,
        konsumsi REAL DEFAULT 0,
        honorarium REAL DEFAULT 0,
        bbm REAL DEFAULT 0,
        tol REAL DEFAULT 0,
        total_biaya REAL DEFAULT 0,
        file_spt TEXT,
        file_rincian TEXT,
        file_sppd TEXT,
        file_sptjm TEXT,
        file_kwitansi TEXT,
        file_laporan_perjadin TEXT,
        file_surat_penawaran TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS transport_detail (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        spj_id INTEGER NOT NULL,
        jenis TEXT,
        nomor_tiket TEXT,
        maskapai TEXT,
        tarif REAL DEFAULT 0,
        FOREIGN KEY (spj_id) REFERENCES spj (id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS penginapan_detail (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        spj_id INTEGER NOT NULL,
        nama_hotel TEXT,
        jumlah_hari INTEGER,
        tarif REAL DEFAULT 0,
        is_30_percent INTEGER DEFAULT 0,
        FOREIGN KEY (spj_id) REFERENCES spj (id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS tim_kegiatan (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        spj_id INTEGER NOT NULL,
        nama TEXT NOT NULL,
        jabatan TEXT,
        golongan TEXT,
        unit_kerja TEXT,
        FOREIGN KEY (spj_id) REFERENCES spj (id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS perusahaan (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        spj_id INTEGER NOT NULL,
        nama_perusahaan TEXT NOT NULL,
        FOREIGN KEY (spj_id) REFERENCES spj (id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS log_aktivitas (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user TEXT NOT NULL,
        aktivitas TEXT NOT NULL,
        timestamp TEXT DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS spj_sequence (
        year INTEGER PRIMARY KEY,
        last_seq INTEGER NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_spj_created ON spj(created_at);
    CREATE INDEX IF NOT EXISTS idx_spj_sumber ON spj(sumber_anggaran);
    CREATE INDEX IF NOT EXISTS idx_spj_jenis ON spj(jenis_kegiatan);
    CREATE INDEX IF NOT EXISTS idx_transport_spj ON transport_detail(spj_id);
    CREATE INDEX IF NOT EXISTS idx_penginapan_spj ON penginapan_detail(spj_id);
    CREATE INDEX IF NOT EXISTS idx_tim_spj ON tim_kegiatan(spj_id);
    CREATE INDEX IF NOT EXISTS idx_perusahaan_spj ON perusahaan(spj_id);
"""

BASIC_INFO_COLUMNS = (
    'no_spt', 'no_sppd', 'no_spm', 'no_drpp', 'kode_mak',
    'sumber_anggaran', 'jenis_kegiatan', 'metode_pembayaran',
    'metode_bayar_transport', 'metode_bayar_hotel',
    'tanggal_spt', 'tanggal_sppd', 'tanggal_berangkat', 'tanggal_pulang',
    'lama_perjalanan', 'tujuan', 'provinsi_tujuan', 'unit_organisasi', 'representasi',
)

SPJ_INSERT_COLUMNS = ('no_spj',) + BASIC_INFO_COLUMNS + COST_COMPONENT_FIELDS + ('total_biaya',) + DOCUMENT_FIELDS


def _enum_value(value):
    return getattr(value, 'value', value)


class SPJStore:
    """
    Persists SPJ claims with their nested collections and answers the
    list and aggregate queries.

    Claims are immutable once created: there is no update or delete.
    """

    def __init__(self, pool: ConnectionPool, id_prefix: str = 'SPJ'):
        self.pool = pool
        self.id_prefix = id_prefix
        self._initialize_database()

    def _initialize_database(self):
        """Initialize database schema if needed."""
        with self.pool.get_connection_context() as conn:
            conn.executescript(SCHEMA)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_claim(self, claim: ClaimSubmission, actor: str, year: int = None) -> CreatedClaim:
        """
        Insert one claim, its child rows and one activity-log row as a
        single transaction.

        ``total_biaya`` is stored exactly as supplied. If the generated
        public identifier collides with an existing row, the year's
        sequence is resynchronised and the create is retried once.

        Raises:
            ValueError: If no actor is given
            ClaimStoreError: If the claim could not be stored
        """
        if not actor or not str(actor).strip():
            raise ValueError("An actor identity is required to create a claim")

        year = year or datetime.now().year

        for attempt in range(2):
            try:
                created = self._insert_claim(claim, actor.strip(), year)
                logger.info(f"Created SPJ {created.no_spj} (id={created.id}) by {actor}")
                return created
            except sqlite3.IntegrityError as e:
                if attempt == 0 and 'no_spj' in str(e):
                    logger.warning(f"Identifier collision in {year}, resynchronising sequence and retrying: {e}")
                    try:
                        self._resync_sequence(year)
                    except (sqlite3.Error, TimeoutError) as resync_error:
                        logger.error(f"Failed to resynchronise SPJ sequence: {resync_error}", exc_info=True)
                        raise ClaimStoreError("Failed to store SPJ") from resync_error
                    continue
                logger.error(f"Failed to store SPJ: {e}", exc_info=True)
                raise ClaimStoreError("Failed to store SPJ") from e
            except (sqlite3.Error, TimeoutError) as e:
                logger.error(f"Failed to store SPJ: {e}", exc_info=True)
                raise ClaimStoreError("Failed to store SPJ") from e

    def _insert_claim(self, claim: ClaimSubmission, actor: str, year: int) -> CreatedClaim:
        with self.pool.transaction() as conn:
            cursor = conn.cursor()

            no_spj = self._next_identifier(cursor, year)

            basic = claim.basic_info.model_dump()
            komponen = claim.komponen.model_dump()
            dokumen = claim.dokumen.model_dump()

            values = [no_spj]
            values.extend(_enum_value(basic[col]) for col in BASIC_INFO_COLUMNS)
            values.extend(komponen[col] for col in COST_COMPONENT_FIELDS)
            values.append(claim.total_biaya)
            values.extend(dokumen[col] for col in DOCUMENT_FIELDS)

            cursor.execute(
                f"INSERT INTO spj ({', '.join(SPJ_INSERT_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in SPJ_INSERT_COLUMNS)})",
                values
            )
            spj_id = cursor.lastrowid

            if claim.transport_details:
                cursor.executemany(
                    "INSERT INTO transport_detail (spj_id, jenis, nomor_tiket, maskapai, tarif) VALUES (?, ?, ?, ?, ?)",
                    [(spj_id, t.jenis.value, t.nomor_tiket, t.maskapai, t.tarif) for t in claim.transport_details]
                )

            if claim.penginapan_details:
                cursor.executemany(
                    "INSERT INTO penginapan_detail (spj_id, nama_hotel, jumlah_hari, tarif, is_30_percent) VALUES (?, ?, ?, ?, ?)",
                    [(spj_id, p.nama_hotel, p.jumlah_hari, p.tarif, 1 if p.is_30_percent else 0)
                     for p in claim.penginapan_details]
                )

            if claim.tim:
                cursor.executemany(
                    "INSERT INTO tim_kegiatan (spj_id, nama, jabatan, golongan, unit_kerja) VALUES (?, ?, ?, ?, ?)",
                    [(spj_id, m.nama, m.jabatan, m.golongan, m.unit_kerja) for m in claim.tim]
                )

            if claim.perusahaan:
                cursor.executemany(
                    "INSERT INTO perusahaan (spj_id, nama_perusahaan) VALUES (?, ?)",
                    [(spj_id, p.nama_perusahaan) for p in claim.perusahaan]
                )

            cursor.execute(
                "INSERT INTO log_aktivitas (user, aktivitas) VALUES (?, ?)",
                (actor, f"Created SPJ ID: {spj_id} ({no_spj})")
            )

            return CreatedClaim(id=spj_id, no_spj=no_spj)

    def _next_identifier(self, cursor: sqlite3.Cursor, year: int) -> str:
        """Advance the year's sequence; must run inside the create transaction."""
        cursor.execute("""
            INSERT INTO spj_sequence (year, last_seq) VALUES (?, 1)
            ON CONFLICT(year) DO UPDATE SET last_seq = last_seq + 1
        """, (year,))
        cursor.execute("SELECT last_seq FROM spj_sequence WHERE year = ?", (year,))
        seq = cursor.fetchone()['last_seq']
        return f"{self.id_prefix}/{year}/{seq:04d}"

    def _resync_sequence(self, year: int):
        """Move the year's sequence past the highest suffix already stored."""
        prefix = f"{self.id_prefix}/{year}/"
        with self.pool.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT COALESCE(MAX(CAST(substr(no_spj, ?) AS INTEGER)), 0) AS max_seq
                FROM spj WHERE substr(no_spj, 1, ?) = ?
            """, (len(prefix) + 1, len(prefix), prefix))
            max_seq = cursor.fetchone()['max_seq']
            cursor.execute("""
                INSERT INTO spj_sequence (year, last_seq) VALUES (?, ?)
                ON CONFLICT(year) DO UPDATE SET last_seq = MAX(last_seq, excluded.last_seq)
            """, (year, max_seq))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_claims(self) -> List[Dict[str, Any]]:
        """All claims, newest first. No pagination or filtering."""
        rows = self.pool.execute(
            "SELECT * FROM spj ORDER BY created_at DESC, id DESC",
            fetch='all'
        )
        return [dict(r) for r in rows] if rows else []

    def get_stats(self) -> SPJStats:
        """Compute the dashboard aggregates."""
        with self.pool.get_connection_context() as conn:
            cursor = conn.cursor()

            def scalar(query: str, params: tuple) -> Any:
                cursor.execute(query, params)
                return cursor.fetchone()[0]

            return SPJStats(
                total_dipa=scalar(
                    "SELECT COALESCE(SUM(total_biaya), 0) FROM spj WHERE sumber_anggaran = ?",
                    ('SPJ DIPA',)),
                total_pnbp=scalar(
                    "SELECT COALESCE(SUM(total_biaya), 0) FROM spj WHERE sumber_anggaran = ?",
                    ('SPJ PNBP',)),
                count_perjadin=scalar(
                    "SELECT COUNT(*) FROM spj WHERE jenis_kegiatan = ?",
                    ('Perjalanan Dinas',)),
                count_rapat=scalar(
                    "SELECT COUNT(*) FROM spj WHERE jenis_kegiatan = ?",
                    ('Rapat',)),
                kkp_usage=scalar(
                    "SELECT COALESCE(SUM(total_biaya), 0) FROM spj WHERE metode_pembayaran = ?",
                    ('KKP',)),
            )

    def list_activity(self) -> List[Dict[str, Any]]:
        """Raw activity log, newest first."""
        rows = self.pool.execute(
            "SELECT * FROM log_aktivitas ORDER BY timestamp DESC, id DESC",
            fetch='all'
        )
        return [dict(r) for r in rows] if rows else []

    def count_rows(self, table: str) -> int:
        """Row count for one of the store's own tables."""
        if table not in ('spj', 'transport_detail', 'penginapan_detail', 'tim_kegiatan', 'perusahaan', 'log_aktivitas'):
            raise ValueError(f"Invalid table name: {table}")
        row = self.pool.execute(f"SELECT COUNT(*) FROM {table}", fetch='one')
        return row[0]

    def close(self):
        """Close all database connections."""
        self.pool.close_all()

