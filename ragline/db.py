"""SQLite persistence backing the FAISS vector store.

Stores:
- Index definitions (name, dimension, metric)
- Record metadata keyed by record id, with the FAISS slot of its vector
- A log of ingestion runs
"""
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

logger = structlog.get_logger()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_database(db_path: Path) -> None:
    """Initialize the database schema.

    Creates tables if they don't exist:
    - indexes: one row per vector index
    - records: record metadata and the FAISS slot holding its vector
    - ingest_runs: tracks ingestion runs and their configuration
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS indexes (
                name TEXT PRIMARY KEY,
                dimension INTEGER NOT NULL,
                metric TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS records (
                slot INTEGER PRIMARY KEY AUTOINCREMENT,
                index_name TEXT NOT NULL,
                record_id TEXT NOT NULL,
                metadata_json TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(index_name, record_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ingest_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ingested_at TEXT NOT NULL,
                index_name TEXT NOT NULL,
                embedding_model TEXT NOT NULL,
                embedding_dimension INTEGER NOT NULL,
                chunk_unit TEXT NOT NULL,
                policy_json TEXT NOT NULL,
                chunk_count INTEGER NOT NULL,
                records_written INTEGER NOT NULL,
                source TEXT
            )
        """)

        conn.commit()
        logger.debug("database_initialized", db_path=str(db_path))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


def insert_index(db_path: Path, name: str, dimension: int, metric: str) -> None:
    conn = get_connection(db_path)
    try:
        conn.execute(
            "INSERT INTO indexes (name, dimension, metric, created_at) VALUES (?, ?, ?, ?)",
            (name, dimension, metric, _now()),
        )
        conn.commit()
        logger.info("index_row_inserted", name=name, dimension=dimension, metric=metric)
    except Exception as e:
        conn.rollback()
        logger.error("index_insert_failed", error=str(e), name=name)
        raise
    finally:
        conn.close()


def get_index(db_path: Path, name: str) -> Optional[Dict[str, Any]]:
    conn = get_connection(db_path)
    try:
        row = conn.execute("SELECT * FROM indexes WHERE name = ?", (name,)).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def list_indexes(db_path: Path) -> List[str]:
    conn = get_connection(db_path)
    try:
        rows = conn.execute("SELECT name FROM indexes ORDER BY name").fetchall()
        return [row["name"] for row in rows]
    finally:
        conn.close()


def delete_index(db_path: Path, name: str) -> int:
    """Delete an index definition and all its records.

    Returns:
        Number of records deleted
    """
    conn = get_connection(db_path)
    try:
        cursor = conn.execute("DELETE FROM records WHERE index_name = ?", (name,))
        count = cursor.rowcount
        conn.execute("DELETE FROM indexes WHERE name = ?", (name,))
        conn.commit()
        logger.info("index_rows_deleted", name=name, records=count)
        return count
    except Exception as e:
        conn.rollback()
        logger.error("index_delete_failed", error=str(e), name=name)
        raise
    finally:
        conn.close()


def begin_upsert(
    db_path: Path, index_name: str, records: Sequence[Tuple[str, Dict[str, Any]]]
) -> Tuple[sqlite3.Connection, List[int], List[int]]:
    """Write record metadata inside an open transaction.

    The caller commits the returned connection once the vectors are
    persisted, or rolls it back.

    Args:
        db_path: Database file
        index_name: Target index
        records: (record_id, metadata) pairs

    Returns:
        (open connection, slot per record in input order, slots that
        already held a vector and must be replaced)
    """
    conn = get_connection(db_path)
    slots: List[int] = []
    replaced: List[int] = []

    try:
        for record_id, metadata in records:
            row = conn.execute(
                "SELECT slot FROM records WHERE index_name = ? AND record_id = ?",
                (index_name, record_id),
            ).fetchone()
            payload = json.dumps(metadata)

            if row:
                conn.execute(
                    "UPDATE records SET metadata_json = ?, updated_at = ? WHERE slot = ?",
                    (payload, _now(), row["slot"]),
                )
                slots.append(row["slot"])
                replaced.append(row["slot"])
            else:
                cursor = conn.execute(
                    """
                    INSERT INTO records (index_name, record_id, metadata_json, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (index_name, record_id, payload, _now()),
                )
                slots.append(cursor.lastrowid)
    except Exception as e:
        conn.rollback()
        conn.close()
        logger.error("record_upsert_failed", error=str(e), index_name=index_name)
        raise

    return conn, slots, replaced


def get_records_by_slots(db_path: Path, slots: List[int]) -> Dict[int, Dict[str, Any]]:
    """Retrieve records by their FAISS slots.

    Returns:
        Mapping slot -> {"id": record_id, "metadata": {...}}
    """
    if not slots:
        return {}

    conn = get_connection(db_path)
    try:
        placeholders = ",".join("?" * len(slots))
        rows = conn.execute(
            f"SELECT slot, record_id, metadata_json FROM records WHERE slot IN ({placeholders})",
            slots,
        ).fetchall()
        return {
            row["slot"]: {
                "id": row["record_id"],
                "metadata": json.loads(row["metadata_json"]),
            }
            for row in rows
        }
    finally:
        conn.close()


def get_record_ids_by_source(db_path: Path, index_name: str, source: str) -> List[str]:
    """Get the ids of all records ingested from a source.

    Returns:
        Record ids in slot order
    """
    conn = get_connection(db_path)
    try:
        rows = conn.execute(
            """
            SELECT record_id FROM records
            WHERE index_name = ? AND json_extract(metadata_json, '$.source') = ?
            ORDER BY slot
            """,
            (index_name, source),
        ).fetchall()
        return [row["record_id"] for row in rows]
    finally:
        conn.close()


def begin_delete(
    db_path: Path, index_name: str, record_ids: Sequence[str]
) -> Tuple[sqlite3.Connection, List[int]]:
    """Delete records inside an open transaction.

    The caller commits the returned connection once the vectors are
    removed, or rolls it back.

    Returns:
        (open connection, slots of the deleted records)
    """
    conn = get_connection(db_path)
    slots: List[int] = []

    try:
        for record_id in record_ids:
            row = conn.execute(
                "SELECT slot FROM records WHERE index_name = ? AND record_id = ?",
                (index_name, record_id),
            ).fetchone()
            if row:
                conn.execute("DELETE FROM records WHERE slot = ?", (row["slot"],))
                slots.append(row["slot"])
    except Exception as e:
        conn.rollback()
        conn.close()
        logger.error("record_delete_failed", error=str(e), index_name=index_name)
        raise

    return conn, slots


def count_records(db_path: Path, index_name: str) -> int:
    conn = get_connection(db_path)
    try:
        row = conn.execute(
            "SELECT COUNT(*) FROM records WHERE index_name = ?", (index_name,)
        ).fetchone()
        return row[0]
    finally:
        conn.close()


def insert_ingest_run(
    db_path: Path,
    index_name: str,
    embedding_model: str,
    embedding_dimension: int,
    chunk_unit: str,
    policy: Dict[str, Any],
    chunk_count: int,
    records_written: int,
    source: Optional[str] = None,
) -> int:
    """Record a completed ingestion run.

    Returns:
        ID of the inserted row
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            INSERT INTO ingest_runs (
                ingested_at, index_name, embedding_model, embedding_dimension,
                chunk_unit, policy_json, chunk_count, records_written, source
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            _now(),
            index_name,
            embedding_model,
            embedding_dimension,
            chunk_unit,
            json.dumps(policy),
            chunk_count,
            records_written,
            source,
        ))

        conn.commit()
        row_id = cursor.lastrowid
        logger.info("ingest_run_recorded", id=row_id, chunk_count=chunk_count)
        return row_id

    except Exception as e:
        conn.rollback()
        logger.error("ingest_run_insert_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_latest_ingest_run(db_path: Path, index_name: str) -> Optional[Dict[str, Any]]:
    """Get the most recent ingestion run for an index.

    Returns:
        Dictionary with run fields, or None if the index was never ingested
    """
    conn = get_connection(db_path)
    try:
        row = conn.execute(
            """
            SELECT * FROM ingest_runs
            WHERE index_name = ?
            ORDER BY id DESC
            LIMIT 1
            """,
            (index_name,),
        ).fetchone()
        if not row:
            return None
        run = dict(row)
        run["policy"] = json.loads(run.pop("policy_json"))
        return run
    finally:
        conn.close()
