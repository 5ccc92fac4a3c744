"""FAISS vector store for semantic search.

Handles:
- Named indexes with a fixed dimension and similarity metric
- Id-keyed upserts (re-upserting an id replaces its vector and metadata)
- Nearest-neighbour queries with metadata inclusion
- Persistence of vectors (FAISS files) and metadata (SQLite)

FAISS and SQLite calls block, so every public coroutine runs its body in
a worker thread; callers can bound each call with ``asyncio.timeout``.
"""
import asyncio
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import faiss
import numpy as np
import structlog

from ragline import db
from ragline.rag.models import IndexRecord, RetrievalMatch

logger = structlog.get_logger()

METRICS = ("cosine", "dotproduct", "euclidean")


class FAISSVectorStore:
    """FAISS-based vector store with SQLite-backed record metadata."""

    def __init__(self, data_dir: Path):
        """Initialize the FAISS vector store.

        Args:
            data_dir: Directory holding the index files and the record database
        """
        self.data_dir = Path(data_dir)
        self.index_dir = self.data_dir / "indexes"
        self.db_path = self.data_dir / "records.sqlite"

        self._indexes: Dict[str, faiss.Index] = {}
        self._db_ready = False
        # Serializes worker threads; a timed-out call may still be running
        self._lock = threading.RLock()

        logger.info("faiss_store_initialized", data_dir=str(self.data_dir))

    def _ensure_db(self) -> None:
        if not self._db_ready:
            self.index_dir.mkdir(parents=True, exist_ok=True)
            db.init_database(self.db_path)
            self._db_ready = True

    def _index_path(self, name: str) -> Path:
        return self.index_dir / f"{name}.faiss"

    def _info(self, name: str) -> Dict[str, Any]:
        self._ensure_db()
        info = db.get_index(self.db_path, name)
        if info is None:
            raise KeyError(f"Index not found: {name}")
        return info

    def _load(self, name: str) -> faiss.Index:
        if name not in self._indexes:
            info = self._info(name)
            path = self._index_path(name)
            if path.exists():
                index = faiss.read_index(str(path))
            else:
                index = self._new_faiss_index(info["dimension"], info["metric"])
            self._indexes[name] = index
            logger.info(
                "faiss_index_loaded",
                name=name,
                dimension=info["dimension"],
                vector_count=index.ntotal,
            )
        return self._indexes[name]

    def _save(self, name: str) -> None:
        path = self._index_path(name)
        tmp_path = path.with_suffix(".faiss.tmp")
        faiss.write_index(self._indexes[name], str(tmp_path))
        os.replace(tmp_path, path)

    @staticmethod
    def _new_faiss_index(dimension: int, metric: str) -> faiss.Index:
        if metric == "euclidean":
            base = faiss.IndexFlatL2(dimension)
        else:
            base = faiss.IndexFlatIP(dimension)
        return faiss.IndexIDMap2(base)

    def _prepare(self, vectors: np.ndarray, info: Dict[str, Any]) -> np.ndarray:
        vectors = np.ascontiguousarray(vectors, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[1] != info["dimension"]:
            raise ValueError(
                f"Vector dimension mismatch for index '{info['name']}': "
                f"expected {info['dimension']}, got {vectors.shape[-1]}"
            )
        if info["metric"] == "cosine":
            vectors = vectors.copy()
            faiss.normalize_L2(vectors)
        return vectors

    def _list_indexes(self) -> List[str]:
        self._ensure_db()
        return db.list_indexes(self.db_path)

    def _describe_index(self, name: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_db()
            info = db.get_index(self.db_path, name)
            if info is None:
                return None
            info["vector_count"] = self._load(name).ntotal
            return info

    def _create_index(self, name: str, dimension: int, metric: str) -> None:
        if metric not in METRICS:
            raise ValueError(f"Unknown metric '{metric}' (expected one of {METRICS})")
        with self._lock:
            self._ensure_db()
            if db.get_index(self.db_path, name) is not None:
                raise ValueError(f"Index already exists: {name}")

            self._indexes[name] = self._new_faiss_index(dimension, metric)
            self._save(name)
            db.insert_index(self.db_path, name, dimension, metric)

        logger.info("faiss_index_created", name=name, dimension=dimension, metric=metric)

    def _delete_index(self, name: str) -> None:
        with self._lock:
            self._ensure_db()
            self._indexes.pop(name, None)
            path = self._index_path(name)
            if path.exists():
                path.unlink()
            db.delete_index(self.db_path, name)
        logger.warning("faiss_index_deleted", name=name)

    def _upsert(self, name: str, records: Sequence[IndexRecord]) -> int:
        with self._lock:
            info = self._info(name)
            index = self._load(name)
            vectors = self._prepare(np.stack([r.vector for r in records]), info)

            conn, slots, replaced = db.begin_upsert(
                self.db_path, name, [(r.id, r.metadata) for r in records]
            )
            try:
                if replaced:
                    index.remove_ids(np.asarray(replaced, dtype=np.int64))
                index.add_with_ids(vectors, np.asarray(slots, dtype=np.int64))
                self._save(name)
                conn.commit()
            except Exception:
                conn.rollback()
                # In-memory index may be ahead of disk; reload on next use
                self._indexes.pop(name, None)
                raise
            finally:
                conn.close()

        logger.info(
            "vectors_upserted",
            name=name,
            count=len(records),
            replaced=len(replaced),
            total_vectors=index.ntotal,
        )
        return len(records)

    def _delete_records(self, name: str, record_ids: Sequence[str]) -> int:
        with self._lock:
            self._info(name)
            index = self._load(name)

            conn, slots = db.begin_delete(self.db_path, name, record_ids)
            try:
                if slots:
                    index.remove_ids(np.asarray(slots, dtype=np.int64))
                    self._save(name)
                conn.commit()
            except Exception:
                conn.rollback()
                self._indexes.pop(name, None)
                raise
            finally:
                conn.close()

        logger.info("records_deleted", name=name, count=len(slots))
        return len(slots)

    def _query(
        self, name: str, vector: np.ndarray, top_k: int, include_metadata: bool
    ) -> List[RetrievalMatch]:
        with self._lock:
            info = self._info(name)
            index = self._load(name)

            top_k = min(top_k, index.ntotal)
            if top_k <= 0:
                return []

            query_vector = self._prepare(np.asarray(vector).reshape(1, -1), info)
            scores, ids = index.search(query_vector, top_k)

            hits = [(int(i), float(s)) for i, s in zip(ids[0], scores[0]) if i != -1]
            records = db.get_records_by_slots(self.db_path, [slot for slot, _ in hits])

        matches = []
        for slot, score in hits:
            record = records.get(slot)
            if record is None:
                logger.warning("vector_slot_without_record", name=name, slot=slot)
                continue
            matches.append(
                RetrievalMatch(
                    id=record["id"],
                    score=score,
                    metadata=record["metadata"] if include_metadata else {},
                )
            )

        logger.info(
            "vector_search_completed",
            name=name,
            top_k=top_k,
            results_found=len(matches),
        )
        return matches

    async def list_indexes(self) -> List[str]:
        return await asyncio.to_thread(self._list_indexes)

    async def describe_index(self, name: str) -> Optional[Dict[str, Any]]:
        """Describe an index.

        Returns:
            Dict with name, dimension, metric and vector_count, or None
        """
        return await asyncio.to_thread(self._describe_index, name)

    async def create_index(self, name: str, dimension: int, metric: str = "cosine") -> None:
        """Create a new empty index.

        Raises:
            ValueError: If the metric is unknown or the index already exists
        """
        await asyncio.to_thread(self._create_index, name, dimension, metric)

    async def delete_index(self, name: str) -> None:
        await asyncio.to_thread(self._delete_index, name)

    async def upsert(self, name: str, records: Sequence[IndexRecord]) -> int:
        """Insert or replace records by id.

        The FAISS file is rewritten and the metadata committed before
        returning, so an acknowledged upsert is durable.

        Returns:
            Number of records written

        Raises:
            KeyError: If the index does not exist
            ValueError: On vector dimension mismatch
        """
        if not records:
            return 0
        return await asyncio.to_thread(self._upsert, name, records)

    async def delete_records(self, name: str, record_ids: Sequence[str]) -> int:
        """Delete records by id; unknown ids are ignored.

        Returns:
            Number of records deleted

        Raises:
            KeyError: If the index does not exist
        """
        if not record_ids:
            return 0
        return await asyncio.to_thread(self._delete_records, name, list(record_ids))

    async def record_ids_for_source(self, name: str, source: str) -> List[str]:
        self._ensure_db()
        return await asyncio.to_thread(db.get_record_ids_by_source, self.db_path, name, source)

    async def query(
        self,
        name: str,
        vector: np.ndarray,
        top_k: int,
        include_metadata: bool = True,
    ) -> List[RetrievalMatch]:
        """Search for the nearest records.

        Scores are the raw FAISS values: inner product for cosine and
        dotproduct (higher is closer), squared L2 distance for euclidean
        (lower is closer). Results keep FAISS order.

        Raises:
            KeyError: If the index does not exist
        """
        return await asyncio.to_thread(self._query, name, vector, top_k, include_metadata)

    def _count(self, name: str) -> int:
        with self._lock:
            return self._load(name).ntotal

    async def count(self, name: str) -> int:
        return await asyncio.to_thread(self._count, name)

    def get_latest_ingest_run(self, name: str) -> Optional[Dict[str, Any]]:
        self._ensure_db()
        return db.get_latest_ingest_run(self.db_path, name)

    def record_ingest_run(self, **fields) -> int:
        self._ensure_db()
        return db.insert_ingest_run(self.db_path, **fields)
