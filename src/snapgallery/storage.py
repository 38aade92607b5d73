"""
Metadata store for images and their AI-derived metadata.

This module owns the relational schema (``images`` and ``image_metadata``)
on top of SQLite. List-valued columns are stored as JSON and queried with
SQLite's JSON1 functions. Fuzzy tag search is exposed as named,
parameterized procedures backed by a trigram similarity SQL function.
"""

import json
import logging
import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .config import Settings
from .models.schemas import (
    ImageItem,
    ImageRecord,
    MetadataRecord,
    MetadataView,
    ProcessingStatus,
)

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.3

_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)

_ITEM_SELECT = """
    SELECT
        i.id, i.user_id, i.filename, i.original_path, i.thumbnail_path,
        i.file_size, i.mime_type, i.uploaded_at,
        m.id AS metadata_id, m.description, m.tags, m.colors,
        m.dominant_color, m.ai_processing_status
    FROM images i
    LEFT JOIN image_metadata m ON m.image_id = i.id
"""

_TAG_TEXT = "(SELECT group_concat(value, ' ') FROM json_each(m.tags))"

_TAG_MATCH = f"""
    (:user_id IS NULL OR m.user_id = :user_id)
    AND (
        EXISTS (SELECT 1 FROM json_each(m.tags) WHERE value = :search_term)
        OR similarity({_TAG_TEXT}, :search_term) > {SIMILARITY_THRESHOLD}
    )
"""

PROCEDURES: Dict[str, str] = {
    "search_images_by_tags": f"""
        SELECT
            m.id, m.image_id, m.description, m.tags,
            similarity({_TAG_TEXT}, :search_term) AS match_score
        FROM image_metadata m
        WHERE {_TAG_MATCH}
        ORDER BY match_score DESC, m.image_id DESC
        LIMIT :limit OFFSET :offset
    """,
    "count_images_by_tags": f"""
        SELECT COUNT(*) AS count
        FROM image_metadata m
        WHERE {_TAG_MATCH}
    """,
}


class StorageError(Exception):
    """Storage related errors."""


def _trigrams(text: str) -> set:
    grams = set()
    for word in _WORD_RE.findall(text.lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i : i + 3])
    return grams


def trigram_similarity(left: Optional[str], right: Optional[str]) -> float:
    """
    Trigram similarity between two strings, in the manner of pg_trgm.

    Words are lowercased and padded before splitting into trigrams; the
    score is the size of the shared set over the size of the union.
    """
    if not left or not right:
        return 0.0
    a = _trigrams(left)
    b = _trigrams(right)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def casefold(text: Optional[str]) -> Optional[str]:
    """Full Unicode case folding, registered as the ``casefold`` SQL function."""
    return text.casefold() if isinstance(text, str) else text


def _utcnow() -> str:
    # Fixed width so text ordering matches time ordering.
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _load_list(value: Optional[str]) -> List[Any]:
    if not value:
        return []
    loaded = json.loads(value)
    return loaded if isinstance(loaded, list) else []


class MetadataStore:
    """
    Persists images and image metadata.

    Every mutating method that touches ``image_metadata`` is scoped by
    ``(image_id, user_id)`` in its own WHERE clause.
    """

    def __init__(self, settings: Settings):
        """
        Initialize metadata store.

        Args:
            settings: Application settings

        Raises:
            StorageError: If initialization fails
        """
        assert settings is not None, "Settings object is required"

        self.settings = settings
        self.db_path = Path(settings.database_path)
        self._setup_database()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.create_function(
                "similarity", 2, trigram_similarity, deterministic=True
            )
            conn.create_function("casefold", 1, casefold, deterministic=True)
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _setup_database(self) -> None:
        """Setup SQLite database and tables."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS images (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        filename TEXT NOT NULL,
                        original_path TEXT NOT NULL,
                        thumbnail_path TEXT NOT NULL,
                        file_size INTEGER NOT NULL,
                        mime_type TEXT NOT NULL,
                        uploaded_at TEXT NOT NULL
                    )
                """
                )

                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS image_metadata (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        image_id INTEGER NOT NULL UNIQUE
                            REFERENCES images (id) ON DELETE CASCADE,
                        user_id TEXT NOT NULL,
                        description TEXT,
                        tags TEXT NOT NULL DEFAULT '[]',
                        colors TEXT NOT NULL DEFAULT '[]',
                        dominant_color TEXT,
                        embedding TEXT,
                        ai_processing_status TEXT NOT NULL DEFAULT 'pending',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """
                )

                conn.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_images_user_uploaded
                    ON images (user_id, uploaded_at)
                """
                )

                conn.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_metadata_user_id
                    ON image_metadata (user_id)
                """
                )

            logger.info(f"Database initialized: {self.db_path}")

        except Exception as e:
            error_msg = f"Failed to setup database: {e}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

    # ========================================
    # ROW MAPPING
    # ========================================

    @staticmethod
    def _image_from_row(row: sqlite3.Row) -> ImageRecord:
        return ImageRecord(
            id=row["id"],
            user_id=row["user_id"],
            filename=row["filename"],
            original_path=row["original_path"],
            thumbnail_path=row["thumbnail_path"],
            file_size=row["file_size"],
            mime_type=row["mime_type"],
            uploaded_at=datetime.fromisoformat(row["uploaded_at"]),
        )

    @classmethod
    def _item_from_row(cls, row: sqlite3.Row) -> ImageItem:
        metadata = None
        if row["metadata_id"] is not None:
            metadata = MetadataView(
                description=row["description"],
                tags=_load_list(row["tags"]),
                colors=_load_list(row["colors"]),
                dominant_color=row["dominant_color"],
                ai_processing_status=row["ai_processing_status"],
            )
        image = cls._image_from_row(row)
        return ImageItem(**image.model_dump(), metadata=metadata)

    # ========================================
    # WRITES
    # ========================================

    def create_image(
        self,
        user_id: str,
        filename: str,
        original_path: str,
        thumbnail_path: str,
        file_size: int,
        mime_type: str,
        colors: Sequence[str] = (),
        dominant_color: Optional[str] = None,
    ) -> ImageRecord:
        """
        Insert an ``images`` row and its ``pending`` metadata row.

        Both rows are written in one transaction; on failure neither exists.

        Args:
            user_id: Owner identifier
            filename: Sanitized original filename
            original_path: Blob key of the original
            thumbnail_path: Blob key of the thumbnail
            file_size: Size of the original in bytes
            mime_type: Declared content type
            colors: Extracted palette, most frequent first
            dominant_color: First palette entry, if any

        Returns:
            The stored image row

        Raises:
            StorageError: If either insert fails
        """
        assert user_id, "User ID is required"
        assert file_size > 0, f"Invalid file size: {file_size}"

        now = _utcnow()
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO images (
                        user_id, filename, original_path, thumbnail_path,
                        file_size, mime_type, uploaded_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        user_id,
                        filename,
                        original_path,
                        thumbnail_path,
                        file_size,
                        mime_type,
                        now,
                    ),
                )
                image_id = cursor.lastrowid

                conn.execute(
                    """
                    INSERT INTO image_metadata (
                        image_id, user_id, tags, colors, dominant_color,
                        ai_processing_status, created_at, updated_at
                    ) VALUES (?, ?, '[]', ?, ?, ?, ?, ?)
                """,
                    (
                        image_id,
                        user_id,
                        json.dumps(list(colors)),
                        dominant_color,
                        ProcessingStatus.PENDING.value,
                        now,
                        now,
                    ),
                )

                row = conn.execute(
                    "SELECT * FROM images WHERE id = ?", (image_id,)
                ).fetchone()
                logger.debug(f"Stored image {image_id} for user {user_id}")
                return self._image_from_row(row)

        except Exception as e:
            error_msg = f"Failed to store image: {e}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

    def mark_completed(
        self,
        image_id: int,
        user_id: str,
        description: str,
        tags: Sequence[str],
        embedding: Optional[Sequence[float]] = None,
    ) -> int:
        """
        Store analysis results and mark the image ``completed``.

        Single UPDATE scoped by ``(image_id, user_id)``.

        Returns:
            Number of rows updated
        """
        params: List[Any] = [
            description,
            json.dumps(list(tags)),
            ProcessingStatus.COMPLETED.value,
            _utcnow(),
        ]
        embedding_clause = ""
        if embedding is not None:
            embedding_clause = ", embedding = ?"
            params.append(json.dumps(list(embedding)))
        params.extend([image_id, user_id])

        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"""
                    UPDATE image_metadata
                    SET description = ?, tags = ?, ai_processing_status = ?,
                        updated_at = ?{embedding_clause}
                    WHERE image_id = ? AND user_id = ?
                """,
                    params,
                )
                return cursor.rowcount

        except Exception as e:
            error_msg = f"Failed to mark image {image_id} completed: {e}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

    def mark_failed(self, image_id: int, user_id: str) -> int:
        """
        Mark the image ``failed``, leaving description and tags untouched.

        Returns:
            Number of rows updated
        """
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE image_metadata
                    SET ai_processing_status = ?, updated_at = ?
                    WHERE image_id = ? AND user_id = ?
                """,
                    (ProcessingStatus.FAILED.value, _utcnow(), image_id, user_id),
                )
                return cursor.rowcount

        except Exception as e:
            error_msg = f"Failed to mark image {image_id} failed: {e}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

    # ========================================
    # READS
    # ========================================

    def get_image(self, image_id: int, user_id: str) -> Optional[ImageRecord]:
        """Get an image row owned by ``user_id``."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM images WHERE id = ? AND user_id = ?",
                    (image_id, user_id),
                ).fetchone()
                return self._image_from_row(row) if row else None

        except Exception as e:
            error_msg = f"Failed to get image: {e}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

    def get_metadata(self, image_id: int) -> Optional[MetadataRecord]:
        """Get the metadata row of an image."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM image_metadata WHERE image_id = ?", (image_id,)
                ).fetchone()
                if row is None:
                    return None

                embedding = _load_list(row["embedding"]) if row["embedding"] else None
                return MetadataRecord(
                    id=row["id"],
                    image_id=row["image_id"],
                    user_id=row["user_id"],
                    description=row["description"],
                    tags=_load_list(row["tags"]),
                    colors=_load_list(row["colors"]),
                    dominant_color=row["dominant_color"],
                    embedding=embedding,
                    ai_processing_status=row["ai_processing_status"],
                    updated_at=datetime.fromisoformat(row["updated_at"]),
                )

        except Exception as e:
            error_msg = f"Failed to get metadata: {e}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

    def get_item(self, image_id: int, user_id: str) -> Optional[ImageItem]:
        """Get an image with its metadata, owned by ``user_id``."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"{_ITEM_SELECT} WHERE i.id = ? AND i.user_id = ?",
                    (image_id, user_id),
                ).fetchone()
                return self._item_from_row(row) if row else None

        except Exception as e:
            error_msg = f"Failed to get image: {e}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

    def query_items(
        self,
        user_id: str,
        where: str = "",
        params: Sequence[Any] = (),
        ascending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ImageItem]:
        """
        Fetch images joined with metadata for one user.

        Args:
            user_id: Owner identifier
            where: Extra SQL predicate over aliases ``i`` and ``m``
            params: Positional parameters of ``where``
            ascending: Oldest first when True, newest first otherwise
            limit: Maximum rows, or None for all
            offset: Rows to skip

        Returns:
            Matching items
        """
        assert offset >= 0, f"Invalid offset: {offset}"

        direction = "ASC" if ascending else "DESC"
        sql = f"{_ITEM_SELECT} WHERE i.user_id = ?"
        args: List[Any] = [user_id]
        if where:
            sql += f" AND ({where})"
            args.extend(params)
        sql += f" ORDER BY i.uploaded_at {direction}, i.id {direction}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            args.extend([limit, offset])

        try:
            with self._connect() as conn:
                rows = conn.execute(sql, args).fetchall()
                return [self._item_from_row(row) for row in rows]

        except Exception as e:
            error_msg = f"Failed to query images: {e}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

    def count_items(
        self, user_id: str, where: str = "", params: Sequence[Any] = ()
    ) -> int:
        """Count images matching the same predicate as ``query_items``."""
        sql = (
            "SELECT COUNT(*) FROM images i "
            "LEFT JOIN image_metadata m ON m.image_id = i.id "
            "WHERE i.user_id = ?"
        )
        args: List[Any] = [user_id]
        if where:
            sql += f" AND ({where})"
            args.extend(params)

        try:
            with self._connect() as conn:
                return conn.execute(sql, args).fetchone()[0]

        except Exception as e:
            error_msg = f"Failed to count images: {e}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

    def get_items_by_ids(
        self, user_id: str, image_ids: Sequence[int]
    ) -> Dict[int, ImageItem]:
        """Hydrate images by id. The result is keyed by id and unordered."""
        if not image_ids:
            return {}

        placeholders = ", ".join("?" for _ in image_ids)
        items = self.query_items(
            user_id, where=f"i.id IN ({placeholders})", params=list(image_ids)
        )
        return {item.id: item for item in items}

    def run_procedure(self, name: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Execute a named, parameterized search procedure.

        Args:
            name: Key of ``PROCEDURES``
            params: Named parameters of the procedure

        Returns:
            Result rows as dictionaries
        """
        assert name in PROCEDURES, f"Unknown procedure: {name}"

        try:
            with self._connect() as conn:
                rows = conn.execute(PROCEDURES[name], params).fetchall()
                return [dict(row) for row in rows]

        except Exception as e:
            error_msg = f"Procedure {name} failed: {e}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e

    def completed_colors(self, user_id: str) -> List[List[str]]:
        """Color lists of the user's completed images, newest image first."""
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT m.colors
                    FROM image_metadata m
                    JOIN images i ON i.id = m.image_id
                    WHERE m.user_id = ? AND m.ai_processing_status = ?
                    ORDER BY i.uploaded_at DESC, i.id DESC
                """,
                    (user_id, ProcessingStatus.COMPLETED.value),
                ).fetchall()
                return [_load_list(row["colors"]) for row in rows]

        except Exception as e:
            error_msg = f"Failed to read colors: {e}"
            logger.error(error_msg)
            raise StorageError(error_msg) from e


def overlap_predicate(column: str, values: Sequence[str]) -> Tuple[str, List[str]]:
    """
    SQL predicate matching rows whose JSON list ``column`` shares a value.

    Returns:
        Tuple of (predicate, parameters); predicate is empty for no values
    """
    if not values:
        return "", []
    placeholders = ", ".join("?" for _ in values)
    return (
        f"EXISTS (SELECT 1 FROM json_each({column}) WHERE value IN ({placeholders}))",
        list(values),
    )
