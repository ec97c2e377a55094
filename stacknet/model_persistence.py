"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

SQLite-based catalogue of saved learners.

Each learner is stored as the binary blob produced by :mod:`stacknet.codec`
together with the seed needed to load it and some queryable metadata about
its training progress.
"""

import sqlite3
import json
import os
import logging
from typing import Optional, List, Dict, Any, Generator
from contextlib import contextmanager

from stacknet import codec
from stacknet import settings
from stacknet.learner import Learner

# Configure module logger
logger = logging.getLogger(__name__)

DB_FILENAME = 'learners.db'


class ModelDatabase:
    """
    Manages the SQLite database for learner persistence.

    The database stores:
    - Learner metadata (architecture, training progress, current error)
    - Encoded learner state as binary blobs
    """

    def __init__(self, db_path: str = f'models/{DB_FILENAME}'):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        """Create the database directory if it doesn't exist."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS learners (
                    learner_id TEXT PRIMARY KEY,
                    architecture TEXT NOT NULL,
                    learner_data BLOB NOT NULL,
                    seed INTEGER NOT NULL,
                    current_layer INTEGER NOT NULL,
                    training_complete INTEGER NOT NULL DEFAULT 0,
                    current_error REAL,
                    iterations INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_training_complete
                ON learners(training_complete)
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON learners(created_at DESC)
            ''')

    def save_learner_to_db(
        self,
        learner: Learner,
        learner_id: str,
        seed: int
    ) -> bool:
        """
        Save a learner to the database, replacing any with the same id.

        The original creation time is kept when a learner is replaced.

        Args:
            learner: Learner to save
            learner_id: Unique identifier for the learner
            seed: Random seed the learner was created with

        Returns:
            bool: True if successful

        Raises:
            ValueError: If the seed is negative
        """
        if seed < 0:
            raise ValueError(f"Seed must be non-negative, got {seed}")

        learner_data = codec.dumps_learner(learner)
        architecture_json = json.dumps(learner.network.sizes)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO learners
                (learner_id, architecture, learner_data, seed, current_layer,
                 training_complete, current_error, iterations, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(learner_id) DO UPDATE SET
                    architecture = excluded.architecture,
                    learner_data = excluded.learner_data,
                    seed = excluded.seed,
                    current_layer = excluded.current_layer,
                    training_complete = excluded.training_complete,
                    current_error = excluded.current_error,
                    iterations = excluded.iterations,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                learner_id,
                architecture_json,
                learner_data,
                seed,
                learner.current_layer,
                1 if learner.training_complete else 0,
                learner.current_error,
                learner.iteration_count
            ))

        logger.info(
            f"Saved learner '{learner_id}' with architecture "
            f"{learner.network.sizes}, layer={learner.current_layer}, "
            f"complete={learner.training_complete}"
        )
        return True

    def load_learner_from_db(self, learner_id: str) -> Optional[Learner]:
        """
        Load a learner from the database.

        Args:
            learner_id: Unique identifier of the learner

        Returns:
            Learner or None if not found or not decodable
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT learner_data, seed FROM learners WHERE learner_id = ?',
                (learner_id,)
            )
            row = cursor.fetchone()

            if row is None:
                logger.warning(f"Learner '{learner_id}' not found")
                return None

        learner = codec.loads_learner(row['learner_data'], row['seed'])
        if learner is not None:
            logger.info(f"Loaded learner '{learner_id}'")
        return learner

    def _metadata_from_row(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            'learner_id': row['learner_id'],
            'architecture': json.loads(row['architecture']),
            'seed': row['seed'],
            'current_layer': row['current_layer'],
            'training_complete': bool(row['training_complete']),
            'current_error': row['current_error'],
            'iterations': row['iterations'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def list_learners_from_db(self) -> List[Dict[str, Any]]:
        """
        List all learners with metadata, newest first.

        Returns:
            List of learner metadata dictionaries
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    learner_id, architecture, seed, current_layer,
                    training_complete, current_error, iterations,
                    created_at, updated_at
                FROM learners
                ORDER BY created_at DESC
            ''')
            learners = [self._metadata_from_row(row) for row in cursor.fetchall()]

        logger.debug(f"Listed {len(learners)} learners")
        return learners

    def delete_learner_from_db(self, learner_id: str) -> bool:
        """
        Delete a learner from the database.

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM learners WHERE learner_id = ?',
                (learner_id,)
            )

            deleted = cursor.rowcount > 0
            if deleted:
                logger.info(f"Deleted learner '{learner_id}'")
            else:
                logger.warning(
                    f"Could not delete learner '{learner_id}': not found"
                )
            return deleted

    def delete_old_learners_from_db(self, days: int) -> int:
        """
        Delete learners created more than ``days`` days ago.

        Returns:
            int: Number of learners deleted

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                DELETE FROM learners
                WHERE julianday('now') - julianday(created_at) > ?
            ''', (days,))
            deleted = cursor.rowcount

        logger.info(f"Deleted {deleted} learner(s) older than {days} day(s)")
        return deleted

    def get_learner_metadata_from_db(
        self,
        learner_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get learner metadata without decoding the learner.

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    learner_id, architecture, seed, current_layer,
                    training_complete, current_error, iterations,
                    created_at, updated_at
                FROM learners
                WHERE learner_id = ?
            ''', (learner_id,))

            row = cursor.fetchone()
            if row is None:
                logger.warning(
                    f"Metadata for learner '{learner_id}' not found"
                )
                return None

            return self._metadata_from_row(row)


# Global database instance
_db = None


def _get_db(model_dir: Optional[str] = None) -> ModelDatabase:
    """
    Get the database for a directory.

    The configured default directory shares one global instance; any other
    directory gets a fresh one.
    """
    global _db
    if model_dir is None or model_dir == settings.MODEL_DIR:
        if _db is None:
            _db = ModelDatabase(db_path=os.path.join(settings.MODEL_DIR, DB_FILENAME))
        return _db
    return ModelDatabase(db_path=os.path.join(model_dir, DB_FILENAME))


def _valid_id(learner_id: str) -> bool:
    if not learner_id or not isinstance(learner_id, str):
        logger.error("Invalid learner_id: must be a non-empty string")
        return False
    return True


def save_learner(
    learner: Learner,
    learner_id: str,
    seed: int,
    model_dir: Optional[str] = None
) -> bool:
    """
    Save a learner to the SQLite catalogue.

    Args:
        learner: The learner to save
        learner_id: A unique identifier for the learner
        seed: The random seed the learner was created with
        model_dir: Directory for the database file

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> learner = Learner(4, 3, 2, 1, [0.1, 0.1, 0.1], seed=7)
        >>> save_learner(learner, "my_learner", seed=7)
        True
    """
    if not _valid_id(learner_id):
        return False

    try:
        return _get_db(model_dir).save_learner_to_db(learner, learner_id, seed)

    except ValueError as e:
        logger.error(f"Validation error saving learner '{learner_id}': {e}")
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving learner '{learner_id}': {e}")
        return False


def load_learner(
    learner_id: str,
    model_dir: Optional[str] = None
) -> Optional[Learner]:
    """
    Load a learner from the SQLite catalogue.

    Returns:
        The loaded learner or None if not found

    Example:
        >>> learner = load_learner("my_learner")
        >>> if learner:
        ...     print(f"Learner is at layer {learner.current_layer}")
    """
    if not _valid_id(learner_id):
        return None

    try:
        return _get_db(model_dir).load_learner_from_db(learner_id)

    except sqlite3.Error as e:
        logger.error(f"Database error loading learner '{learner_id}': {e}")
        return None


def list_saved_learners(
    model_dir: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    List all saved learners with their metadata.

    Returns:
        list: A list of metadata dictionaries for each saved learner
    """
    try:
        return _get_db(model_dir).list_learners_from_db()

    except sqlite3.Error as e:
        logger.error(f"Database error listing learners: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing learners: {e}")
        return []


def delete_learner(learner_id: str, model_dir: Optional[str] = None) -> bool:
    """
    Delete a saved learner from the catalogue.

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not _valid_id(learner_id):
        return False

    try:
        return _get_db(model_dir).delete_learner_from_db(learner_id)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting learner '{learner_id}': {e}")
        return False


def delete_old_learners(days: int = 2, model_dir: Optional[str] = None) -> int:
    """
    Delete learners older than the given number of days.

    Args:
        days: Age threshold in days
        model_dir: Directory where the database is stored

    Returns:
        int: Number of learners deleted, or -1 on a database error

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        return _get_db(model_dir).delete_old_learners_from_db(days)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting old learners: {e}")
        return -1


def get_learner_metadata(
    learner_id: str,
    model_dir: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a specific learner without decoding it.

    Returns:
        dict: Learner metadata or None if not found
    """
    if not _valid_id(learner_id):
        return None

    try:
        return _get_db(model_dir).get_learner_metadata_from_db(learner_id)

    except sqlite3.Error as e:
        logger.error(
            f"Database error getting metadata for '{learner_id}': {e}"
        )
        return None
    except json.JSONDecodeError as e:
        logger.error(
            f"JSON decode error getting metadata for '{learner_id}': {e}"
        )
        return None
