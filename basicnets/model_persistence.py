"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

SQLite-based persistence for trained models.
Provides reliable, performant storage with ACID transaction guarantees.
"""

import json
import logging
import os
import pickle
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

import numpy as np

from basicnets import config

# Configure module logger
logger = logging.getLogger(__name__)

DB_FILENAME = 'models.db'

# Metrics bounded to [0, 1]; error metrics only need to be non-negative
BOUNDED_METRICS = {'accuracy'}


class ModelEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles numpy arrays and scalars."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.generic):
            return obj.item()
        return super().default(obj)


def _validate_metric(metric_name: Optional[str],
                     metric_value: Optional[float]) -> None:
    if metric_value is None:
        return
    if metric_name is None:
        raise ValueError("metric_value given without metric_name")
    if metric_name in BOUNDED_METRICS and not 0.0 <= metric_value <= 1.0:
        raise ValueError(
            f"{metric_name} must be between 0.0 and 1.0, got {metric_value}"
        )
    if metric_value < 0.0:
        raise ValueError(
            f"{metric_name} must be non-negative, got {metric_value}"
        )


class ModelDatabase:
    """
    Manages SQLite database for model persistence.

    The database stores:
    - Model metadata (tutorial kind, architecture, training status, headline metric)
    - Serialized ``Sequential`` objects as binary blobs
    """

    def __init__(self, db_path: str = os.path.join(config.MODEL_DIR, DB_FILENAME)):
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
                CREATE TABLE IF NOT EXISTS models (
                    model_id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    architecture TEXT NOT NULL,
                    config TEXT NOT NULL,
                    model_data BLOB NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    metric_name TEXT,
                    metric_value REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_kind
                ON models(kind)
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON models(created_at DESC)
            ''')

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            'model_id': row['model_id'],
            'kind': row['kind'],
            'architecture': json.loads(row['architecture']),
            'config': json.loads(row['config']),
            'trained': bool(row['trained']),
            'metric_name': row['metric_name'],
            'metric_value': row['metric_value'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def save_model_to_db(
        self,
        model,
        model_id: str,
        kind: str,
        trained: bool = True,
        metric_name: Optional[str] = None,
        metric_value: Optional[float] = None
    ) -> bool:
        """
        Save a model to the database, replacing any model with the same id.

        The original ``created_at`` is kept on replace so that age-based
        cleanup counts from when the model was first stored.

        Args:
            model: ``Sequential`` model to save
            model_id: Unique identifier for the model
            kind: Tutorial the model belongs to, e.g. ``fashion_mnist``
            trained: Whether the model has been trained
            metric_name: Name of the headline test metric (``accuracy``, ``mae``)
            metric_value: Value of that metric

        Returns:
            bool: True if successful

        Raises:
            ValueError: If the metric value is out of its valid range
        """
        _validate_metric(metric_name, metric_value)

        model_data = pickle.dumps(model)
        architecture_json = json.dumps(model.sizes, cls=ModelEncoder)
        config_json = json.dumps(model.get_config(), cls=ModelEncoder)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO models
                (model_id, kind, architecture, config, model_data, trained,
                 metric_name, metric_value, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(model_id) DO UPDATE SET
                    kind = excluded.kind,
                    architecture = excluded.architecture,
                    config = excluded.config,
                    model_data = excluded.model_data,
                    trained = excluded.trained,
                    metric_name = excluded.metric_name,
                    metric_value = excluded.metric_value,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                model_id,
                kind,
                architecture_json,
                config_json,
                model_data,
                1 if trained else 0,
                metric_name,
                None if metric_value is None else float(metric_value)
            ))

        logger.info(
            f"Saved {kind} model '{model_id}' with architecture "
            f"{model.sizes}, trained={trained}, {metric_name}={metric_value}"
        )
        return True

    def load_model_from_db(self, model_id: str):
        """
        Load a model from the database.

        Args:
            model_id: Unique identifier of the model

        Returns:
            ``Sequential`` model or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT model_data FROM models WHERE model_id = ?',
                (model_id,)
            )
            row = cursor.fetchone()

            if row is None:
                logger.warning(f"Model '{model_id}' not found")
                return None

            model = pickle.loads(row['model_data'])
            logger.info(f"Loaded model '{model_id}'")
            return model

    def list_models_from_db(self, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        List stored models with metadata, newest first.

        Args:
            kind: Only list models of this tutorial kind

        Returns:
            List of model metadata dictionaries
        """
        query = '''
            SELECT model_id, kind, architecture, config, trained,
                   metric_name, metric_value, created_at, updated_at
            FROM models
        '''
        params: tuple = ()
        if kind is not None:
            query += ' WHERE kind = ?'
            params = (kind,)
        query += ' ORDER BY created_at DESC'

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)

            models = []
            for row in cursor.fetchall():
                metadata = self._row_to_metadata(row)
                architecture = metadata['architecture']

                # Weight and bias shapes follow from the layer sizes
                metadata['weights_shape'] = [
                    [architecture[i], architecture[i + 1]]
                    for i in range(len(architecture) - 1)
                ]
                metadata['biases_shape'] = [
                    [architecture[i + 1]]
                    for i in range(len(architecture) - 1)
                ]
                models.append(metadata)

            logger.debug(f"Listed {len(models)} models")
            return models

    def delete_model_from_db(self, model_id: str) -> bool:
        """
        Delete a model from the database.

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM models WHERE model_id = ?',
                (model_id,)
            )

            deleted = cursor.rowcount > 0
            if deleted:
                logger.info(f"Deleted model '{model_id}'")
            else:
                logger.warning(f"Could not delete model '{model_id}': not found")
            return deleted

    def get_model_metadata_from_db(self, model_id: str) -> Optional[Dict[str, Any]]:
        """
        Get model metadata without unpickling the model.

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT model_id, kind, architecture, config, trained,
                       metric_name, metric_value, created_at, updated_at
                FROM models
                WHERE model_id = ?
            ''', (model_id,))

            row = cursor.fetchone()
            if row is None:
                logger.warning(f"Metadata for model '{model_id}' not found")
                return None
            return self._row_to_metadata(row)

    def delete_old_models_from_db(self, days: float) -> int:
        """
        Delete models first stored more than ``days`` days ago.

        Args:
            days: Age threshold in days (0 deletes everything older than now)

        Returns:
            Number of models deleted

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                DELETE FROM models
                WHERE julianday('now') - julianday(created_at) > ?
            ''', (days,))
            deleted = cursor.rowcount

        if deleted:
            logger.info(f"Deleted {deleted} model(s) older than {days} day(s)")
        return deleted


# Global database instance
_db = None


def _get_db(model_dir: Optional[str] = None) -> ModelDatabase:
    """
    Return the database for ``model_dir``.

    The configured default directory shares one global instance; any other
    directory gets a fresh instance.
    """
    global _db
    if model_dir is None or model_dir == config.MODEL_DIR:
        if _db is None:
            _db = ModelDatabase()
        return _db
    return ModelDatabase(db_path=os.path.join(model_dir, DB_FILENAME))


def _valid_id(model_id: Any) -> bool:
    if not model_id or not isinstance(model_id, str):
        logger.error("Invalid model_id: must be a non-empty string")
        return False
    return True


def save_model(
    model,
    model_id: str,
    kind: str,
    model_dir: Optional[str] = None,
    trained: bool = True,
    metric_name: Optional[str] = None,
    metric_value: Optional[float] = None
) -> bool:
    """
    Save a model to the SQLite database.

    Args:
        model: The ``Sequential`` model to save
        model_id: A unique identifier for the model
        kind: Tutorial the model belongs to
        model_dir: Directory for the database file
        trained: Boolean indicating if the model has been trained
        metric_name: Headline test metric name
        metric_value: Headline test metric value

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> model = build_classifier()
        >>> save_model(model, "my_model", "fashion_mnist", trained=False)
        True
    """
    if not _valid_id(model_id):
        return False

    try:
        db = _get_db(model_dir)
        return db.save_model_to_db(
            model, model_id, kind, trained, metric_name, metric_value
        )

    except ValueError as e:
        logger.error(f"Validation error saving model '{model_id}': {e}")
        return False
    except (AttributeError, pickle.PicklingError) as e:
        logger.error(f"Serialization error saving model '{model_id}': {e}")
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving model '{model_id}': {e}")
        return False
    except Exception as e:
        logger.exception(f"Unexpected error saving model '{model_id}': {e}")
        return False


def load_model(model_id: str, model_dir: Optional[str] = None):
    """
    Load a model from the SQLite database.

    Returns:
        The loaded ``Sequential`` model or None if not found
    """
    if not _valid_id(model_id):
        return None

    try:
        return _get_db(model_dir).load_model_from_db(model_id)

    except pickle.UnpicklingError as e:
        logger.error(f"Deserialization error loading model '{model_id}': {e}")
        return None
    except sqlite3.Error as e:
        logger.error(f"Database error loading model '{model_id}': {e}")
        return None
    except Exception as e:
        logger.exception(f"Unexpected error loading model '{model_id}': {e}")
        return None


def list_saved_models(
    model_dir: Optional[str] = None,
    kind: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    List all saved models with their metadata.

    Example:
        >>> for info in list_saved_models():
        ...     print(f"{info['model_id']}: {info['architecture']}")
    """
    try:
        return _get_db(model_dir).list_models_from_db(kind)

    except sqlite3.Error as e:
        logger.error(f"Database error listing models: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing models: {e}")
        return []
    except Exception as e:
        logger.exception(f"Unexpected error listing models: {e}")
        return []


def delete_model(model_id: str, model_dir: Optional[str] = None) -> bool:
    """
    Delete a saved model from the database.

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not _valid_id(model_id):
        return False

    try:
        return _get_db(model_dir).delete_model_from_db(model_id)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting model '{model_id}': {e}")
        return False
    except Exception as e:
        logger.exception(f"Unexpected error deleting model '{model_id}': {e}")
        return False


def get_model_metadata(
    model_id: str,
    model_dir: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a specific model without loading the full object.

    Example:
        >>> metadata = get_model_metadata("my_model")
        >>> if metadata:
        ...     print(f"{metadata['metric_name']}: {metadata['metric_value']}")
    """
    if not _valid_id(model_id):
        return None

    try:
        return _get_db(model_dir).get_model_metadata_from_db(model_id)

    except sqlite3.Error as e:
        logger.error(f"Database error getting metadata for '{model_id}': {e}")
        return None
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error getting metadata for '{model_id}': {e}")
        return None
    except Exception as e:
        logger.exception(f"Unexpected error getting metadata for '{model_id}': {e}")
        return None


def delete_old_models(days: float = 2, model_dir: Optional[str] = None) -> int:
    """
    Delete models older than ``days`` days.

    Returns:
        Number of models deleted, or -1 if a database error occurred

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        return _get_db(model_dir).delete_old_models_from_db(days)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting old models: {e}")
        return -1
    except Exception as e:
        logger.exception(f"Unexpected error deleting old models: {e}")
        return -1
