"""
Database utilities for the Product Authority pipeline
Connection pooling, query helpers and schema bootstrap
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List
from contextlib import contextmanager
from urllib.parse import quote_plus
import pandas as pd
import psycopg2
from psycopg2 import pool, extras
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

DEFAULT_DB_CONFIG_PATH = 'config/db_config.yml'


class DatabaseConfig:
    """Database configuration loader"""

    # Environment variables that override single keys of the YAML file
    ENV_OVERRIDES = {
        'host': 'AUTHORITY_DB_HOST',
        'port': 'AUTHORITY_DB_PORT',
        'database': 'AUTHORITY_DB_NAME',
        'user': 'AUTHORITY_DB_USER',
        'password': 'AUTHORITY_DB_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path or os.environ.get('DB_CONFIG_PATH', DEFAULT_DB_CONFIG_PATH))
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load database configuration from YAML, then apply env overrides"""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            config = yaml.safe_load(f) or {}

        database = dict(config.get('database') or {})
        for key, env_var in self.ENV_OVERRIDES.items():
            if os.environ.get(env_var):
                database[key] = os.environ[env_var]

        missing = [k for k in ('host', 'port', 'database', 'user') if k not in database]
        if missing:
            raise ValueError(f"Database config is missing keys: {', '.join(missing)}")
        return database

    def get_connection_string(self) -> str:
        """Build PostgreSQL connection string"""
        user = quote_plus(str(self.config['user']))
        password = quote_plus(str(self.config.get('password', '')))
        host = self.config['host']
        port = self.config['port']
        database = self.config['database']
        return f"postgresql://{user}:{password}@{host}:{port}/{database}"

    def get_psycopg2_params(self) -> Dict[str, Any]:
        """Get parameters for psycopg2 connection"""
        return {
            'host': self.config['host'],
            'port': self.config['port'],
            'database': self.config['database'],
            'user': self.config['user'],
            'password': self.config.get('password', '')
        }


class DatabaseManager:
    """
    Manages database connections for the catalog repository.

    psycopg2 serves the transactional catalog writes; the SQLAlchemy engine
    serves health checks and pandas reads of the import history.
    """

    def __init__(self, config_path: Optional[str] = None, max_connections: int = 10):
        self.config = DatabaseConfig(config_path)
        self.max_connections = max_connections
        self._engine: Optional[Engine] = None
        self._connection_pool: Optional[pool.ThreadedConnectionPool] = None

    def get_engine(self) -> Engine:
        """Get SQLAlchemy engine (lazy initialization)"""
        if self._engine is None:
            self._engine = create_engine(
                self.config.get_connection_string(),
                pool_pre_ping=True,
                pool_size=2,
                max_overflow=3,
                echo=False
            )
            logger.info("SQLAlchemy engine initialized")
        return self._engine

    def get_connection_pool(self) -> pool.ThreadedConnectionPool:
        """Get psycopg2 connection pool; threaded because API workers share it"""
        if self._connection_pool is None:
            self._connection_pool = pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=self.max_connections,
                **self.config.get_psycopg2_params()
            )
            logger.info("psycopg2 connection pool initialized")
        return self._connection_pool

    @contextmanager
    def get_connection(self):
        """Pooled connection; commits on clean exit, rolls back on exception"""
        conn_pool = self.get_connection_pool()
        conn = conn_pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            conn_pool.putconn(conn)

    @contextmanager
    def get_cursor(self, cursor_factory=extras.RealDictCursor):
        """Context manager for a dict cursor on a pooled connection"""
        with self.get_connection() as conn:
            cursor = conn.cursor(cursor_factory=cursor_factory)
            try:
                yield cursor
            finally:
                cursor.close()

    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute SELECT query and return rows as dicts"""
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def read_dataframe(self, query: str, params: Optional[Dict[str, Any]] = None) -> pd.DataFrame:
        """Run a read-only query through SQLAlchemy into a DataFrame"""
        with self.get_engine().connect() as conn:
            return pd.read_sql(text(query), conn, params=params or {})

    def check_health(self) -> bool:
        """True when a trivial round trip succeeds"""
        try:
            with self.get_engine().connect() as conn:
                return conn.execute(text("SELECT 1")).scalar() == 1
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def table_exists(self, table_name: str) -> bool:
        """Check if table exists"""
        rows = self.execute_query(
            """
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_name = %s
            ) AS present
            """,
            (table_name,)
        )
        return bool(rows and rows[0]['present'])

    def close(self):
        """Close all connections"""
        if self._connection_pool:
            self._connection_pool.closeall()
            self._connection_pool = None
            logger.info("Connection pool closed")
        if self._engine:
            self._engine.dispose()
            self._engine = None
            logger.info("SQLAlchemy engine disposed")


def create_database_if_not_exists(config_path: str, db_name: Optional[str] = None) -> None:
    """
    Create the target database if it doesn't exist.
    Connects to the 'postgres' maintenance database to do so.
    """
    config = DatabaseConfig(config_path)
    params = config.get_psycopg2_params()
    db_name = db_name or params['database']
    params['database'] = 'postgres'

    conn = psycopg2.connect(**params)
    try:
        conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
        with conn.cursor() as cursor:
            cursor.execute("SELECT 1 FROM pg_database WHERE datname = %s;", (db_name,))
            if cursor.fetchone():
                logger.info(f"Database '{db_name}' already exists")
            else:
                cursor.execute(f'CREATE DATABASE "{db_name}";')
                logger.info(f"Database '{db_name}' created successfully")
    except Exception as e:
        logger.error(f"Error creating database: {e}")
        raise
    finally:
        conn.close()


def apply_schema(config_path: str, schema_file: str) -> None:
    """
    Apply database schema from SQL file

    Args:
        config_path: Path to database config YAML
        schema_file: Path to SQL schema file
    """
    schema_path = Path(schema_file)
    if not schema_path.exists():
        raise FileNotFoundError(f"Schema file not found: {schema_file}")

    with open(schema_path, 'r', encoding='utf-8') as f:
        schema_sql = f.read()

    params = DatabaseConfig(config_path).get_psycopg2_params()
    conn = psycopg2.connect(**params)
    conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)

    try:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
        logger.info(f"Schema applied from {schema_file}")
    except (psycopg2.errors.DuplicateTable, psycopg2.errors.DuplicateObject) as e:
        # Re-running against an initialised database
        logger.warning(f"Schema objects already exist: {e}")
    except Exception as e:
        logger.error(f"Error applying schema: {e}")
        raise
    finally:
        conn.close()
