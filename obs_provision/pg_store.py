"""
PostgreSQL backend for the resource store.
"""

import json
from contextlib import contextmanager
from typing import List

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from obs_provision.errors import ConfigError
from obs_provision.store import ResourceRecord, ResourceStore

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS resource_versions (
        kind TEXT NOT NULL,
        instance_key TEXT NOT NULL,
        version INTEGER NOT NULL,
        timestamp TEXT NOT NULL,
        lifetime TEXT NOT NULL,
        garbage_collection INTEGER NOT NULL,
        payload JSONB NOT NULL,
        PRIMARY KEY (kind, instance_key, version)
    )
"""


class PostgreSQLResourceStore(ResourceStore):
    """Stores resource versions in the resource_versions table with connection pooling"""

    def __init__(self, database_url: str, min_connections: int = 1, max_connections: int = 5):
        """
        Raises:
            ConfigError: the database cannot be reached or the table cannot be created
        """
        super().__init__()
        try:
            self.pool = ThreadedConnectionPool(
                min_connections,
                max_connections,
                database_url
            )
        except psycopg2.Error as e:
            raise ConfigError(f"Cannot connect to the store database: {e}")
        try:
            self.create_schema()
        except psycopg2.Error as e:
            self.pool.closeall()
            raise ConfigError(f"Cannot create the resource_versions table: {e}")

    @contextmanager
    def get_connection(self):
        """Get a connection from the pool"""
        conn = self.pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.pool.putconn(conn)

    def create_schema(self) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)

    def versions(self, kind, instance_key) -> List[ResourceRecord]:
        sql = """
            SELECT kind, instance_key, version, timestamp, lifetime, garbage_collection, payload
            FROM resource_versions
            WHERE kind = %s AND instance_key = %s
            ORDER BY version DESC
        """

        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, (kind, instance_key))
                rows = cur.fetchall()

        return [
            ResourceRecord(
                kind=row['kind'],
                instance_key=row['instance_key'],
                version=row['version'],
                timestamp=row['timestamp'],
                lifetime=row['lifetime'],
                garbage_collection=row['garbage_collection'],
                payload=row['payload'],
            )
            for row in rows
        ]

    def _append(self, spec, instance_key, payload, timestamp):
        sql = """
            INSERT INTO resource_versions (
                kind, instance_key, version, timestamp, lifetime, garbage_collection, payload
            )
            SELECT %s, %s, COALESCE(MAX(version), 0) + 1, %s, %s, %s, %s
            FROM resource_versions
            WHERE kind = %s AND instance_key = %s
            RETURNING version
        """

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (
                    spec.kind, instance_key, timestamp, spec.lifetime,
                    spec.garbage_collection, json.dumps(payload),
                    spec.kind, instance_key,
                ))
                [version] = cur.fetchone()

        return ResourceRecord(
            spec.kind, instance_key, version, timestamp,
            spec.lifetime, spec.garbage_collection, payload)

    def _delete(self, kind, instance_key, versions):
        sql = """
            DELETE FROM resource_versions
            WHERE kind = %s AND instance_key = %s AND version = ANY(%s)
        """

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (kind, instance_key, list(versions)))

    def close(self):
        """Close all connections in the pool"""
        self.pool.closeall()
