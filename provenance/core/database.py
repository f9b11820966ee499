import asyncio
import psycopg2
import psycopg2.errors
import structlog
from typing import Any, Dict, List, Optional
from psycopg2 import extras
from psycopg2.pool import SimpleConnectionPool
from contextlib import contextmanager

from provenance import config
from provenance.core.errors import NotOwner, NotRegistered, RegistryConflict
from provenance.core.registry import InMemoryRegistry, Registry, lookup_from_entries
from provenance.core.signer import same_identity
from provenance.core.utils import new_tx_id
from provenance.models.registry import Binding, Receipt, RegistryEntry, RegistryLookup

logger = structlog.get_logger()

# Connection pool configuration
MIN_CONNECTIONS = 1
MAX_CONNECTIONS = 20

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS registry_entries (
    network          TEXT        NOT NULL,
    fingerprint      TEXT        NOT NULL,
    claimant         TEXT        NOT NULL,
    manifest_locator TEXT        NOT NULL,
    anchored_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    confirmed        BOOLEAN     NOT NULL DEFAULT TRUE,
    tx_id            TEXT        NOT NULL,
    PRIMARY KEY (network, fingerprint)
);

CREATE TABLE IF NOT EXISTS platform_bindings (
    network     TEXT        NOT NULL,
    platform    TEXT        NOT NULL,
    locator     TEXT        NOT NULL,
    fingerprint TEXT        NOT NULL,
    claimant    TEXT        NOT NULL,
    bound_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    tx_id       TEXT        NOT NULL,
    PRIMARY KEY (network, platform, locator),
    FOREIGN KEY (network, fingerprint) REFERENCES registry_entries (network, fingerprint)
);

CREATE INDEX IF NOT EXISTS idx_platform_bindings_fingerprint
    ON platform_bindings (network, fingerprint);
"""

ENTRY_COLUMNS = "fingerprint, claimant, manifest_locator, network, anchored_at, confirmed, tx_id"
BINDING_COLUMNS = "fingerprint, platform, locator, claimant, network, bound_at"


class PostgresRegistry(Registry):
    """
    Ledger backed by PostgreSQL.

    Uniqueness is enforced by primary keys, so a racing second writer gets a
    UniqueViolation which is surfaced as RegistryConflict. Blocking psycopg2
    calls run in worker threads.
    """

    backend = "postgres"

    def __init__(self, dsn: Optional[str] = None, pool: Optional[SimpleConnectionPool] = None):
        self.dsn = dsn or config.REGISTRY_DB_DSN
        self._pool = pool

    def _get_pool(self) -> SimpleConnectionPool:
        if self._pool is None:
            self._pool = SimpleConnectionPool(MIN_CONNECTIONS, MAX_CONNECTIONS, self.dsn)
            logger.info("Registry connection pool initialized",
                        min_connections=MIN_CONNECTIONS, max_connections=MAX_CONNECTIONS)
        return self._pool

    @contextmanager
    def get_db_connection(self):
        """Context manager for pooled connections; rolls back on error."""
        pool = self._get_pool()
        conn = pool.getconn()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)

    def ensure_schema(self) -> None:
        with self.get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
                conn.commit()
        logger.info("Registry schema ensured")

    # Entries

    def _select_entries(self, fingerprint: str, network: str) -> List[RegistryEntry]:
        sql = f"SELECT {ENTRY_COLUMNS} FROM registry_entries WHERE network = %s AND fingerprint = %s"
        with self.get_db_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, (network, fingerprint))
                rows = cur.fetchall()
        return [RegistryEntry(**dict(row)) for row in rows]

    def _insert_entry(self, fingerprint: str, manifest_locator: str, claimant: str,
                      network: str) -> Receipt:
        receipt = Receipt(tx_id=new_tx_id(), network=network)
        sql = """
        INSERT INTO registry_entries (network, fingerprint, claimant, manifest_locator, anchored_at, tx_id)
        VALUES (%s, %s, %s, %s, %s, %s)
        """
        try:
            with self.get_db_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(sql, (network, fingerprint, claimant, manifest_locator,
                                      receipt.recorded_at, receipt.tx_id))
                    conn.commit()
        except psycopg2.errors.UniqueViolation:
            existing = self._select_entries(fingerprint, network)
            existing_claimant = existing[0].claimant if existing else None
            logger.warning("Registry write conflict", network=network, fingerprint=fingerprint,
                           claimant=claimant, existing_claimant=existing_claimant)
            raise RegistryConflict(
                f"Fingerprint {fingerprint} is already registered on {network}",
                network=network,
                fingerprint=fingerprint,
                existing_claimant=existing_claimant,
                attempted_claimant=claimant,
                existing=[e.model_dump(mode="json") for e in existing],
            )

        logger.info("Registry entry anchored", network=network, fingerprint=fingerprint,
                    claimant=claimant, tx_id=receipt.tx_id)
        return receipt

    async def read(self, fingerprint: str, network: str) -> RegistryLookup:
        entries = await asyncio.to_thread(self._select_entries, fingerprint, network)
        return lookup_from_entries(fingerprint, network, entries)

    async def write(self, fingerprint: str, manifest_locator: str, claimant: str,
                    network: str) -> Receipt:
        return await asyncio.to_thread(self._insert_entry, fingerprint, manifest_locator,
                                       claimant, network)

    # Bindings

    def _select_bindings(self, where: str, params: tuple) -> List[Binding]:
        sql = f"SELECT {BINDING_COLUMNS} FROM platform_bindings WHERE {where}"
        with self.get_db_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
        return [Binding(**dict(row)) for row in rows]

    def _check_owner(self, cur, fingerprint: str, claimant: str, network: str) -> None:
        cur.execute(
            "SELECT claimant, confirmed FROM registry_entries "
            "WHERE network = %s AND fingerprint = %s FOR SHARE",
            (network, fingerprint),
        )
        row = cur.fetchone()
        if row is None or not row[1]:
            raise NotRegistered(f"No anchored entry for {fingerprint} on {network}",
                                fingerprint=fingerprint, network=network)
        if not same_identity(row[0], claimant):
            raise NotOwner(fingerprint, claimant, row[0])

    def _insert_binding(self, fingerprint: str, platform: str, locator: str,
                        claimant: str, network: str) -> Receipt:
        receipt = Receipt(tx_id=new_tx_id(), network=network)
        try:
            with self.get_db_connection() as conn:
                with conn.cursor() as cur:
                    self._check_owner(cur, fingerprint, claimant, network)
                    cur.execute(
                        """
                        INSERT INTO platform_bindings
                            (network, platform, locator, fingerprint, claimant, bound_at, tx_id)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        """,
                        (network, platform, locator, fingerprint, claimant,
                         receipt.recorded_at, receipt.tx_id),
                    )
                    conn.commit()
        except psycopg2.errors.UniqueViolation:
            existing = self._select_bindings(
                "network = %s AND platform = %s AND locator = %s", (network, platform, locator)
            )
            bound_to = existing[0] if existing else None
            raise RegistryConflict(
                f"{platform}:{locator} is already bound on {network}",
                network=network,
                fingerprint=bound_to.fingerprint if bound_to else fingerprint,
                existing_claimant=bound_to.claimant if bound_to else None,
                attempted_claimant=claimant,
                existing=[b.model_dump(mode="json") for b in existing],
            )

        logger.info("Platform binding recorded", network=network, fingerprint=fingerprint,
                    platform=platform, locator=locator, tx_id=receipt.tx_id)
        return receipt

    def _delete_binding(self, fingerprint: str, platform: str, locator: str,
                        claimant: str, network: str) -> Receipt:
        with self.get_db_connection() as conn:
            with conn.cursor() as cur:
                self._check_owner(cur, fingerprint, claimant, network)
                cur.execute(
                    "DELETE FROM platform_bindings "
                    "WHERE network = %s AND platform = %s AND locator = %s AND fingerprint = %s",
                    (network, platform, locator, fingerprint),
                )
                deleted = cur.rowcount
                conn.commit()
        if not deleted:
            raise NotRegistered(f"No binding {platform}:{locator} for {fingerprint} on {network}",
                                fingerprint=fingerprint, platform=platform, locator=locator,
                                network=network)
        receipt = Receipt(tx_id=new_tx_id(), network=network)
        logger.info("Platform binding removed", network=network, fingerprint=fingerprint,
                    platform=platform, locator=locator, tx_id=receipt.tx_id)
        return receipt

    async def read_bindings(self, fingerprint: str, network: str) -> List[Binding]:
        return await asyncio.to_thread(
            self._select_bindings, "network = %s AND fingerprint = %s", (network, fingerprint)
        )

    async def resolve_binding(self, platform: str, locator: str,
                              network: str) -> Optional[Binding]:
        found = await asyncio.to_thread(
            self._select_bindings, "network = %s AND platform = %s AND locator = %s",
            (network, platform, locator)
        )
        return found[0] if found else None

    async def write_binding(self, fingerprint: str, platform: str, locator: str,
                            claimant: str, network: str) -> Receipt:
        return await asyncio.to_thread(self._insert_binding, fingerprint, platform, locator,
                                       claimant, network)

    async def remove_binding(self, fingerprint: str, platform: str, locator: str,
                             claimant: str, network: str) -> Receipt:
        return await asyncio.to_thread(self._delete_binding, fingerprint, platform, locator,
                                       claimant, network)

    def health_check(self) -> Dict[str, Any]:
        health = {"backend": self.backend, "available": False, "error": None}
        try:
            with self.get_db_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    health["available"] = cur.fetchone()[0] == 1
        except psycopg2.Error as e:
            health["error"] = str(e)
        return health


def create_registry(backend: Optional[str] = None) -> Registry:
    """Build the registry selected by configuration."""
    backend = backend or config.REGISTRY_BACKEND
    if backend == "memory":
        return InMemoryRegistry()
    if backend == "postgres":
        return PostgresRegistry()
    raise ValueError(f"Unknown registry backend: {backend}")
