"""Interface repository backed by the control-plane MySQL database.

The agent only reads the desired interfaces for its node and writes back the
per-interface ``netplan_success`` flag. Queries use SQLAlchemy Core with
textual SQL against the control plane's tables:

- ``multi_interface``: one row per port, attached to a node and a subnet
- ``node_table``: nodes known to the control plane
- ``multi_subnet``: subnets with their CIDR and network id
"""

from __future__ import annotations

import logging
import re
import time

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError

from multinic_agent.config import DatabaseSettings
from multinic_agent.context import AgentContext
from multinic_agent.errors import RepositoryError
from multinic_agent.models import InterfaceRecord

FETCH_INTERFACES_SQL = text(
    """
    SELECT
        mi.port_id AS port_id,
        mi.macaddress AS mac_address,
        ms.subnet_name AS subnet_name,
        ms.cidr AS cidr,
        ms.network_id AS network_id,
        mi.netplan_success AS netplan_success
    FROM multi_interface mi
    JOIN node_table nt ON nt.attached_node_name = mi.attached_node_name
    JOIN multi_subnet ms ON ms.subnet_id = mi.subnet_id
    WHERE mi.attached_node_name = :node_name
      AND mi.status = 'active'
      AND nt.status = 'active'
      AND ms.status = 'active'
      AND mi.deleted_at IS NULL
    ORDER BY ms.subnet_name, mi.port_id
    """
)

UPDATE_STATUS_SQL = text(
    """
    UPDATE multi_interface
    SET netplan_success = :success,
        modified_at = CURRENT_TIMESTAMP
    WHERE port_id = :port_id
    """
)


_UTC_NAMES = ("UTC", "GMT", "Z")
_OFFSET_PATTERN = re.compile(r"^[+-](0\d|1[0-4]):[0-5]\d$")


def _time_zone(loc: str) -> str | None:
    """MySQL session time zone for a configured location.

    Only UTC and fixed ``+HH:MM`` offsets are mapped; named zones such as
    ``Local`` or ``Asia/Seoul`` need server time-zone tables and give None.
    """
    value = loc.strip()
    if value.upper() in _UTC_NAMES:
        return "+00:00"
    if _OFFSET_PATTERN.match(value):
        return value
    return None


def build_database_url(settings: DatabaseSettings) -> URL:
    return URL.create(
        "mysql+pymysql",
        username=settings.username or None,
        password=settings.password or None,
        host=settings.host,
        port=settings.port,
        database=settings.database,
        query={"charset": settings.charset},
    )


def create_database_engine(settings: DatabaseSettings, logger: logging.Logger | None = None) -> Engine:
    """Create the pooled engine shared by the repository."""
    logger = logger or logging.getLogger(__name__)
    connect_args = {}
    time_zone = _time_zone(settings.loc)
    if time_zone is not None:
        connect_args["init_command"] = f"SET time_zone = '{time_zone}'"
    elif settings.loc.strip():
        logger.warning(f"Ignoring database location {settings.loc!r}; using the server time zone")

    return create_engine(
        build_database_url(settings),
        pool_pre_ping=True,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_recycle=settings.pool_recycle,
        connect_args=connect_args,
    )


class InterfaceRepository:
    """Fetch desired interfaces and report apply status."""

    def __init__(self, context: AgentContext, engine: Engine):
        self._engine = engine
        self._logger = context.get_logger("db")

    @classmethod
    def from_settings(cls, context: AgentContext) -> "InterfaceRepository":
        logger = context.get_logger("db")
        return cls(context, create_database_engine(context.settings.database, logger))

    def ping(self) -> None:
        """Raise RepositoryError if the database is unreachable."""
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise RepositoryError(f"Database ping failed: {e}") from e

    def wait_until_ready(self, attempts: int, interval: float) -> None:
        """Ping the database up to ``attempts`` times, ``interval`` seconds apart.

        Raises:
            RepositoryError: If the last attempt still fails
        """
        for attempt in range(1, attempts + 1):
            try:
                self.ping()
                self._logger.info("Database connection verified")
                return
            except RepositoryError as e:
                if attempt == attempts:
                    self._logger.error(f"Database not reachable after {attempts} attempts: {e}")
                    raise
                self._logger.warning(
                    f"Database not ready (attempt {attempt}/{attempts}), retrying in {interval}s..."
                )
                time.sleep(interval)

    def fetch(self, node_name: str) -> list[InterfaceRecord]:
        """Active interfaces for a node, ordered by subnet name.

        Raises:
            RepositoryError: If the query fails
        """
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(FETCH_INTERFACES_SQL, {"node_name": node_name}).mappings().all()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to query interfaces for {node_name}: {e}") from e

        records = [
            InterfaceRecord(
                port_id=str(row["port_id"]),
                mac_address=row["mac_address"] or "",
                subnet_name=row["subnet_name"] or "",
                cidr=row["cidr"] or "",
                network_id=row["network_id"] or "",
                last_applied_success=bool(row["netplan_success"]),
            )
            for row in rows
        ]
        self._logger.debug(f"Retrieved {len(records)} interfaces for {node_name}")
        return records

    def report(self, port_id: str, success: bool) -> None:
        """Record the apply outcome for one interface.

        Raises:
            RepositoryError: If the update fails
        """
        try:
            with self._engine.begin() as conn:
                conn.execute(UPDATE_STATUS_SQL, {"port_id": port_id, "success": 1 if success else 0})
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to update netplan status for {port_id}: {e}") from e

    def close(self) -> None:
        self._engine.dispose()

