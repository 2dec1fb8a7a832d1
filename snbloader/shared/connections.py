# Neo4j driver lifecycle: one driver per process, one store session per worker

from typing import Optional

from neo4j import Driver, GraphDatabase

from ..neo.session import Neo4jStoreSession
from .config import Settings
from .observability import get_logger

logger = get_logger(__name__)

DEFAULT_POOL_SIZE = 50


class ConnectionManager:
    """
    Owns the driver shared by all loader workers.

    The driver is created lazily on first use and checked with
    verify_connectivity, so a wrong URI or password fails before any worker
    thread starts.
    """

    def __init__(self, settings: Settings, pool_size: Optional[int] = None):
        self.settings = settings
        self.pool_size = pool_size or DEFAULT_POOL_SIZE
        self.sessions_opened = 0
        self._driver: Optional[Driver] = None

    def get_neo4j_driver(self) -> Driver:
        if self._driver is None:
            logger.info(
                "neo4j_driver_connecting",
                uri=self.settings.neo4j_uri,
                user=self.settings.neo4j_user,
                database=self.settings.neo4j_database,
                pool_size=self.pool_size,
            )
            driver = GraphDatabase.driver(
                self.settings.neo4j_uri,
                auth=(self.settings.neo4j_user, self.settings.neo4j_password),
                max_connection_pool_size=self.pool_size,
                connection_acquisition_timeout=60,
            )
            try:
                driver.verify_connectivity()
            except Exception:
                driver.close()
                raise
            self._driver = driver
            logger.info("neo4j_driver_ready")
        return self._driver

    def open_session(self) -> Neo4jStoreSession:
        """A fresh store session; each worker thread must get its own."""
        session = Neo4jStoreSession(
            self.get_neo4j_driver(), database=self.settings.neo4j_database
        )
        self.sessions_opened += 1
        return session

    def close(self) -> None:
        if self._driver is not None:
            logger.info("neo4j_driver_closing", sessions_opened=self.sessions_opened)
            self._driver.close()
            self._driver = None
