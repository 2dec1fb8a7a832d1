"""
Store session boundary for the loader, plus its Neo4j implementation.

Each loader worker owns exactly one StoreSession; sessions are never shared
between threads. A batch is submitted inside one explicit transaction and
either committed or rolled back as a whole.

Error taxonomy:
- TransientStoreError: conflict/timeout, the batch may be re-submitted
- StoreError: anything else, fatal for the run
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from neo4j import Driver
from neo4j.exceptions import (
    DriverError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)

from ..shared.observability import get_logger
from .schema import (
    MULTI_VALUED_FIELDS,
    UID_PROPERTY,
    CompositeId,
    entity_by_id_space,
    escape_identifier,
)

logger = get_logger(__name__)

PropertyEntries = Sequence[Tuple[str, str]]
NodeHandle = Any


class StoreError(RuntimeError):
    """Non-retryable store failure."""


class TransientStoreError(StoreError):
    """Conflict or timeout reported by the store; the transaction may be retried."""


def fold_properties(entries: PropertyEntries) -> Dict[str, Any]:
    """
    Collapse (key, value) entries into a property map.

    Multi-valued columns become lists in entry order; any other repeated key
    keeps its last value.
    """
    props: Dict[str, Any] = {}
    for key, value in entries:
        if key in MULTI_VALUED_FIELDS:
            props.setdefault(key, []).append(value)
        else:
            props[key] = value
    return props


def group_values(entries: PropertyEntries) -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for key, value in entries:
        grouped.setdefault(key, []).append(value)
    return grouped


class StoreSession(ABC):
    """Transactional mutation interface consumed by the batch committer."""

    @abstractmethod
    def begin_transaction(self) -> None: ...

    @abstractmethod
    def lookup_node(self, uid: CompositeId) -> Optional[NodeHandle]:
        """Return a handle for an existing node, or None if it does not exist."""

    @abstractmethod
    def create_node(
        self, uid: CompositeId, label: str, properties: PropertyEntries
    ) -> None: ...

    @abstractmethod
    def append_properties(
        self, node: NodeHandle, properties: PropertyEntries
    ) -> None: ...

    @abstractmethod
    def create_edge(
        self,
        tail: NodeHandle,
        head: NodeHandle,
        label: str,
        properties: PropertyEntries,
    ) -> None: ...

    @abstractmethod
    def commit(self) -> None:
        """Commit the open transaction; TransientStoreError on conflict/timeout."""

    @abstractmethod
    def rollback(self) -> None: ...

    def close(self) -> None:
        pass


def translate_neo4j_error(exc: Exception) -> StoreError:
    """Map a driver exception onto the loader's retryable/fatal split."""
    if isinstance(exc, (TransientError, ServiceUnavailable, SessionExpired)):
        return TransientStoreError(f"{type(exc).__name__}: {exc}")
    return StoreError(f"{type(exc).__name__}: {exc}")


class Neo4jStoreSession(StoreSession):
    """StoreSession backed by one neo4j driver session and explicit transactions."""

    def __init__(self, driver: Driver, database: Optional[str] = None):
        if database:
            self._session = driver.session(database=database)
        else:
            self._session = driver.session()
        self._tx = None

    def begin_transaction(self) -> None:
        if self._tx is not None:
            self.rollback()
        try:
            self._tx = self._session.begin_transaction()
        except (Neo4jError, DriverError) as e:
            raise translate_neo4j_error(e) from e

    def _run(self, query: str, **params):
        if self._tx is None:
            raise StoreError("No open transaction")
        try:
            return self._tx.run(query, **params)
        except (Neo4jError, DriverError) as e:
            raise translate_neo4j_error(e) from e

    def _execute(self, query: str, **params) -> None:
        result = self._run(query, **params)
        try:
            result.consume()
        except (Neo4jError, DriverError) as e:
            raise translate_neo4j_error(e) from e

    def lookup_node(self, uid: CompositeId) -> Optional[NodeHandle]:
        label = escape_identifier(entity_by_id_space(uid.id_space).label)
        query = (
            f"MATCH (n:{label} {{{UID_PROPERTY}: $uid}}) "
            "RETURN elementId(n) AS handle LIMIT 1"
        )
        result = self._run(query, uid=str(uid))
        try:
            record = result.single()
        except (Neo4jError, DriverError) as e:
            raise translate_neo4j_error(e) from e
        return record["handle"] if record else None

    def create_node(
        self, uid: CompositeId, label: str, properties: PropertyEntries
    ) -> None:
        query = (
            f"CREATE (n:{escape_identifier(label)} {{{UID_PROPERTY}: $uid}}) "
            "SET n += $props"
        )
        self._execute(query, uid=str(uid), props=fold_properties(properties))

    def append_properties(
        self, node: NodeHandle, properties: PropertyEntries
    ) -> None:
        for key, values in group_values(properties).items():
            prop = f"n.{escape_identifier(key)}"
            query = (
                "MATCH (n) WHERE elementId(n) = $handle "
                f"SET {prop} = coalesce({prop}, []) + $values"
            )
            self._execute(query, handle=node, values=values)

    def create_edge(
        self,
        tail: NodeHandle,
        head: NodeHandle,
        label: str,
        properties: PropertyEntries,
    ) -> None:
        query = (
            "MATCH (t) WHERE elementId(t) = $tail "
            "MATCH (h) WHERE elementId(h) = $head "
            f"CREATE (t)-[r:{escape_identifier(label)}]->(h) "
            "SET r += $props"
        )
        self._execute(query, tail=tail, head=head, props=fold_properties(properties))

    def commit(self) -> None:
        tx, self._tx = self._tx, None
        if tx is None:
            raise StoreError("No open transaction")
        try:
            tx.commit()
        except (Neo4jError, DriverError) as e:
            raise translate_neo4j_error(e) from e
        finally:
            tx.close()

    def rollback(self) -> None:
        tx, self._tx = self._tx, None
        if tx is None:
            return
        try:
            tx.rollback()
        except (Neo4jError, DriverError) as e:
            # The transaction is already dead on the server side.
            logger.debug("neo4j_rollback_failed", error=str(e))
        finally:
            tx.close()

    def close(self) -> None:
        self.rollback()
        self._session.close()


def create_constraints(
    driver: Driver, statements: List[str], database: Optional[str] = None
) -> int:
    """Apply schema statements (idempotent); returns how many were run."""
    kwargs = {"database": database} if database else {}
    with driver.session(**kwargs) as session:
        for statement in statements:
            session.run(statement).consume()
            logger.debug("schema_statement_applied", statement=statement[:80])
    logger.info("schema_constraints_applied", count=len(statements))
    return len(statements)
