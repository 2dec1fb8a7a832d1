"""
Line transformers: one raw ``|``-delimited line in, graph mutation requests out.

A transformer is built once per file from the work unit's catalog types and
the header's field names, then applied to every data line of that file.
Transformers hold no per-line state, so re-applying one to the same buffered
batch on a transaction retry yields identical requests.

Column value rules (by header name, regardless of file role):
- birthday: ``YYYY-MM-DD`` (UTC) -> epoch milliseconds as decimal text
- creationDate, joinDate: ``YYYY-MM-DDThh:mm:ss.sss+zzzz`` -> epoch milliseconds
- emails, speaks: ``;``-separated, one entry per non-empty element
  (node and property lines only)
- anything else: raw text
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Sequence, Tuple, Union

from ..neo.schema import (
    DATE_FIELDS,
    FIELD_DELIMITER,
    MULTI_VALUE_SEPARATOR,
    MULTI_VALUED_FIELDS,
    TIMESTAMP_FIELDS,
    CompositeId,
    EntityType,
    RelationType,
)
from .errors import MalformedLineError
from .work import LoadRole, WorkUnit

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
BIRTHDAY_FORMAT = "%Y-%m-%d"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f%z"

Properties = Tuple[Tuple[str, str], ...]


@dataclass(frozen=True)
class NodeRef:
    """A reference to an existing node, resolved by the committer at submit time."""

    uid: CompositeId
    column: str
    raw: str


@dataclass(frozen=True)
class CreateNode:
    uid: CompositeId
    label: str
    properties: Properties


@dataclass(frozen=True)
class AppendProperties:
    node: NodeRef
    properties: Properties


@dataclass(frozen=True)
class CreateEdge:
    tail: NodeRef
    head: NodeRef
    label: str
    properties: Properties


Mutation = Union[CreateNode, AppendProperties, CreateEdge]


def epoch_millis(moment: datetime) -> int:
    return (moment - EPOCH) // timedelta(milliseconds=1)


def parse_birthday(value: str) -> str:
    moment = datetime.strptime(value, BIRTHDAY_FORMAT).replace(tzinfo=timezone.utc)
    return str(epoch_millis(moment))


def parse_timestamp(value: str) -> str:
    return str(epoch_millis(datetime.strptime(value, TIMESTAMP_FORMAT)))


def split_multi_valued(value: str) -> List[str]:
    return [elem for elem in value.split(MULTI_VALUE_SEPARATOR) if elem]


def parse_id(value: str) -> int:
    if not value or not value.strip().lstrip("-").isdigit():
        raise ValueError("identifier is not a decimal integer")
    return int(value)


def column_entries(name: str, value: str, split_arrays: bool = True) -> Properties:
    """Property entries produced by one column; raises ValueError on bad input."""
    if name in DATE_FIELDS:
        return ((name, parse_birthday(value)),)
    if name in TIMESTAMP_FIELDS:
        return ((name, parse_timestamp(value)),)
    if split_arrays and name in MULTI_VALUED_FIELDS:
        return tuple((name, elem) for elem in split_multi_valued(value))
    return ((name, value),)


class LineTransformer:
    """Base class: header bookkeeping, splitting and error reporting."""

    split_arrays = True

    def __init__(self, path: Union[str, Path], field_names: Sequence[str]):
        self.path = Path(path)
        self.field_names = tuple(field_names)

    def transform(self, line: str, line_number: int) -> List[Mutation]:
        raise NotImplementedError

    def _error(
        self, line: str, line_number: int, column: str, value: str, reason: str
    ) -> MalformedLineError:
        return MalformedLineError(self.path, line_number, column, value, line, reason)

    def _split(self, line: str, line_number: int, required: int) -> List[str]:
        values = line.split(FIELD_DELIMITER)
        if len(values) > len(self.field_names):
            raise self._error(
                line,
                line_number,
                f"#{len(self.field_names) + 1}",
                values[len(self.field_names)],
                f"line has {len(values)} fields, header has {len(self.field_names)}",
            )
        if len(values) < required:
            column = self.field_names[len(values)]
            raise self._error(line, line_number, column, "", "missing column")
        return values

    def _ref(
        self, line: str, line_number: int, values: List[str], idx: int, id_space: int
    ) -> NodeRef:
        column = self.field_names[idx]
        try:
            uid = CompositeId(id_space, parse_id(values[idx]))
        except ValueError as e:
            raise self._error(line, line_number, column, values[idx], str(e)) from e
        return NodeRef(uid, column, values[idx])

    def _properties(
        self, line: str, line_number: int, values: List[str], start: int
    ) -> Properties:
        entries: List[Tuple[str, str]] = []
        for idx in range(start, len(values)):
            name = self.field_names[idx]
            try:
                entries.extend(column_entries(name, values[idx], self.split_arrays))
            except ValueError as e:
                raise self._error(line, line_number, name, values[idx], str(e)) from e
        return tuple(entries)


class NodeLineTransformer(LineTransformer):
    """Entity node files: column 0 is the new node's id, the rest its properties."""

    def __init__(
        self, path: Union[str, Path], field_names: Sequence[str], entity: EntityType
    ):
        super().__init__(path, field_names)
        self.entity = entity

    def transform(self, line: str, line_number: int) -> List[Mutation]:
        values = self._split(line, line_number, required=1)
        ref = self._ref(line, line_number, values, 0, self.entity.id_space)
        props = self._properties(line, line_number, values, 1)
        return [CreateNode(ref.uid, self.entity.label, props)]


class PropertyLineTransformer(LineTransformer):
    """Property files: column 0 names an existing node, the rest are appended."""

    def __init__(
        self, path: Union[str, Path], field_names: Sequence[str], entity: EntityType
    ):
        super().__init__(path, field_names)
        self.entity = entity

    def transform(self, line: str, line_number: int) -> List[Mutation]:
        values = self._split(line, line_number, required=1)
        ref = self._ref(line, line_number, values, 0, self.entity.id_space)
        props = self._properties(line, line_number, values, 1)
        return [AppendProperties(ref, props)]


class RelationLineTransformer(LineTransformer):
    """
    Relation files: columns 0 and 1 are tail and head ids, the rest edge properties.

    Undirected relations are materialized as two edges with identical
    properties, since the store does not assume edge symmetry.
    """

    split_arrays = False

    def __init__(
        self,
        path: Union[str, Path],
        field_names: Sequence[str],
        relation: RelationType,
    ):
        super().__init__(path, field_names)
        self.relation = relation

    def transform(self, line: str, line_number: int) -> List[Mutation]:
        values = self._split(line, line_number, required=2)
        tail = self._ref(line, line_number, values, 0, self.relation.tail.id_space)
        head = self._ref(line, line_number, values, 1, self.relation.head.id_space)
        props = self._properties(line, line_number, values, 2)
        mutations: List[Mutation] = [CreateEdge(tail, head, self.relation.name, props)]
        if not self.relation.directed:
            mutations.append(CreateEdge(head, tail, self.relation.name, props))
        return mutations


def transformer_for(unit: WorkUnit, field_names: Sequence[str]) -> LineTransformer:
    """Build the transformer matching a work unit's role."""
    if unit.role is LoadRole.NODE:
        return NodeLineTransformer(unit.path, field_names, unit.entity)
    if unit.role is LoadRole.PROPERTY:
        return PropertyLineTransformer(unit.path, field_names, unit.entity)
    return RelationLineTransformer(unit.path, field_names, unit.relation)
