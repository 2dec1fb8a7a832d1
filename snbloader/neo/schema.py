"""
LDBC SNB type catalog for the graph loader.

Centralizes the entity/relation vocabulary so discovery, line transforms and
the Neo4j session agree on labels, id-spaces and edge directedness. Update
these tables whenever the dataset generator adds a new file kind.

Id-spaces
---------
Every entity type numbers its identifiers independently, so two entities of
different types may share the same numeric id. The id-space tag is combined
with the numeric id to form the composite node key (``uid``) stored in the
graph.
"""

from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Tuple


@dataclass(frozen=True)
class EntityType:
    """An SNB entity (node) type."""

    name: str
    label: str
    id_space: int


@dataclass(frozen=True)
class RelationType:
    """An SNB relation (edge) type between two entity types."""

    tail: EntityType
    name: str
    head: EntityType
    directed: bool = True

    @property
    def file_stem(self) -> str:
        return f"{self.tail.name}_{self.name}_{self.head.name}"

    def describe(self) -> str:
        arrow = "->" if self.directed else "-"
        return f"({self.tail.name})-[{self.name}]{arrow}({self.head.name})"


@dataclass(frozen=True)
class PropertyFileType:
    """A multi-valued property file attaching values to existing entities."""

    entity: EntityType
    file_stem: str
    description: str


class CompositeId(NamedTuple):
    """Type-tagged node key: id-space tag plus the per-type integer id."""

    id_space: int
    value: int

    def __str__(self) -> str:
        return f"{self.id_space}:{self.value}"


COMMENT = EntityType("comment", "Comment", 1)
FORUM = EntityType("forum", "Forum", 2)
ORGANISATION = EntityType("organisation", "Organisation", 3)
PERSON = EntityType("person", "Person", 4)
PLACE = EntityType("place", "Place", 5)
POST = EntityType("post", "Post", 6)
TAG = EntityType("tag", "Tag", 7)
TAGCLASS = EntityType("tagclass", "TagClass", 8)

# Catalog order drives discovery order, which every loader instance must share.
ENTITIES: Tuple[EntityType, ...] = (
    COMMENT,
    FORUM,
    ORGANISATION,
    PERSON,
    PLACE,
    POST,
    TAG,
    TAGCLASS,
)

RELATIONS: Tuple[RelationType, ...] = (
    RelationType(COMMENT, "hasCreator", PERSON),
    RelationType(COMMENT, "hasTag", TAG),
    RelationType(COMMENT, "isLocatedIn", PLACE),
    RelationType(COMMENT, "replyOf", COMMENT),
    RelationType(COMMENT, "replyOf", POST),
    RelationType(FORUM, "containerOf", POST),
    RelationType(FORUM, "hasMember", PERSON),
    RelationType(FORUM, "hasModerator", PERSON),
    RelationType(FORUM, "hasTag", TAG),
    RelationType(ORGANISATION, "isLocatedIn", PLACE),
    RelationType(PERSON, "hasInterest", TAG),
    RelationType(PERSON, "isLocatedIn", PLACE),
    RelationType(PERSON, "knows", PERSON, directed=False),
    RelationType(PERSON, "likes", COMMENT),
    RelationType(PERSON, "likes", POST),
    RelationType(PERSON, "studyAt", ORGANISATION),
    RelationType(PERSON, "workAt", ORGANISATION),
    RelationType(PLACE, "isPartOf", PLACE),
    RelationType(POST, "hasCreator", PERSON),
    RelationType(POST, "hasTag", TAG),
    RelationType(POST, "isLocatedIn", PLACE),
    RelationType(TAG, "hasType", TAGCLASS),
    RelationType(TAGCLASS, "isSubclassOf", TAGCLASS),
)

PROPERTY_FILES: Tuple[PropertyFileType, ...] = (
    PropertyFileType(PERSON, "person_email_emailaddress", "person email properties"),
    PropertyFileType(PERSON, "person_speaks_language", "person speaks properties"),
)

# Column semantics, keyed by header name regardless of file role.
DATE_FIELDS = frozenset({"birthday"})
TIMESTAMP_FIELDS = frozenset({"creationDate", "joinDate"})
MULTI_VALUED_FIELDS = frozenset({"emails", "speaks"})
MULTI_VALUE_SEPARATOR = ";"
FIELD_DELIMITER = "|"

UID_PROPERTY = "uid"

_ENTITIES_BY_NAME: Dict[str, EntityType] = {e.name: e for e in ENTITIES}
_ENTITIES_BY_ID_SPACE: Dict[int, EntityType] = {e.id_space: e for e in ENTITIES}
_RELATIONS_BY_KEY: Dict[Tuple[str, str, str], RelationType] = {
    (r.tail.name, r.name, r.head.name): r for r in RELATIONS
}


def entity_by_name(name: str) -> EntityType:
    return _ENTITIES_BY_NAME[name]


def entity_by_id_space(id_space: int) -> EntityType:
    return _ENTITIES_BY_ID_SPACE[id_space]


def relation_by_key(tail: str, name: str, head: str) -> RelationType:
    return _RELATIONS_BY_KEY[(tail, name, head)]


def escape_identifier(identifier: str) -> str:
    """Quote a label, relationship type or property key for Cypher text."""
    return "`" + identifier.replace("`", "``") + "`"


def uniqueness_constraints() -> List[str]:
    """One idempotent uid uniqueness constraint per entity label."""
    return [
        f"CREATE CONSTRAINT {entity.name}_uid IF NOT EXISTS "
        f"FOR (n:{escape_identifier(entity.label)}) "
        f"REQUIRE n.{UID_PROPERTY} IS UNIQUE"
        for entity in ENTITIES
    ]
