"""
Work units and dataset file discovery.

A WorkUnit pairs one dataset file with the role it plays in a load phase.
Discovery produces the globally ordered work list; every loader instance
running the same phase over the same directory must build an identical list,
so matches are sorted by file name within each catalog type.
"""

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from ..neo.schema import (
    ENTITIES,
    PROPERTY_FILES,
    RELATIONS,
    EntityType,
    RelationType,
)
from ..shared.observability import get_logger

logger = get_logger(__name__)


class LoadRole(str, Enum):
    NODE = "node"
    PROPERTY = "property"
    RELATION = "relation"


class LoadPhase(str, Enum):
    NODES = "nodes"
    PROPS = "props"
    EDGES = "edges"


@dataclass(frozen=True)
class WorkUnit:
    """One dataset file plus its semantic role."""

    role: LoadRole
    path: Path
    entity: Optional[EntityType] = None
    relation: Optional[RelationType] = None

    def __post_init__(self):
        if self.role is LoadRole.RELATION:
            if self.relation is None:
                raise ValueError(
                    f"relation work unit for {self.path} needs a relation"
                )
        elif self.entity is None:
            raise ValueError(
                f"{self.role.value} work unit for {self.path} needs an entity"
            )

    @classmethod
    def for_nodes(cls, entity: EntityType, path: Union[str, Path]) -> "WorkUnit":
        return cls(LoadRole.NODE, Path(path), entity=entity)

    @classmethod
    def for_properties(
        cls, entity: EntityType, path: Union[str, Path]
    ) -> "WorkUnit":
        return cls(LoadRole.PROPERTY, Path(path), entity=entity)

    @classmethod
    def for_relation(
        cls, relation: RelationType, path: Union[str, Path]
    ) -> "WorkUnit":
        return cls(LoadRole.RELATION, Path(path), relation=relation)

    @property
    def name(self) -> str:
        return self.path.name


def _matching_files(directory: Path, stem: str) -> List[Path]:
    pattern = re.compile("^" + re.escape(stem) + r"_[0-9]+_[0-9]+\.csv$")
    return sorted(
        (p for p in directory.iterdir() if p.is_file() and pattern.match(p.name)),
        key=lambda p: p.name,
    )


def discover_work_units(
    source_dir: Union[str, Path], phase: Union[LoadPhase, str]
) -> List[WorkUnit]:
    """
    Build the ordered work list for one load phase.

    Args:
        source_dir: Directory holding the generated SNB csv files
        phase: nodes, props or edges

    Returns:
        Work units in catalog order, file-name order within a type

    Raises:
        FileNotFoundError: If source_dir is not a directory
    """
    directory = Path(source_dir)
    if not directory.is_dir():
        raise FileNotFoundError(f"Dataset directory not found: {directory}")
    phase = LoadPhase(phase)

    units: List[WorkUnit] = []
    if phase is LoadPhase.NODES:
        for entity in ENTITIES:
            files = _matching_files(directory, entity.name)
            if not files:
                logger.warning("work_units_missing", kind="nodes", type=entity.name)
            for f in files:
                logger.info(
                    "work_unit_found", kind="nodes", type=entity.name, file=f.name
                )
                units.append(WorkUnit.for_nodes(entity, f))
    elif phase is LoadPhase.PROPS:
        for prop_file in PROPERTY_FILES:
            files = _matching_files(directory, prop_file.file_stem)
            if not files:
                logger.warning(
                    "work_units_missing", kind="props", type=prop_file.description
                )
            for f in files:
                logger.info(
                    "work_unit_found",
                    kind="props",
                    type=prop_file.description,
                    file=f.name,
                )
                units.append(WorkUnit.for_properties(prop_file.entity, f))
    else:
        for relation in RELATIONS:
            files = _matching_files(directory, relation.file_stem)
            if not files:
                logger.warning(
                    "work_units_missing", kind="edges", type=relation.describe()
                )
            for f in files:
                logger.info(
                    "work_unit_found",
                    kind="edges",
                    type=relation.describe(),
                    file=f.name,
                )
                units.append(WorkUnit.for_relation(relation, f))

    logger.info("work_units_discovered", phase=phase.value, total=len(units))
    return units
