"""Parallel bulk loader for LDBC SNB datasets into Neo4j."""

__version__ = "0.1.0"
