"""Document section hierarchy."""

from licitagraph.structure.structure_builder import StructureBuilder, StructureStats

__all__ = ["StructureBuilder", "StructureStats"]
