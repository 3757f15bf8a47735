"""taxmap: A Python package for building taxonomic trees from classification text.

taxmap parses delimited or regex-embedded classifications into a canonical
tree of taxa and binds arbitrary datasets to the taxa of that tree, so that
data attached to a taxon can be queried from any of its ancestors.
"""

__version__ = "0.1.0"

from taxmap.dataset_mapper import MappingResult, attach_dataset
from taxmap.errors import AmbiguousMatchError, ConfigurationError, TaxMapError
from taxmap.extractor import compile_extractor, extract_path
from taxmap.tax_map import TaxMap, build
from taxmap.taxonomy import Taxonomy
from taxmap.tree_builder import BuildContext, build_tree
from taxmap.types.data_classes import (
    Discard,
    ExtractionConfig,
    Info,
    MappingRule,
    MatchPolicy,
    PathElement,
    Taxon,
    TaxonConflict,
    TaxonName,
    TaxonRank,
)

__all__ = [
    "build",
    "build_tree",
    "attach_dataset",
    "compile_extractor",
    "extract_path",
    "TaxMap",
    "Taxonomy",
    "BuildContext",
    "MappingResult",
    "ExtractionConfig",
    "MappingRule",
    "MatchPolicy",
    "PathElement",
    "Taxon",
    "TaxonConflict",
    "TaxonName",
    "TaxonRank",
    "Info",
    "Discard",
    "TaxMapError",
    "ConfigurationError",
    "AmbiguousMatchError",
]
