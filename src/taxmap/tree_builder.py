"""Tree construction for taxmap.

This module canonicalizes the classification paths of all records into one
taxonomic tree. Paths are walked from the root, and every distinct sequence
of names (root to current) becomes exactly one taxon. Identical paths
collapse, and paths sharing a prefix share the ancestor taxa of that prefix.

The prefix index is keyed by (parent ID, name), which makes it a trie over
name sequences with O(1) amortized lookup per name.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from tqdm import tqdm

from taxmap.taxonomy import Taxonomy
from taxmap.types.data_classes import PathElement, Taxon, TaxonConflict

logger = logging.getLogger(__name__)


class BuildContext:
    """Owns the ID counter and prefix index of a single build pass.

    A context is created per build and discarded once ``freeze`` has
    produced the Taxonomy, so IDs are never shared between builds.
    """

    def __init__(self, first_id: int = 1):
        self._next_id = first_id
        self._index: Dict[Tuple[Optional[int], str], int] = {}
        self._names: Dict[int, str] = {}
        self._parents: Dict[int, Optional[int]] = {}
        self._ranks: Dict[int, Optional[str]] = {}
        self._info: Dict[int, Dict[str, Optional[str]]] = {}
        self.conflicts: List[TaxonConflict] = []

    def __len__(self) -> int:
        return len(self._names)

    def _new_taxon(self, parent_id: Optional[int], element: PathElement) -> int:
        taxon_id = self._next_id
        self._next_id += 1
        self._index[(parent_id, element.name)] = taxon_id
        self._names[taxon_id] = element.name
        self._parents[taxon_id] = parent_id
        self._ranks[taxon_id] = element.rank
        self._info[taxon_id] = {k: v for k, v in element.info if v is not None}
        return taxon_id

    def _merge_attributes(self, taxon_id: int, element: PathElement, record_index: int) -> None:
        """Apply first-write-wins to a revisited taxon.

        A value only fills in an attribute that is still missing; a differing
        value is recorded as a conflict and otherwise ignored.
        """
        if element.rank is not None:
            current = self._ranks[taxon_id]
            if current is None:
                self._ranks[taxon_id] = element.rank
            elif current != element.rank:
                self.conflicts.append(TaxonConflict(taxon_id, "rank", current, element.rank, record_index))

        info = self._info[taxon_id]
        for key, value in element.info:
            if value is None:
                continue
            if key not in info:
                info[key] = value
            elif info[key] != value:
                self.conflicts.append(TaxonConflict(taxon_id, f"info.{key}", info[key], value, record_index))

    def add_path(self, path: Sequence[PathElement], record_index: int) -> Optional[int]:
        """Find or create the taxa of a path and return its leaf taxon ID.

        Args:
            path: Path elements ordered from the root
            record_index: Position of the record in the input, for conflict reports

        Returns:
            The ID of the taxon for the complete path, or None for an empty path
        """
        parent_id: Optional[int] = None
        for element in path:
            taxon_id = self._index.get((parent_id, element.name))
            if taxon_id is None:
                taxon_id = self._new_taxon(parent_id, element)
            else:
                self._merge_attributes(taxon_id, element, record_index)
            parent_id = taxon_id
        return parent_id

    def freeze(self) -> Taxonomy:
        """Return the immutable Taxonomy built so far."""
        return Taxonomy(
            Taxon(
                taxon_id=taxon_id,
                name=name,
                rank=self._ranks[taxon_id],
                info=dict(self._info[taxon_id]),
                parent_id=self._parents[taxon_id],
            )
            for taxon_id, name in self._names.items()
        )


def log_conflicts(conflicts: List[TaxonConflict]) -> None:
    """Log a warning summary of first-write-wins conflicts."""
    if not conflicts:
        return
    affected = len({c.taxon_id for c in conflicts})
    logger.warning(
        f"Ignored {len(conflicts)} conflicting rank/info value(s) on {affected} taxa; "
        f"the first occurrence of each taxon was kept"
    )
    for conflict in conflicts:
        logger.debug(
            f"Taxon {conflict.taxon_id}: kept {conflict.field}={conflict.kept!r}, "
            f"ignored {conflict.ignored!r} from record {conflict.record_index}"
        )


def build_tree(
    paths: Iterable[Sequence[PathElement]],
    total_count: Optional[int] = None,
    progress: bool = False,
) -> Tuple[Taxonomy, List[Optional[int]], List[TaxonConflict]]:
    """Build the taxonomic tree from per-record paths.

    Paths are processed once, in input order; ID assignment and conflict
    resolution depend on that order.

    Args:
        paths: One path per record, root first
        total_count: Number of paths (optional, for progress bar)
        progress: Whether to display a progress bar

    Returns:
        Tuple of (taxonomy, leaf taxon ID per record, conflicts)
    """
    context = BuildContext()
    paths_iter = tqdm(paths, total=total_count, desc="Building tree") if progress else paths

    leaf_ids = [context.add_path(path, record_index) for record_index, path in enumerate(paths_iter)]
    taxonomy = context.freeze()

    logger.info(f"Built {len(taxonomy):,} taxa ({len(taxonomy.roots()):,} roots) from {len(leaf_ids):,} records")
    log_conflicts(context.conflicts)
    return taxonomy, leaf_ids, list(context.conflicts)
