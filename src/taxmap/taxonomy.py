"""The taxonomic tree and its read-only queries.

A Taxonomy is a forest of Taxon objects linked by parent IDs. It is created
once, either by the tree builder or from a persisted edge list, and never
modified afterwards: every accessor returns a copy or an immutable object.
"""

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from taxmap.types.data_classes import Taxon

logger = logging.getLogger(__name__)


class Taxonomy:
    """An immutable forest of taxa.

    Taxa keep the order in which they were added, which for built trees is
    the order their prefixes were first seen in the input.
    """

    def __init__(self, taxa: Iterable[Taxon] = ()):
        self._taxa: Dict[int, Taxon] = {}
        self._children: Dict[int, List[int]] = {}
        self._roots: List[int] = []

        for taxon in taxa:
            if taxon.taxon_id in self._taxa:
                raise ValueError(f"Duplicate taxon ID: {taxon.taxon_id}")
            self._taxa[taxon.taxon_id] = taxon
            self._children[taxon.taxon_id] = []

        for taxon in self._taxa.values():
            if taxon.parent_id is None:
                self._roots.append(taxon.taxon_id)
            elif taxon.parent_id not in self._taxa:
                raise ValueError(f"Taxon {taxon.taxon_id} refers to unknown parent {taxon.parent_id}")
            else:
                self._children[taxon.parent_id].append(taxon.taxon_id)

        reachable = sum(1 for _ in self._walk(self._roots))
        if reachable != len(self._taxa):
            raise ValueError("Taxon parent links contain a cycle")

    @classmethod
    def from_edges(
        cls,
        taxa: Iterable[Taxon],
        edges: Iterable[Tuple[Optional[int], int]],
    ) -> "Taxonomy":
        """Rebuild a taxonomy from taxon attributes and a (parent, child) edge list.

        Parent IDs found in the edge list take precedence over those stored
        on the taxa.
        """
        parents = {child: parent for parent, child in edges}
        rebuilt = []
        for taxon in taxa:
            parent_id = parents.get(taxon.taxon_id, taxon.parent_id)
            rebuilt.append(Taxon(
                taxon_id=taxon.taxon_id,
                name=taxon.name,
                rank=taxon.rank,
                info=dict(taxon.info),
                parent_id=parent_id,
            ))
        return cls(rebuilt)

    # -------------------------------------------------------------------------
    # Basic access
    # -------------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._taxa)

    def __contains__(self, taxon_id: object) -> bool:
        return taxon_id in self._taxa

    def __iter__(self) -> Iterator[Taxon]:
        return iter(list(self._taxa.values()))

    def __repr__(self) -> str:
        return f"Taxonomy({len(self._taxa)} taxa, {len(self._roots)} roots)"

    def taxon(self, taxon_id: int) -> Taxon:
        """Return the taxon with the given ID.

        Raises:
            KeyError: If the ID is not part of the tree
        """
        try:
            return self._taxa[taxon_id]
        except KeyError:
            raise KeyError(f"Unknown taxon ID: {taxon_id}") from None

    @property
    def taxa(self) -> Dict[int, Taxon]:
        """Get a dictionary of all taxa keyed by ID."""
        return dict(self._taxa)

    def taxon_ids(self) -> List[int]:
        """Return all taxon IDs in creation order."""
        return list(self._taxa)

    def edges(self) -> List[Tuple[int, int]]:
        """Return the (parent ID, child ID) edge list."""
        return [
            (taxon.parent_id, taxon.taxon_id)
            for taxon in self._taxa.values()
            if taxon.parent_id is not None
        ]

    def find(self, name: str) -> List[int]:
        """Return the IDs of every taxon with the given name."""
        return [taxon.taxon_id for taxon in self._taxa.values() if taxon.name == name]

    # -------------------------------------------------------------------------
    # Structure queries
    # -------------------------------------------------------------------------
    def roots(self) -> List[int]:
        """Return the IDs of taxa without a parent."""
        return list(self._roots)

    def leaves(self) -> List[int]:
        """Return the IDs of taxa without children."""
        return [taxon_id for taxon_id, children in self._children.items() if not children]

    def children(self, taxon_id: int) -> List[int]:
        """Return the IDs of the direct children of a taxon."""
        self.taxon(taxon_id)
        return list(self._children[taxon_id])

    def parent(self, taxon_id: int) -> Optional[int]:
        """Return the ID of a taxon's parent, or None for a root."""
        return self.taxon(taxon_id).parent_id

    def is_leaf(self, taxon_id: int) -> bool:
        return not self.children(taxon_id)

    def _walk(self, start: Iterable[int], max_depth: Optional[int] = None) -> Iterator[Tuple[int, int]]:
        """Depth-first pre-order walk yielding (taxon ID, depth below start)."""
        stack = [(taxon_id, 0) for taxon_id in reversed(list(start))]
        while stack:
            taxon_id, depth = stack.pop()
            yield taxon_id, depth
            if max_depth is not None and depth >= max_depth:
                continue
            for child in reversed(self._children[taxon_id]):
                stack.append((child, depth + 1))

    def subtaxa(self, taxon_id: int, include_self: bool = False, max_depth: Optional[int] = None) -> List[int]:
        """Return every descendant of a taxon in depth-first pre-order.

        Args:
            taxon_id: The taxon whose descendants are returned
            include_self: Whether to start the result with the taxon itself
            max_depth: Only descend this many levels (1 = children only)
        """
        self.taxon(taxon_id)
        return [
            descendant
            for descendant, depth in self._walk([taxon_id], max_depth)
            if include_self or depth > 0
        ]

    def supertaxa(self, taxon_id: int, include_self: bool = False, max_depth: Optional[int] = None) -> List[int]:
        """Return the ancestors of a taxon, ordered from the taxon to its root.

        Args:
            taxon_id: The taxon whose ancestors are returned
            include_self: Whether to start the result with the taxon itself
            max_depth: Only climb this many levels (1 = parent only)
        """
        result = [taxon_id] if include_self else []
        current = self.taxon(taxon_id).parent_id
        climbed = 0
        while current is not None and (max_depth is None or climbed < max_depth):
            result.append(current)
            current = self._taxa[current].parent_id
            climbed += 1
        return result

    def n_subtaxa(self, taxon_id: int) -> int:
        return len(self.subtaxa(taxon_id))

    def n_supertaxa(self, taxon_id: int) -> int:
        return len(self.supertaxa(taxon_id))

    def depth(self, taxon_id: int) -> int:
        """Return the number of ancestors of a taxon (0 for roots)."""
        return self.n_supertaxa(taxon_id)

    def classification(self, taxon_id: int, sep: Optional[str] = None) -> Union[List[str], str]:
        """Return the names from the root down to a taxon.

        Args:
            taxon_id: The taxon whose classification is returned
            sep: If given, join the names with this separator
        """
        names = [self._taxa[tid].name for tid in reversed(self.supertaxa(taxon_id, include_self=True))]
        return sep.join(names) if sep is not None else names
