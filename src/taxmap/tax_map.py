"""The TaxMap: a taxonomic tree together with the datasets bound to it.

This module provides ``build``, the main entry point, which extracts a
classification path from every input record, builds the tree in one pass,
and returns a TaxMap holding the tree, the primary dataset and the leaf
taxon of each record. Further datasets are bound with ``TaxMap.attach``.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import polars as pl
from tqdm import tqdm

from taxmap.constants import INPUT_COLUMN, PRIMARY_DATASET, TAXON_ID_COLUMN
from taxmap.dataset_mapper import DatasetLike, MappingResult, attach_dataset
from taxmap.errors import ConfigurationError
from taxmap.extractor import CompiledExtractor, compile_extractor
from taxmap.taxonomy import Taxonomy
from taxmap.tree_builder import build_tree
from taxmap.types.data_classes import ExtractionConfig, MappingRule, MatchPolicy, PathElement, TaxonConflict

logger = logging.getLogger(__name__)

RecordsLike = Union[pl.DataFrame, pl.Series, Sequence[Optional[str]], Dict[Any, Optional[str]]]
RulesLike = Sequence[Union[MappingRule, Tuple[str, str]]]


class TaxMap:
    """A taxonomy plus the datasets bound to its taxa.

    The taxonomy and the primary dataset are fixed when the TaxMap is
    created. Attaching a dataset adds it under a new name and never alters
    taxa, IDs or previously attached datasets.
    """

    def __init__(
        self,
        taxonomy: Taxonomy,
        primary: pl.DataFrame,
        record_names: Optional[Sequence[Any]] = None,
        conflicts: Sequence[TaxonConflict] = (),
        primary_name: str = PRIMARY_DATASET,
    ):
        if TAXON_ID_COLUMN not in primary.columns:
            raise ValueError(f"Primary dataset must have a '{TAXON_ID_COLUMN}' column")
        self._taxonomy = taxonomy
        self._primary_name = primary_name
        self._datasets: Dict[str, pl.DataFrame] = {primary_name: primary}
        self._record_names = list(record_names) if record_names is not None else None
        self._conflicts = list(conflicts)
        self._mapping_results: Dict[str, MappingResult] = {}

    def __repr__(self) -> str:
        return f"TaxMap({len(self._taxonomy)} taxa, datasets={self.dataset_names})"

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------
    @property
    def taxonomy(self) -> Taxonomy:
        return self._taxonomy

    @property
    def primary_name(self) -> str:
        return self._primary_name

    @property
    def primary(self) -> pl.DataFrame:
        """The primary dataset, one row per input record."""
        return self._datasets[self._primary_name]

    @property
    def record_taxon_ids(self) -> List[Optional[int]]:
        """Leaf taxon ID of each input record (None if unassociated)."""
        return self.primary[TAXON_ID_COLUMN].to_list()

    @property
    def record_names(self) -> Optional[List[Any]]:
        return list(self._record_names) if self._record_names is not None else None

    @property
    def conflicts(self) -> List[TaxonConflict]:
        """Rank/info values ignored by first-write-wins during the build."""
        return list(self._conflicts)

    @property
    def mapping_results(self) -> Dict[str, MappingResult]:
        """Mapping outcome of each dataset attached in this session, by name."""
        return dict(self._mapping_results)

    @property
    def dataset_names(self) -> List[str]:
        return list(self._datasets)

    @property
    def datasets(self) -> Dict[str, pl.DataFrame]:
        return dict(self._datasets)

    def dataset(self, name: str) -> pl.DataFrame:
        """Return a bound dataset by name.

        Raises:
            KeyError: If no dataset has that name
        """
        try:
            return self._datasets[name]
        except KeyError:
            raise KeyError(f"Unknown dataset: {name}") from None

    def unassociated_records(self) -> List[int]:
        """Return the indices of records whose path was empty."""
        return [i for i, taxon_id in enumerate(self.record_taxon_ids) if taxon_id is None]

    # -------------------------------------------------------------------------
    # Dataset attachment
    # -------------------------------------------------------------------------
    def attach(
        self,
        name: str,
        dataset: DatasetLike,
        rules: Optional[RulesLike] = None,
        on_ambiguous: MatchPolicy = MatchPolicy.FIRST,
    ) -> MappingResult:
        """Bind a dataset to the taxa and store it under ``name``.

        See ``taxmap.dataset_mapper.attach_dataset`` for the rule semantics.

        Raises:
            ValueError: If a dataset with this name is already attached
        """
        if name in self._datasets:
            raise ValueError(f"A dataset named '{name}' is already attached")
        result = attach_dataset(
            self._taxonomy,
            self.primary,
            self.record_taxon_ids,
            dataset,
            rules=rules,
            on_ambiguous=on_ambiguous,
            record_names=self._record_names,
        )
        self._datasets[name] = result.dataset
        self._mapping_results[name] = result
        logger.info(f"Attached dataset '{name}': {result.n_matched:,} of {result.dataset.height:,} rows mapped")
        return result

    def add_mapped_dataset(self, name: str, frame: pl.DataFrame) -> None:
        """Store a dataset whose ``taxon_id`` column was already resolved.

        IDs that are not part of the taxonomy are replaced by null.

        Raises:
            ValueError: If the name is taken or the frame has no taxon_id column
        """
        if name in self._datasets:
            raise ValueError(f"A dataset named '{name}' is already attached")
        if TAXON_ID_COLUMN not in frame.columns:
            raise ValueError(f"Dataset '{name}' has no '{TAXON_ID_COLUMN}' column")
        known = self._taxonomy.taxon_ids()
        self._datasets[name] = frame.with_columns(
            pl.when(pl.col(TAXON_ID_COLUMN).is_in(known))
            .then(pl.col(TAXON_ID_COLUMN))
            .otherwise(None)
            .cast(pl.Int64)
            .alias(TAXON_ID_COLUMN)
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------
    def subtaxa(self, taxon_id: int, include_self: bool = False, max_depth: Optional[int] = None) -> List[int]:
        return self._taxonomy.subtaxa(taxon_id, include_self=include_self, max_depth=max_depth)

    def supertaxa(self, taxon_id: int, include_self: bool = False, max_depth: Optional[int] = None) -> List[int]:
        return self._taxonomy.supertaxa(taxon_id, include_self=include_self, max_depth=max_depth)

    def roots(self) -> List[int]:
        return self._taxonomy.roots()

    def leaves(self) -> List[int]:
        return self._taxonomy.leaves()

    def observation_indices(self, dataset: str, taxon_id: int) -> List[int]:
        """Return the row indices of a dataset bound to a taxon or any of its subtaxa."""
        covered = set(self._taxonomy.subtaxa(taxon_id, include_self=True))
        return [
            row for row, bound in enumerate(self.dataset(dataset)[TAXON_ID_COLUMN].to_list())
            if bound in covered
        ]

    def observations(self, dataset: str, taxon_id: int) -> pl.DataFrame:
        """Return the rows of a dataset bound to a taxon or any of its subtaxa.

        Data attached to a descendant is visible at every ancestor.
        """
        covered = self._taxonomy.subtaxa(taxon_id, include_self=True)
        return self.dataset(dataset).filter(pl.col(TAXON_ID_COLUMN).is_in(covered))

    def count_observations(self, dataset: str) -> Dict[int, int]:
        """Return the number of rows bound to each taxon, rolled up to ancestors."""
        counts = {taxon_id: 0 for taxon_id in self._taxonomy.taxon_ids()}
        for bound in self.dataset(dataset)[TAXON_ID_COLUMN].to_list():
            if bound is not None and bound in counts:
                counts[bound] += 1

        # Children are visited before their parents in reversed pre-order
        for root in self._taxonomy.roots():
            for taxon_id in reversed(self._taxonomy.subtaxa(root, include_self=True)):
                parent_id = self._taxonomy.parent(taxon_id)
                if parent_id is not None:
                    counts[parent_id] += counts[taxon_id]
        return counts


# -----------------------------------------------------------------------------
# Build
# -----------------------------------------------------------------------------
def _extract_all(
    records: RecordsLike,
    extractor: CompiledExtractor,
    progress: bool,
) -> Tuple[pl.DataFrame, List[List[PathElement]], Optional[List[Any]]]:
    """Extract every record's path, returning the primary frame, paths and names."""
    if isinstance(records, pl.DataFrame):
        if not extractor.is_tabular:
            raise ConfigurationError("Tabular input requires source_columns in the extraction config")
        extractor.validate_columns(records.columns)
        rows = records.iter_rows(named=True)
        if progress:
            rows = tqdm(rows, total=records.height, desc="Extracting classifications")
        paths = [extractor.extract_row(row) for row in rows]
        name_column = extractor.config.name_column
        names = records[name_column].to_list() if name_column else None
        return records, paths, names

    if extractor.is_tabular:
        raise ConfigurationError("source_columns can only be used with tabular (DataFrame) input")

    if isinstance(records, dict):
        names = list(records.keys())
        values = list(records.values())
    elif isinstance(records, pl.Series):
        names = None
        values = records.to_list()
    elif isinstance(records, (list, tuple)):
        names = None
        values = list(records)
    else:
        raise TypeError(f"Unsupported records type: {type(records).__name__}")

    values_iter = tqdm(values, desc="Extracting classifications") if progress else values
    paths = [extractor.extract(value) for value in values_iter]
    frame = pl.DataFrame({INPUT_COLUMN: [None if v is None else str(v) for v in values]}, schema={INPUT_COLUMN: pl.Utf8})
    return frame, paths, names


def build(
    records: RecordsLike,
    config: ExtractionConfig,
    datasets: Optional[Dict[str, DatasetLike]] = None,
    mappings: Optional[Dict[str, RulesLike]] = None,
    on_ambiguous: MatchPolicy = MatchPolicy.FIRST,
    progress: bool = False,
) -> TaxMap:
    """Build a TaxMap from raw classification records.

    The configuration is validated and every record's path extracted before
    any taxon is created. Records are processed in input order.

    Args:
        records: Strings, a dict of named strings, or a DataFrame whose
            ``config.source_columns`` hold classifications
        config: Extraction configuration
        datasets: Auxiliary datasets to attach, by name
        mappings: Mapping rules per auxiliary dataset name (inferred if absent)
        on_ambiguous: Policy for rows matching several records
        progress: Whether to display progress bars

    Returns:
        A TaxMap whose primary dataset carries each record's leaf taxon ID

    Raises:
        ConfigurationError: If the configuration or a mapping is invalid
    """
    extractor = compile_extractor(config)
    frame, paths, names = _extract_all(records, extractor, progress)

    empty = sum(1 for path in paths if not path)
    if empty:
        logger.warning(f"{empty:,} of {len(paths):,} record(s) produced no classification and are unassociated")

    taxonomy, leaf_ids, conflicts = build_tree(paths, total_count=len(paths), progress=progress)

    if TAXON_ID_COLUMN in frame.columns:
        logger.info(f"Replacing existing '{TAXON_ID_COLUMN}' column of the input")
    primary = frame.with_columns(pl.Series(TAXON_ID_COLUMN, leaf_ids, dtype=pl.Int64))

    taxmap = TaxMap(taxonomy, primary, record_names=names, conflicts=conflicts)
    for name, data in (datasets or {}).items():
        taxmap.attach(name, data, rules=(mappings or {}).get(name), on_ambiguous=on_ambiguous)
    return taxmap
