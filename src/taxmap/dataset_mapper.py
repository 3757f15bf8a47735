"""Dataset-to-taxon mapping for taxmap.

This module binds externally supplied datasets to the taxa of a built tree.
Each row of an auxiliary dataset is located against the primary dataset's
records using an ordered list of MappingRule objects, and receives the
taxon ID of the record it matched. Rows that match nothing keep a null
taxon ID and are reported, never raised.

Supported dataset shapes are polars DataFrames and Series, lists and
dictionaries (whose keys are used as element names).
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple, Union

import polars as pl

from taxmap.constants import (
    INDEX_PLACEHOLDER,
    NAME_COLUMN,
    NAME_PLACEHOLDER,
    TAXON_ID_COLUMN,
    TAXON_ID_PLACEHOLDER,
    VALUE_COLUMN,
)
from taxmap.errors import AmbiguousMatchError, ConfigurationError
from taxmap.taxonomy import Taxonomy
from taxmap.types.data_classes import MappingRule, MatchPolicy

logger = logging.getLogger(__name__)

DatasetLike = Union[pl.DataFrame, pl.Series, Sequence[Any], Dict[Any, Any]]


@dataclass(frozen=True)
class MappingResult:
    """The outcome of attaching one dataset.

    Attributes:
        dataset: The dataset as a DataFrame with a ``taxon_id`` column
        unmatched: Row indices that matched no record
        rules: The rules that were applied, after inference
    """
    dataset: pl.DataFrame
    unmatched: List[int]
    rules: Tuple[MappingRule, ...]

    @property
    def n_matched(self) -> int:
        return self.dataset.height - len(self.unmatched)

    @property
    def n_unmatched(self) -> int:
        return len(self.unmatched)


def as_frame(data: DatasetLike) -> Tuple[pl.DataFrame, Optional[List[Any]]]:
    """Normalize a dataset to a DataFrame and its element names, if any.

    Args:
        data: A DataFrame, Series, list/tuple or dict

    Returns:
        Tuple of (frame, names); names come from dict keys or a ``name`` column
    """
    if isinstance(data, pl.DataFrame):
        names = data[NAME_COLUMN].to_list() if NAME_COLUMN in data.columns else None
        return data, names
    if isinstance(data, pl.Series):
        return pl.DataFrame({data.name or VALUE_COLUMN: data}), None
    if isinstance(data, dict):
        names = list(data.keys())
        frame = pl.DataFrame(
            {NAME_COLUMN: [str(k) for k in names], VALUE_COLUMN: list(data.values())},
            strict=False,
        )
        return frame, names
    if isinstance(data, (list, tuple)):
        return pl.DataFrame({VALUE_COLUMN: list(data)}, strict=False), None
    raise TypeError(f"Unsupported dataset type: {type(data).__name__}")


def _as_taxon_id(value: Any) -> Optional[int]:
    """Coerce a value used as a taxon ID, returning None if it cannot be one."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class _Records:
    """The primary dataset's records as seen by the mapper."""

    def __init__(self, frame: pl.DataFrame, taxon_ids: Sequence[Optional[int]], names: Optional[Sequence[Any]]):
        self.frame = frame
        self.taxon_ids = list(taxon_ids)
        self.names = list(names) if names is not None else None

    def keys(self, selector: str) -> List[Any]:
        if selector == INDEX_PLACEHOLDER:
            return list(range(len(self.taxon_ids)))
        if selector == NAME_PLACEHOLDER:
            if self.names is None:
                raise ConfigurationError("Mapping by {{name}} requires named primary records")
            return self.names
        if selector not in self.frame.columns:
            raise ConfigurationError(f"Primary dataset has no column '{selector}'")
        return self.frame[selector].to_list()


def _dataset_keys(
    selector: str,
    frame: pl.DataFrame,
    names: Optional[List[Any]],
    as_taxon_ids: bool = False,
) -> List[Any]:
    """Return the key of each auxiliary row under a destination selector.

    With ``as_taxon_ids`` the keys are coerced to taxon IDs, for rules whose
    source is ``{{taxon_id}}``.
    """
    if selector == INDEX_PLACEHOLDER:
        return list(range(frame.height))
    if selector == NAME_PLACEHOLDER:
        if names is None:
            raise ConfigurationError("Mapping by {{name}} requires named dataset elements")
        return [_as_taxon_id(v) for v in names] if as_taxon_ids else names
    if selector == TAXON_ID_PLACEHOLDER:
        if TAXON_ID_COLUMN in frame.columns:
            values = frame[TAXON_ID_COLUMN].to_list()
        elif names is not None:
            values = names
        else:
            raise ConfigurationError("Mapping by {{taxon_id}} requires a taxon_id column or element names")
        return [_as_taxon_id(v) for v in values]
    if selector not in frame.columns:
        raise ConfigurationError(f"Dataset has no column '{selector}'")
    values = frame[selector].to_list()
    return [_as_taxon_id(v) for v in values] if as_taxon_ids else values


def _candidate_index(rule: MappingRule, taxonomy: Taxonomy, records: _Records) -> Dict[Hashable, List[int]]:
    """Map each source key to the taxon IDs of its candidate records, in input order."""
    if rule.source == TAXON_ID_PLACEHOLDER:
        return {taxon_id: [taxon_id] for taxon_id in taxonomy.taxon_ids()}

    keys = records.keys(rule.source)
    if rule.destination == TAXON_ID_PLACEHOLDER:
        keys = [_as_taxon_id(k) for k in keys]

    index: Dict[Hashable, List[int]] = {}
    for key, taxon_id in zip(keys, records.taxon_ids):
        if key is None or taxon_id is None:
            continue
        index.setdefault(key, []).append(taxon_id)
    return index


def infer_rules(frame: pl.DataFrame, n_records: int) -> Tuple[MappingRule, ...]:
    """Choose mapping rules for a dataset given without any.

    Raises:
        ConfigurationError: If no rule can be inferred
    """
    if TAXON_ID_COLUMN in frame.columns:
        return (MappingRule(TAXON_ID_PLACEHOLDER, TAXON_ID_PLACEHOLDER),)
    if frame.height == n_records:
        return (MappingRule(INDEX_PLACEHOLDER, INDEX_PLACEHOLDER),)
    raise ConfigurationError(
        f"Cannot infer how to map a dataset of {frame.height} rows onto {n_records} records; "
        f"give mapping rules explicitly"
    )


def _resolve(candidates: List[int], row: int, policy: MatchPolicy) -> int:
    distinct = list(dict.fromkeys(candidates))
    if len(distinct) > 1 and policy is MatchPolicy.ERROR:
        raise AmbiguousMatchError(f"Dataset row {row} matches records bound to different taxa: {distinct}")
    return distinct[0]


def attach_dataset(
    taxonomy: Taxonomy,
    primary: pl.DataFrame,
    record_taxon_ids: Sequence[Optional[int]],
    dataset: DatasetLike,
    rules: Optional[Sequence[Union[MappingRule, Tuple[str, str]]]] = None,
    on_ambiguous: MatchPolicy = MatchPolicy.FIRST,
    record_names: Optional[Sequence[Any]] = None,
) -> MappingResult:
    """Bind the rows of a dataset to taxa.

    Rules are tried in order and the first one that matches a row decides
    its taxon. Neither the taxonomy nor the primary dataset is modified.

    Args:
        taxonomy: The built tree
        primary: The primary dataset, one row per record
        record_taxon_ids: Leaf taxon ID of each primary record
        dataset: The auxiliary dataset to bind
        rules: (source, destination) selector pairs; inferred when omitted
        on_ambiguous: Policy for rows matching several records
        record_names: Names of the primary records, for ``{{name}}`` rules

    Returns:
        MappingResult holding the dataset with a ``taxon_id`` column

    Raises:
        ConfigurationError: If a rule references an unknown column or a
            positional rule joins datasets of different lengths
        AmbiguousMatchError: If ``on_ambiguous`` is ERROR and a row matches
            records bound to different taxa
    """
    frame, names = as_frame(dataset)
    records = _Records(primary, record_taxon_ids, record_names)

    if rules:
        rules = tuple(r if isinstance(r, MappingRule) else MappingRule(*r) for r in rules)
    else:
        rules = infer_rules(frame, len(records.taxon_ids))
        logger.info(f"Inferred mapping rule(s): {[(r.source, r.destination) for r in rules]}")

    # Resolve every selector before touching any row
    compiled = []
    for rule in rules:
        if rule.is_positional and frame.height != len(records.taxon_ids):
            raise ConfigurationError(
                f"Positional mapping needs equal lengths: dataset has {frame.height} rows, "
                f"primary has {len(records.taxon_ids)} records"
            )
        keys = _dataset_keys(rule.destination, frame, names, as_taxon_ids=rule.source == TAXON_ID_PLACEHOLDER)
        compiled.append((keys, _candidate_index(rule, taxonomy, records)))

    taxon_ids: List[Optional[int]] = []
    unmatched: List[int] = []
    for row in range(frame.height):
        taxon_id = None
        for keys, index in compiled:
            key = keys[row]
            candidates = index.get(key) if key is not None else None
            if candidates:
                taxon_id = _resolve(candidates, row, on_ambiguous)
                break
        if taxon_id is None:
            unmatched.append(row)
        taxon_ids.append(taxon_id)

    if unmatched:
        logger.warning(f"{len(unmatched):,} of {frame.height:,} dataset row(s) matched no taxon")
    logger.debug(f"Mapped {frame.height - len(unmatched):,} dataset row(s) to taxa")

    if TAXON_ID_COLUMN in frame.columns and all(r.destination != TAXON_ID_PLACEHOLDER for r in rules):
        logger.warning(f"Replacing existing '{TAXON_ID_COLUMN}' column of the dataset with the mapped taxon IDs")
    mapped = frame.with_columns(pl.Series(TAXON_ID_COLUMN, taxon_ids, dtype=pl.Int64))
    return MappingResult(dataset=mapped, unmatched=unmatched, rules=tuple(rules))
