"""Output generation for taxmap.

This module persists a TaxMap as plain tables and reads it back:

- ``taxa.<fmt>``: taxon_id, name, rank, parent_id and info (JSON)
- ``edges.<fmt>``: the (parent_id, child_id) edge list
- ``datasets/<name>.<fmt>``: every bound dataset with its taxon_id column
- a JSON manifest listing the files and the primary dataset's metadata

These tables are sufficient to reconstruct every query result.
"""

import inspect
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import polars as pl

from taxmap import __version__
from taxmap.constants import (
    CHILD_ID_COLUMN,
    INFO_COLUMN,
    NAME_COLUMN,
    PARENT_ID_COLUMN,
    RANK_COLUMN,
    TAXON_ID_COLUMN,
)
from taxmap.data_handler import read_input_file, write_output_file
from taxmap.tax_map import TaxMap
from taxmap.taxonomy import Taxonomy
from taxmap.types.data_classes import Taxon

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "taxmap_manifest.json"
TAXA_BASENAME = "taxa"
EDGES_BASENAME = "edges"
DATASETS_DIRNAME = "datasets"

TAXA_SCHEMA = {
    TAXON_ID_COLUMN: pl.Int64,
    NAME_COLUMN: pl.Utf8,
    RANK_COLUMN: pl.Utf8,
    PARENT_ID_COLUMN: pl.Int64,
    INFO_COLUMN: pl.Utf8,
}
EDGES_SCHEMA = {PARENT_ID_COLUMN: pl.Int64, CHILD_ID_COLUMN: pl.Int64}


def _dtype_names(frame: pl.DataFrame) -> Dict[str, str]:
    """Return the dtype name of each column, as stored in the manifest."""
    return {column: str(dtype) for column, dtype in frame.schema.items()}


def _schema_from_names(dtype_names: Dict[str, str]) -> Dict[str, Any]:
    """Map stored dtype names back to polars dtypes.

    Parametrized and all-null dtypes are left to schema inference.
    """
    schema = {}
    for column, name in dtype_names.items():
        dtype = getattr(pl, name, None)
        if name != "Null" and inspect.isclass(dtype) and issubclass(dtype, pl.DataType):
            schema[column] = dtype
    return schema


def taxonomy_to_frames(taxonomy: Taxonomy) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """Convert a taxonomy to its attribute table and edge list."""
    taxa = list(taxonomy)
    taxa_df = pl.DataFrame(
        {
            TAXON_ID_COLUMN: [t.taxon_id for t in taxa],
            NAME_COLUMN: [t.name for t in taxa],
            RANK_COLUMN: [t.rank for t in taxa],
            PARENT_ID_COLUMN: [t.parent_id for t in taxa],
            INFO_COLUMN: [json.dumps(dict(t.info), sort_keys=True) for t in taxa],
        },
        schema=TAXA_SCHEMA,
    )
    edges = taxonomy.edges()
    edges_df = pl.DataFrame(
        {
            PARENT_ID_COLUMN: [parent for parent, _ in edges],
            CHILD_ID_COLUMN: [child for _, child in edges],
        },
        schema=EDGES_SCHEMA,
    )
    return taxa_df, edges_df


def taxonomy_from_frames(taxa_df: pl.DataFrame, edges_df: pl.DataFrame) -> Taxonomy:
    """Rebuild a taxonomy from its attribute table and edge list."""
    taxa = [
        Taxon(
            taxon_id=row[TAXON_ID_COLUMN],
            name=row[NAME_COLUMN],
            rank=row[RANK_COLUMN],
            info=json.loads(row[INFO_COLUMN]) if row[INFO_COLUMN] else {},
            parent_id=row[PARENT_ID_COLUMN],
        )
        for row in taxa_df.iter_rows(named=True)
    ]
    edges = list(zip(edges_df[PARENT_ID_COLUMN].to_list(), edges_df[CHILD_ID_COLUMN].to_list()))
    return Taxonomy.from_edges(taxa, edges)


def write_output_manifest(output_dir: str, files: List[str], metadata: Optional[Dict[str, Any]] = None) -> str:
    """Write the manifest listing every file of a persisted TaxMap.

    Args:
        output_dir: Directory the files were written to
        files: Paths of the written files, stored relative to output_dir
        metadata: Additional fields to store in the manifest

    Returns:
        Path of the manifest file
    """
    output_dir_path = Path(output_dir)
    output_dir_path.mkdir(parents=True, exist_ok=True)
    manifest = {
        "taxmap_version": __version__,
        "created_at": datetime.now().isoformat(),
        "files": [os.path.relpath(f, output_dir) for f in files],
    }
    if metadata:
        manifest.update(metadata)
    manifest_path = output_dir_path / MANIFEST_FILENAME
    manifest_path.write_text(json.dumps(manifest, indent=4, default=str))
    logger.info(f"Manifest written to {manifest_path}")
    return str(manifest_path)


def load_manifest(output_dir: str) -> Optional[Dict[str, Any]]:
    """Return the parsed manifest, or None if it is missing or corrupt."""
    manifest_path = Path(output_dir) / MANIFEST_FILENAME
    if not manifest_path.exists():
        return None
    try:
        return json.loads(manifest_path.read_text())
    except json.JSONDecodeError as e:
        logger.warning(f"Could not parse manifest {manifest_path}: {e}")
        return None


def read_output_manifest(output_dir: str) -> List[str]:
    """Return the absolute paths of the files listed in the manifest."""
    manifest = load_manifest(output_dir)
    if manifest is None:
        return []
    return [str(Path(output_dir) / f) for f in manifest.get("files", [])]


def write_taxmap(taxmap: TaxMap, output_dir: str, output_format: str = "parquet") -> List[str]:
    """Persist a TaxMap to a directory.

    Args:
        taxmap: The TaxMap to write
        output_dir: Directory to save output files
        output_format: Output file format (parquet or csv)

    Returns:
        List of written file paths, manifest included
    """
    output_dir_path = Path(output_dir)
    output_dir_path.mkdir(parents=True, exist_ok=True)

    taxa_df, edges_df = taxonomy_to_frames(taxmap.taxonomy)
    taxa_path = output_dir_path / f"{TAXA_BASENAME}.{output_format}"
    edges_path = output_dir_path / f"{EDGES_BASENAME}.{output_format}"
    write_output_file(taxa_df, taxa_path, output_format)
    write_output_file(edges_df, edges_path, output_format)
    written = [str(taxa_path), str(edges_path)]

    dataset_files = {}
    dataset_schemas = {}
    for name, frame in taxmap.datasets.items():
        dataset_path = output_dir_path / DATASETS_DIRNAME / f"{name}.{output_format}"
        write_output_file(frame, dataset_path, output_format)
        dataset_files[name] = str(dataset_path.relative_to(output_dir_path))
        dataset_schemas[name] = _dtype_names(frame)
        written.append(str(dataset_path))

    manifest_path = write_output_manifest(
        output_dir,
        written,
        metadata={
            "output_format": output_format,
            "primary_dataset": taxmap.primary_name,
            "record_names": taxmap.record_names,
            "datasets": dataset_files,
            "dataset_schemas": dataset_schemas,
            "n_taxa": len(taxmap.taxonomy),
            "n_conflicts": len(taxmap.conflicts),
        },
    )
    written.append(manifest_path)
    logger.info(f"Wrote {len(taxmap.taxonomy):,} taxa and {len(dataset_files)} dataset(s) to {output_dir}")
    return written


def read_taxmap(output_dir: str) -> TaxMap:
    """Reconstruct a TaxMap written by ``write_taxmap``.

    Rank/info conflicts of the original build are not persisted.

    Raises:
        FileNotFoundError: If the directory holds no manifest
    """
    manifest = load_manifest(output_dir)
    if manifest is None:
        raise FileNotFoundError(f"No taxmap manifest found in {output_dir}")

    output_dir_path = Path(output_dir)
    output_format = manifest["output_format"]
    taxa_df = read_input_file(output_dir_path / f"{TAXA_BASENAME}.{output_format}", output_format, TAXA_SCHEMA)
    edges_df = read_input_file(output_dir_path / f"{EDGES_BASENAME}.{output_format}", output_format, EDGES_SCHEMA)
    taxonomy = taxonomy_from_frames(taxa_df, edges_df)

    schemas = manifest.get("dataset_schemas", {})
    datasets = {}
    for name, rel_path in manifest["datasets"].items():
        schema = _schema_from_names(schemas.get(name, {}))
        schema[TAXON_ID_COLUMN] = pl.Int64
        datasets[name] = read_input_file(output_dir_path / rel_path, output_format, schema)
    primary_name = manifest["primary_dataset"]
    taxmap = TaxMap(
        taxonomy,
        datasets.pop(primary_name),
        record_names=manifest.get("record_names"),
        primary_name=primary_name,
    )
    for name, frame in datasets.items():
        taxmap.add_mapped_dataset(name, frame)
    return taxmap
