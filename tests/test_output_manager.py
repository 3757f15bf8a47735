import json
from pathlib import Path

import polars as pl
import pytest

from taxmap import build
from taxmap.output_manager import (
    MANIFEST_FILENAME,
    read_output_manifest,
    read_taxmap,
    write_output_manifest,
    write_taxmap,
)
from taxmap.types.data_classes import ExtractionConfig


def test_write_output_manifest_creates_file(tmp_path):
    files = [str(tmp_path / "taxa.parquet"), str(tmp_path / "edges.parquet")]
    manifest_path = write_output_manifest(str(tmp_path), files)

    assert Path(manifest_path).exists()
    assert Path(manifest_path).name == MANIFEST_FILENAME


def test_write_output_manifest_stores_relative_paths(tmp_path):
    files = [str(tmp_path / "taxa.parquet"), str(tmp_path / "datasets" / "tax_data.csv")]
    write_output_manifest(str(tmp_path), files)

    manifest = json.loads((tmp_path / MANIFEST_FILENAME).read_text())
    assert "taxa.parquet" in manifest["files"]
    assert str(Path("datasets") / "tax_data.csv") in manifest["files"]
    for f in manifest["files"]:
        assert not Path(f).is_absolute()


def test_read_output_manifest_returns_absolute_paths(tmp_path):
    files = [str(tmp_path / "taxa.parquet"), str(tmp_path / "edges.parquet")]
    write_output_manifest(str(tmp_path), files)

    result = read_output_manifest(str(tmp_path))
    assert sorted(result) == sorted(files)


def test_read_output_manifest_returns_empty_when_missing(tmp_path):
    assert read_output_manifest(str(tmp_path)) == []


def test_read_output_manifest_returns_empty_on_corrupt_json(tmp_path):
    (tmp_path / MANIFEST_FILENAME).write_text("not valid json{{{")
    assert read_output_manifest(str(tmp_path)) == []


def test_read_taxmap_without_manifest(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_taxmap(str(tmp_path))


@pytest.fixture
def taxmap():
    config = ExtractionConfig(
        separators=[";"],
        regex=r"([^_]+)__([^_]+)(?:__(.+))?",
        roles=["taxon_name", "taxon_rank", "info:authority"],
    )
    taxmap = build(
        {
            "s1": "Animalia__kingdom;Chordata__phylum__Haeckel",
            "s2": "Animalia__kingdom;Arthropoda__phylum",
            "s3": "",
        },
        config,
    )
    taxmap.attach("counts", pl.DataFrame({"count": [3, 1, 9]}))
    return taxmap


@pytest.mark.parametrize("output_format", ["parquet", "csv"])
def test_taxmap_round_trip(tmp_path, taxmap, output_format):
    written = write_taxmap(taxmap, str(tmp_path), output_format)
    assert all(Path(f).exists() for f in written)
    assert sorted(read_output_manifest(str(tmp_path))) == sorted(written[:-1])

    restored = read_taxmap(str(tmp_path))

    assert restored.taxonomy.edges() == taxmap.taxonomy.edges()
    for taxon_id in taxmap.taxonomy.taxon_ids():
        assert restored.subtaxa(taxon_id) == taxmap.subtaxa(taxon_id)
        assert restored.supertaxa(taxon_id) == taxmap.supertaxa(taxon_id)
        assert restored.taxonomy.taxon(taxon_id) == taxmap.taxonomy.taxon(taxon_id)

    assert restored.record_names == ["s1", "s2", "s3"]
    assert restored.record_taxon_ids == [2, 3, None]
    assert restored.dataset_names == ["tax_data", "counts"]
    assert restored.dataset("counts")["taxon_id"].to_list() == [2, 3, None]
    assert restored.taxonomy.taxon(2).info == {"authority": "Haeckel"}


@pytest.mark.parametrize("output_format", ["parquet", "csv"])
def test_round_trip_keeps_column_types(tmp_path, output_format):
    records = pl.DataFrame({
        "lineage": ["A;B", "A;C"],
        "my_id": ["001", "002"],
        "present": [True, False],
    })
    taxmap = build(records, ExtractionConfig(separators=[";"], source_columns=["lineage"]))
    taxmap.attach("scores", pl.DataFrame({"code": ["010", "020"], "score": [1.5, 2.0]}))
    write_taxmap(taxmap, str(tmp_path), output_format)

    restored = read_taxmap(str(tmp_path))

    assert restored.primary.schema == taxmap.primary.schema
    assert restored.primary["my_id"].to_list() == ["001", "002"]
    assert restored.dataset("scores").schema == taxmap.dataset("scores").schema
    result = restored.attach("traits", pl.DataFrame({"id": ["002"]}), rules=[("my_id", "id")])
    assert result.dataset["taxon_id"].to_list() == [3]
