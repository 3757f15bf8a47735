import json
import logging

import pytest

from taxmap.cli import create_parser, main
from taxmap.config import config


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    cache_dir = tmp_path / "cache"
    monkeypatch.setattr(config, "cache_base_dir", str(cache_dir))
    monkeypatch.setattr(config, "cache_dir", str(cache_dir))
    monkeypatch.setattr(config, "output_format", "parquet")
    monkeypatch.setattr(config, "progress", True)
    monkeypatch.setattr(config, "log_level", "INFO")
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def records_file(tmp_path):
    path = tmp_path / "records.csv"
    path.write_text(
        "sample,lineage\n"
        "s1,Animalia;Chordata;Mammalia\n"
        "s2,Animalia;Chordata;Aves\n"
        "s3,Plantae\n"
    )
    return path


def _build(records_file, out_dir, *extra):
    return main([
        "build",
        "-i", str(records_file),
        "-o", str(out_dir),
        "--column", "lineage",
        "--sep", ";",
        "--output-format", "csv",
        "--no-progress",
        *extra,
    ])


def _query_json(capsys, out_dir, *args):
    capsys.readouterr()
    assert main(["query", "-d", str(out_dir), *args, "--format", "json"]) == 0
    return json.loads(capsys.readouterr().out)


class TestParser:
    def test_build_arguments(self):
        args = create_parser().parse_args([
            "build", "-i", "in.csv", "-o", "out",
            "--column", "kingdom", "--column", "phylum",
            "--sep", ";", "--sep", "|",
        ])
        assert args.columns == ["kingdom", "phylum"]
        assert args.separators == [";", "|"]
        assert args.refresh_cache is False

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            main([])


class TestBuildAndQuery:
    def test_build_reports_summary(self, records_file, tmp_path, capsys):
        assert _build(records_file, tmp_path / "out") == 0
        out = capsys.readouterr().out
        assert "Taxa: 5" in out
        assert "Records: 3 (0 unassociated)" in out
        assert (tmp_path / "out" / "taxa.csv").exists()

    def test_query_roots_and_subtaxa(self, records_file, tmp_path, capsys):
        out_dir = tmp_path / "out"
        assert _build(records_file, out_dir) == 0

        roots = _query_json(capsys, out_dir, "roots")
        assert [taxon["name"] for taxon in roots] == ["Animalia", "Plantae"]

        subtaxa = _query_json(capsys, out_dir, "subtaxa", "--taxon", "1")
        assert [taxon["name"] for taxon in subtaxa] == ["Chordata", "Mammalia", "Aves"]

        supertaxa = _query_json(capsys, out_dir, "supertaxa", "--taxon", "3", "--include-self")
        assert [taxon["taxon_id"] for taxon in supertaxa] == [3, 2, 1]

    def test_query_text_output(self, records_file, tmp_path, capsys):
        out_dir = tmp_path / "out"
        assert _build(records_file, out_dir) == 0
        capsys.readouterr()
        assert main(["query", "-d", str(out_dir), "leaves"]) == 0
        lines = capsys.readouterr().out.strip().splitlines()
        assert lines[0].split("\t")[:2] == ["3", "Mammalia"]

    def test_query_requires_taxon(self, records_file, tmp_path):
        out_dir = tmp_path / "out"
        assert _build(records_file, out_dir) == 0
        assert main(["query", "-d", str(out_dir), "subtaxa"]) == 1

    def test_unknown_taxon_fails(self, records_file, tmp_path):
        out_dir = tmp_path / "out"
        assert _build(records_file, out_dir) == 0
        assert main(["query", "-d", str(out_dir), "subtaxa", "--taxon", "99"]) == 1

    def test_missing_column_fails(self, records_file, tmp_path):
        assert main([
            "build", "-i", str(records_file), "-o", str(tmp_path / "out"),
            "--column", "nope", "--no-progress",
        ]) == 1


class TestAttach:
    def test_attach_and_query_observations(self, records_file, tmp_path, capsys):
        out_dir = tmp_path / "out"
        assert _build(records_file, out_dir) == 0

        counts = tmp_path / "counts.csv"
        counts.write_text("count\n10\n20\n30\n")
        assert main([
            "attach", "-d", str(out_dir), "-i", str(counts),
            "--name", "counts", "--rule", "{{index}}",
        ]) == 0
        assert "Mapped 3 of 3 rows" in capsys.readouterr().out

        rows = _query_json(capsys, out_dir, "observations", "--taxon", "2", "--dataset", "counts")
        assert [row["count"] for row in rows] == [10, 20]

    def test_attach_by_column(self, records_file, tmp_path, capsys):
        out_dir = tmp_path / "out"
        assert _build(records_file, out_dir) == 0

        traits = tmp_path / "traits.csv"
        traits.write_text("id,mass\ns3,1.5\ns9,2.0\n")
        assert main([
            "attach", "-d", str(out_dir), "-i", str(traits),
            "--name", "traits", "--rule", "sample=id",
        ]) == 0
        out = capsys.readouterr().out
        assert "Mapped 1 of 2 rows" in out
        assert "Unmatched rows (1): 1" in out

    def test_attach_requires_a_build(self, tmp_path):
        data = tmp_path / "data.csv"
        data.write_text("x\n1\n")
        assert main(["attach", "-d", str(tmp_path / "missing"), "-i", str(data), "--name", "x"]) == 1
