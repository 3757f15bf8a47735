import re

import pytest

from taxmap.errors import ConfigurationError
from taxmap.extractor import compile_extractor, extract_path, path_names
from taxmap.types.data_classes import (
    Discard,
    ExtractionConfig,
    Info,
    PathElement,
    TaxonName,
    TaxonRank,
    parse_role,
)


class TestSeparators:
    def test_single_literal_separator(self):
        path = extract_path("A;B;C", ExtractionConfig(separators=[";"]))
        assert path_names(path) == ["A", "B", "C"]

    def test_literal_separator_is_not_a_regex(self):
        path = extract_path("A.B|C", ExtractionConfig(separators=["."]))
        assert path_names(path) == ["A", "B|C"]

    def test_multiple_separators_apply_jointly(self):
        path = extract_path("A;B|C", ExtractionConfig(separators=[";", "|"]))
        assert path_names(path) == ["A", "B", "C"]

    def test_compiled_pattern_separator(self):
        config = ExtractionConfig(separators=[re.compile(r"\s*>\s*")])
        assert path_names(extract_path("Animalia > Chordata >Mammalia", config)) == [
            "Animalia", "Chordata", "Mammalia"
        ]

    def test_string_separator_as_regex(self):
        config = ExtractionConfig(separators=["[;,]"], sep_is_regex=True)
        assert path_names(extract_path("A;B,C", config)) == ["A", "B", "C"]

    def test_empty_segments_are_dropped(self):
        path = extract_path(" A ;; B ; ", ExtractionConfig(separators=[";"]))
        assert path_names(path) == ["A", "B"]

    def test_missing_values_are_dropped(self):
        config = ExtractionConfig(separators=[";"], missing_values=frozenset({"", "NA"}))
        assert path_names(extract_path("A;NA;B", config)) == ["A", "B"]

    @pytest.mark.parametrize("record", ["", ";;", None])
    def test_record_without_segments_yields_empty_path(self, record):
        assert extract_path(record, ExtractionConfig(separators=[";"])) == []

    def test_reverse_puts_root_first(self):
        config = ExtractionConfig(separators=[";"], reverse=True)
        assert path_names(extract_path("C;B;A", config)) == ["A", "B", "C"]

    def test_no_separator_and_no_regex_uses_whole_record(self):
        assert extract_path("Homo sapiens", ExtractionConfig()) == [PathElement(name="Homo sapiens")]


class TestRegexExtraction:
    def test_name_and_rank_captures(self):
        config = ExtractionConfig(
            separators=[";"],
            regex=r"(.+)__(.+)",
            roles=[TaxonName(), TaxonRank()],
        )
        path = extract_path("Mammalia__class;Carnivora__order", config)
        assert path == [
            PathElement(name="Mammalia", rank="class"),
            PathElement(name="Carnivora", rank="order"),
        ]

    def test_roles_given_as_strings(self):
        config = ExtractionConfig(separators=[";"], regex=r"([a-z])__(.+)", roles=["taxon_rank", "taxon_name"])
        path = extract_path("k__Bacteria;p__Firmicutes", config)
        assert [(e.name, e.rank) for e in path] == [("Bacteria", "k"), ("Firmicutes", "p")]

    def test_repeated_matching_without_separator(self):
        config = ExtractionConfig(regex=r"([a-z])__([^;]+)", roles=["taxon_rank", "taxon_name"])
        path = extract_path("k__Bacteria;p__Firmicutes;c__Bacilli", config)
        assert [(e.name, e.rank) for e in path] == [
            ("Bacteria", "k"), ("Firmicutes", "p"), ("Bacilli", "c")
        ]

    def test_no_match_without_separator_yields_empty_path(self):
        config = ExtractionConfig(regex=r"([a-z])__([^;]+)", roles=["taxon_rank", "taxon_name"])
        assert extract_path("Bacteria;Firmicutes", config) == []

    def test_unmatched_segment_makes_record_unassociated(self):
        config = ExtractionConfig(separators=[";"], regex=r"(.+)__(.+)", roles=["taxon_name", "taxon_rank"])
        assert extract_path("Mammalia__class;Carnivora", config) == []

    def test_info_and_discard_captures(self):
        config = ExtractionConfig(
            separators=["|"],
            regex=r"([^(]+)\((.+)\)_(\d+)",
            roles=[TaxonName(), Info("authority"), Discard()],
        )
        path = extract_path("Canis (L.)_1|Canis lupus (L. 1758)_2", config)
        assert path[0].name == "Canis"
        assert path[0].info_dict == {"authority": "L."}
        assert path[1].name == "Canis lupus"
        assert path[1].info_dict == {"authority": "L. 1758"}

    def test_unmatched_optional_rank_group_is_none(self):
        config = ExtractionConfig(separators=[";"], regex=r"([^_]+)(?:__(.+))?", roles=["taxon_name", "taxon_rank"])
        path = extract_path("A__class;B", config)
        assert [(e.name, e.rank) for e in path] == [("A", "class"), ("B", None)]


class TestTabularRows:
    def test_columns_are_concatenated_in_order(self):
        config = ExtractionConfig(source_columns=["kingdom", "phylum"], separators=[";"])
        row = {"phylum": "Chordata;Vertebrata", "kingdom": "Animalia"}
        assert path_names(extract_path(row, config)) == ["Animalia", "Chordata", "Vertebrata"]

    def test_rank_from_column(self):
        config = ExtractionConfig(source_columns=["kingdom", "phylum"], rank_from_column=True)
        path = extract_path({"kingdom": "Animalia", "phylum": "Chordata"}, config)
        assert [(e.name, e.rank) for e in path] == [("Animalia", "kingdom"), ("Chordata", "phylum")]

    def test_null_cells_are_skipped(self):
        config = ExtractionConfig(source_columns=["kingdom", "phylum", "class"])
        path = extract_path({"kingdom": "Animalia", "phylum": None, "class": "Mammalia"}, config)
        assert path_names(path) == ["Animalia", "Mammalia"]

    def test_missing_column_is_a_configuration_error(self):
        config = ExtractionConfig(source_columns=["kingdom", "phylum"])
        with pytest.raises(ConfigurationError, match="phylum"):
            extract_path({"kingdom": "Animalia"}, config)


class TestConfigurationErrors:
    def test_group_count_must_match_roles(self):
        with pytest.raises(ConfigurationError, match="capture group"):
            compile_extractor(ExtractionConfig(regex=r"(a)(b)", roles=["taxon_name"]))

    @pytest.mark.parametrize("roles", [
        ["taxon_rank", "discard"],
        ["taxon_name", "taxon_name"],
    ])
    def test_exactly_one_taxon_name(self, roles):
        with pytest.raises(ConfigurationError, match="taxon name"):
            compile_extractor(ExtractionConfig(regex=r"(a)(b)", roles=roles))

    def test_unknown_role(self):
        with pytest.raises(ConfigurationError, match="Unknown role"):
            compile_extractor(ExtractionConfig(regex=r"(a)(b)", roles=["taxon_name", "species"]))

    def test_roles_without_regex(self):
        with pytest.raises(ConfigurationError):
            compile_extractor(ExtractionConfig(separators=[";"], roles=["taxon_name"]))

    def test_duplicate_info_fields(self):
        with pytest.raises(ConfigurationError, match="Duplicate"):
            compile_extractor(ExtractionConfig(regex=r"(a)(b)(c)", roles=["taxon_name", "info:x", "info:x"]))

    def test_invalid_regex(self):
        with pytest.raises(ConfigurationError):
            compile_extractor(ExtractionConfig(regex=r"(a", roles=["taxon_name"]))

    def test_empty_separator(self):
        with pytest.raises(ConfigurationError):
            compile_extractor(ExtractionConfig(separators=[""]))


class TestParseRole:
    def test_bare_info_is_named_after_position(self):
        assert parse_role("info", 3) == Info("info_3")

    def test_named_info(self):
        assert parse_role("info:authority", 2) == Info("authority")

    def test_role_instances_pass_through(self):
        assert parse_role(TaxonRank(), 1) == TaxonRank()

    def test_case_insensitive(self):
        assert parse_role("Taxon_Name", 1) == TaxonName()
