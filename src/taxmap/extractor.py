"""Classification path extraction for taxmap.

This module turns one raw record (a string or a table row) into an ordered
list of PathElement objects, one per rank. Records are split on separators
and/or matched against an extraction regex whose capture groups are
assigned roles (taxon name, rank, info field or discard).

The configuration is validated and compiled once by ``compile_extractor``;
every configuration error is raised there, before any record is seen.
"""

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional, Pattern, Tuple

from taxmap.errors import ConfigurationError
from taxmap.types.data_classes import (
    ExtractionConfig,
    Info,
    PathElement,
    Role,
    TaxonName,
    TaxonRank,
    parse_role,
)

logger = logging.getLogger(__name__)


class _SegmentMismatch(Exception):
    """A segment did not match the extraction regex."""


def _compile_separators(config: ExtractionConfig) -> Optional[Pattern]:
    """Join all separators into a single alternation pattern."""
    if not config.separators:
        return None

    parts = []
    for sep in config.separators:
        if isinstance(sep, re.Pattern):
            parts.append(sep.pattern)
        elif isinstance(sep, str):
            if sep == "":
                raise ConfigurationError("Separators must not be empty strings")
            parts.append(sep if config.sep_is_regex else re.escape(sep))
        else:
            raise ConfigurationError(f"Separator must be a string or compiled pattern, got {sep!r}")

    try:
        return re.compile("|".join(f"(?:{part})" for part in parts))
    except re.error as e:
        raise ConfigurationError(f"Invalid separator pattern: {e}") from e


def _compile_regex(config: ExtractionConfig) -> Tuple[Optional[Pattern], Tuple[Role, ...]]:
    """Compile the extraction regex and check its roles against its groups."""
    if config.regex is None:
        if config.roles:
            raise ConfigurationError("Capture-group roles were given without an extraction regex")
        return None, ()

    if isinstance(config.regex, re.Pattern):
        pattern = config.regex
    else:
        try:
            pattern = re.compile(config.regex)
        except re.error as e:
            raise ConfigurationError(f"Invalid extraction regex {config.regex!r}: {e}") from e

    roles = tuple(parse_role(role, position) for position, role in enumerate(config.roles, start=1))
    if len(roles) != pattern.groups:
        raise ConfigurationError(
            f"Extraction regex has {pattern.groups} capture group(s) but {len(roles)} role(s) were given"
        )

    name_count = sum(1 for role in roles if isinstance(role, TaxonName))
    if name_count != 1:
        raise ConfigurationError(f"Exactly one capture group must be the taxon name, found {name_count}")
    if sum(1 for role in roles if isinstance(role, TaxonRank)) > 1:
        raise ConfigurationError("At most one capture group can be the taxon rank")

    info_names = [role.name for role in roles if isinstance(role, Info)]
    duplicates = sorted({name for name in info_names if info_names.count(name) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate info field name(s): {duplicates}")

    return pattern, roles


class CompiledExtractor:
    """A validated extraction configuration, ready to apply to records.

    Instances are stateless after construction; ``extract`` and
    ``extract_row`` are pure.
    """

    def __init__(self, config: ExtractionConfig):
        self.config = config
        self._separator = _compile_separators(config)
        self._regex, self._roles = _compile_regex(config)

        # Dispatch roles once into group positions; Discard groups are never read
        self._name_group: Optional[int] = None
        self._rank_group: Optional[int] = None
        self._info_groups: List[Tuple[int, str]] = []
        for group, role in enumerate(self._roles, start=1):
            if isinstance(role, TaxonName):
                self._name_group = group
            elif isinstance(role, TaxonRank):
                self._rank_group = group
            elif isinstance(role, Info):
                self._info_groups.append((group, role.name))

    @property
    def is_tabular(self) -> bool:
        """Return whether the configuration reads classifications from columns."""
        return bool(self.config.source_columns)

    def validate_columns(self, columns: Iterable[str]) -> None:
        """Check that every referenced column exists.

        Raises:
            ConfigurationError: If a source or name column is missing
        """
        available = set(columns)
        missing = [col for col in self.config.source_columns if col not in available]
        if self.config.name_column and self.config.name_column not in available:
            missing.append(self.config.name_column)
        if missing:
            raise ConfigurationError(f"Input data is missing referenced column(s): {missing}")

    # -------------------------------------------------------------------------
    # Text handling
    # -------------------------------------------------------------------------
    def _clean(self, text: Optional[str]) -> Optional[str]:
        """Strip a value and map missing values to None."""
        if text is None:
            return None
        if self.config.strip:
            text = text.strip()
        if text in self.config.missing_values:
            return None
        return text

    def _split(self, text: str) -> List[str]:
        """Split text on the separators, skipping zero-width matches."""
        segments = []
        start = 0
        for match in self._separator.finditer(text):
            if match.start() == match.end():
                continue
            segments.append(text[start:match.start()])
            start = match.end()
        segments.append(text[start:])
        return segments

    def _element_from_match(self, match: "re.Match", default_rank: Optional[str]) -> PathElement:
        name = self._clean(match.group(self._name_group))
        if name is None:
            raise _SegmentMismatch(match.group(0))
        rank = self._clean(match.group(self._rank_group)) if self._rank_group else None
        info = tuple((field, self._clean(match.group(group))) for group, field in self._info_groups)
        return PathElement(name=name, rank=rank if rank is not None else default_rank, info=info)

    def _elements_from_text(self, text: str, default_rank: Optional[str] = None) -> List[PathElement]:
        """Extract the path elements found in one piece of classification text."""
        if self._separator is None:
            if self._regex is None:
                name = self._clean(text)
                return [PathElement(name=name, rank=default_rank)] if name is not None else []
            return [
                self._element_from_match(match, default_rank)
                for match in self._regex.finditer(text)
                if match.end() > match.start()
            ]

        elements = []
        for segment in self._split(text):
            segment = self._clean(segment)
            if segment is None:
                continue
            if self._regex is None:
                elements.append(PathElement(name=segment, rank=default_rank))
                continue
            match = self._regex.search(segment)
            if match is None:
                raise _SegmentMismatch(segment)
            elements.append(self._element_from_match(match, default_rank))
        return elements

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    def extract(self, record: Optional[str]) -> List[PathElement]:
        """Extract the classification path of a single string record.

        A record that is missing, yields no segments, or has a segment the
        extraction regex does not match produces an empty path.
        """
        if record is None:
            return []
        try:
            path = self._elements_from_text(str(record))
        except _SegmentMismatch as e:
            logger.debug(f"Segment {e} of record {record!r} did not match the extraction regex")
            return []
        return path[::-1] if self.config.reverse else path

    def extract_row(self, row: Mapping[str, Any]) -> List[PathElement]:
        """Extract the classification path of a table row.

        The source columns are read in order and their paths concatenated.
        """
        path: List[PathElement] = []
        try:
            for column in self.config.source_columns:
                value = row.get(column)
                if value is None:
                    continue
                default_rank = column if self.config.rank_from_column else None
                path.extend(self._elements_from_text(str(value), default_rank))
        except _SegmentMismatch as e:
            logger.debug(f"Segment {e} of row {dict(row)!r} did not match the extraction regex")
            return []
        return path[::-1] if self.config.reverse else path


def compile_extractor(config: ExtractionConfig) -> CompiledExtractor:
    """Validate an extraction configuration and compile it.

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    return CompiledExtractor(config)


def extract_path(record: Any, config: ExtractionConfig) -> List[PathElement]:
    """Extract the path of one record (a string or a row mapping)."""
    extractor = compile_extractor(config)
    if isinstance(record, Mapping):
        extractor.validate_columns(record.keys())
        return extractor.extract_row(record)
    return extractor.extract(record)


def path_names(path: List[PathElement]) -> List[str]:
    """Return the names of a path, root first."""
    return [element.name for element in path]

