"""Core data classes for taxmap.

This module defines the immutable data classes passed between the stages of
the taxmap workflow: extraction roles, extracted path elements, the taxa of
a built tree, and the declarative configuration objects for extraction and
dataset mapping.

Design Principles:
- Immutability: All classes are frozen to prevent modification after creation
- Closed variants: capture-group roles form a fixed set dispatched once
- Reference-based Relationships: Taxa refer to their parent by ID
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping, Optional, Pattern, Sequence, Tuple, Union

from taxmap.constants import PLACEHOLDERS
from taxmap.errors import ConfigurationError


# -----------------------------------------------------------------------------
# Capture-group roles
# -----------------------------------------------------------------------------
class Role:
    """Base class of the roles a regex capture group can play."""


@dataclass(frozen=True)
class TaxonName(Role):
    """The capture holds the taxon name. Required exactly once."""


@dataclass(frozen=True)
class TaxonRank(Role):
    """The capture holds the taxon rank."""


@dataclass(frozen=True)
class Info(Role):
    """The capture holds an arbitrary named info field."""
    name: str


@dataclass(frozen=True)
class Discard(Role):
    """The capture is matched but not kept."""


def parse_role(value: Union[Role, str], position: int) -> Role:
    """Convert a role given as a string into its variant.

    Accepted strings are ``taxon_name``, ``taxon_rank``, ``discard``,
    ``info`` (field named ``info_<position>``) and ``info:<field>``.

    Args:
        value: A Role instance or its string form
        position: 1-based capture-group position, used to name bare ``info``

    Raises:
        ConfigurationError: If the string is not a known role
    """
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        raise ConfigurationError(f"Role for capture group {position} must be a string or Role, got {value!r}")

    text = value.strip()
    lowered = text.lower()
    if lowered == "taxon_name":
        return TaxonName()
    if lowered == "taxon_rank":
        return TaxonRank()
    if lowered == "discard":
        return Discard()
    if lowered == "info":
        return Info(name=f"info_{position}")
    if lowered.startswith("info:"):
        info_name = text.split(":", 1)[1].strip()
        if not info_name:
            raise ConfigurationError(f"Info role for capture group {position} has an empty field name")
        return Info(name=info_name)
    raise ConfigurationError(f"Unknown role for capture group {position}: {value!r}")


# -----------------------------------------------------------------------------
# Extraction output and tree nodes
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class PathElement:
    """One rank-level segment of a record's classification."""
    name: str
    rank: Optional[str] = None
    info: Tuple[Tuple[str, Optional[str]], ...] = ()

    @property
    def info_dict(self) -> Dict[str, Optional[str]]:
        """Return the info fields as a dictionary."""
        return dict(self.info)


@dataclass(frozen=True)
class Taxon:
    """A single node of the taxonomic tree.

    Taxa are created once during a build and never modified afterwards;
    ``info`` is stored as a read-only mapping.
    """
    taxon_id: int
    name: str
    rank: Optional[str] = None
    info: Mapping[str, Optional[str]] = field(default_factory=dict, hash=False)
    parent_id: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "info", MappingProxyType(dict(self.info)))

    def __reduce__(self):
        return (Taxon, (self.taxon_id, self.name, self.rank, dict(self.info), self.parent_id))

    @property
    def is_root(self) -> bool:
        """Return whether the taxon has no parent."""
        return self.parent_id is None

    def to_dict(self) -> Dict[str, object]:
        """Convert the taxon to a dictionary."""
        return {
            "taxon_id": self.taxon_id,
            "name": self.name,
            "rank": self.rank,
            "info": dict(self.info),
            "parent_id": self.parent_id,
        }


@dataclass(frozen=True)
class TaxonConflict:
    """A rank or info value ignored because the taxon already had another.

    Values follow first-write-wins: the first occurrence of a taxon fixes
    its attributes and later differing values are only reported.
    """
    taxon_id: int
    field: str
    kept: Optional[str]
    ignored: Optional[str]
    record_index: int


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
Separator = Union[str, Pattern]


@dataclass(frozen=True)
class ExtractionConfig:
    """Declarative configuration of how records become classification paths.

    Attributes:
        separators: Split points between ranks. Strings are literals unless
            ``sep_is_regex`` is set; compiled patterns are always regexes.
            All separators apply jointly.
        sep_is_regex: Treat string separators as regular expressions
        regex: Optional extraction pattern with capture groups
        roles: One role per capture group of ``regex``
        source_columns: Columns carrying classification text (tabular input)
        reverse: Input lists the most specific rank first
        rank_from_column: Use the source column name as the rank when no
            rank is captured (tabular input)
        strip: Trim whitespace around segments and captures
        missing_values: Segment values treated as absent
        name_column: Column holding record names (tabular input)
    """
    separators: Sequence[Separator] = ()
    sep_is_regex: bool = False
    regex: Optional[Union[str, Pattern]] = None
    roles: Sequence[Union[Role, str]] = ()
    source_columns: Sequence[str] = ()
    reverse: bool = False
    rank_from_column: bool = False
    strip: bool = True
    missing_values: FrozenSet[str] = frozenset({""})
    name_column: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        """Return a JSON-friendly description, used for cache keys and manifests."""
        def _pattern(value):
            return value.pattern if isinstance(value, re.Pattern) else value

        return {
            "separators": [
                {"pattern": _pattern(sep), "regex": isinstance(sep, re.Pattern) or self.sep_is_regex}
                for sep in self.separators
            ],
            "regex": _pattern(self.regex),
            "roles": [role if isinstance(role, str) else repr(role) for role in self.roles],
            "source_columns": list(self.source_columns),
            "reverse": self.reverse,
            "rank_from_column": self.rank_from_column,
            "strip": self.strip,
            "missing_values": sorted(self.missing_values),
            "name_column": self.name_column,
        }


class MatchPolicy(Enum):
    """How a dataset row matching several primary records is resolved."""
    FIRST = "first"  # earliest matching record in input order
    ERROR = "error"  # raise when candidates are bound to different taxa


@dataclass(frozen=True)
class MappingRule:
    """Locates auxiliary dataset rows against the primary dataset's records.

    ``source`` selects a key on the primary dataset and ``destination`` the
    key on the auxiliary dataset. Either is a column name or one of the
    ``{{index}}``, ``{{name}}`` and ``{{taxon_id}}`` placeholders.
    """
    source: str
    destination: str

    @property
    def is_positional(self) -> bool:
        """Return whether the rule aligns rows by position on both sides."""
        return self.source == PLACEHOLDERS[0] and self.destination == PLACEHOLDERS[0]

    @classmethod
    def parse(cls, text: str) -> "MappingRule":
        """Parse ``source=destination``; a bare selector is used for both sides."""
        if "=" in text:
            source, destination = text.split("=", 1)
        else:
            source = destination = text
        source, destination = source.strip(), destination.strip()
        if not source or not destination:
            raise ConfigurationError(f"Invalid mapping rule: {text!r}")
        return cls(source=source, destination=destination)
