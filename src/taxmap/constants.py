"""Constants shared across taxmap."""

# Mapping selector placeholders
INDEX_PLACEHOLDER = "{{index}}"
NAME_PLACEHOLDER = "{{name}}"
TAXON_ID_PLACEHOLDER = "{{taxon_id}}"
PLACEHOLDERS = (INDEX_PLACEHOLDER, NAME_PLACEHOLDER, TAXON_ID_PLACEHOLDER)

# Column names used in datasets and persisted tables
TAXON_ID_COLUMN = "taxon_id"
PARENT_ID_COLUMN = "parent_id"
CHILD_ID_COLUMN = "child_id"
NAME_COLUMN = "name"
RANK_COLUMN = "rank"
INFO_COLUMN = "info"
VALUE_COLUMN = "value"
INPUT_COLUMN = "input"

# Name under which the primary (classification) dataset is stored
PRIMARY_DATASET = "tax_data"

SUPPORTED_FORMATS = ("csv", "parquet")
