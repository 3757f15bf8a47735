import polars as pl
import logging
from pathlib import Path
from typing import Optional

from taxmap.constants import SUPPORTED_FORMATS

logger = logging.getLogger(__name__)

_SUFFIX_FORMATS = {".parquet": "parquet", ".csv": "csv", ".tsv": "tsv"}


def detect_format(path) -> str:
    """
    Infer the file format from a file suffix.
    """
    suffix = Path(path).suffix.lower()
    if suffix not in _SUFFIX_FORMATS:
        raise ValueError(f"Cannot infer file format from '{path}'; expected one of {sorted(_SUFFIX_FORMATS)}")
    return _SUFFIX_FORMATS[suffix]


def read_input_file(input_file, input_format: Optional[str] = None, schema_overrides=None) -> pl.DataFrame:
    """
    Read the input file into a Polars DataFrame based on the format.
    """
    input_format = input_format or detect_format(input_file)
    logger.info(f"Reading input {input_format.upper()} file: {input_file}")
    if input_format == 'parquet':
        try:
            df = pl.read_parquet(input_file)
        except Exception as e:
            logger.error(f"Error reading Parquet file '{input_file}': {e}")
            raise
        if schema_overrides:
            df = df.with_columns([pl.col(col).cast(dtype) for col, dtype in schema_overrides.items() if col in df.columns])
        return df
    elif input_format in ('csv', 'tsv'):
        separator = ',' if input_format == 'csv' else '\t'
        try:
            return pl.read_csv(input_file, separator=separator, schema_overrides=schema_overrides)
        except Exception as e:
            logger.error(f"Error reading {input_format.upper()} file '{input_file}': {e}")
            raise
    else:
        raise ValueError(f"Unsupported input format: {input_format}")


def write_output_file(df: pl.DataFrame, output_file, output_format):
    """
    Write the Polars DataFrame to the specified output file in the desired format.
    """
    if output_format not in SUPPORTED_FORMATS:
        raise ValueError(f"Unsupported output format: {output_format}")
    try:
        Path(output_file).parent.mkdir(parents=True, exist_ok=True)
        if output_format == 'parquet':
            logger.info(f"Writing to Parquet: {output_file}")
            df.write_parquet(output_file)
        else:
            logger.info(f"Writing to CSV: {output_file}")
            df.write_csv(output_file)
    except Exception as e:
        logger.error(f"Error writing output file '{output_file}': {e}")
        raise
