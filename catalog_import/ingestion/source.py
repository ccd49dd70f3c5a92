"""
CSV Row Source
Lazy, restartable access to the rows of an uploaded CSV file.
"""

import logging
from typing import Dict, Iterator, List, Optional, Tuple

import chardet
import pandas as pd

from .errors import SourceFileError

logger = logging.getLogger(__name__)

# The header is line 1, so the first data row has index 2.
FIRST_DATA_ROW = 2


def detect_csv_encoding(file_path: str) -> str:
    """
    Detect CSV file encoding using chardet.

    Args:
        file_path: Path to CSV file

    Returns:
        Detected encoding string
    """
    try:
        with open(file_path, "rb") as f:
            raw_data = f.read(10000)  # Read first 10KB
    except OSError as e:
        raise SourceFileError(f"Cannot read source file: {e}", {"path": file_path})

    result = chardet.detect(raw_data)
    encoding = result["encoding"]
    confidence = result["confidence"] or 0.0

    # ASCII is a subset of UTF-8; a later non-ASCII byte would break a strict ascii read
    if not encoding or encoding.lower() == "ascii":
        return "utf-8"

    logger.debug(f"Detected encoding: {encoding} (confidence: {confidence:.2%})")
    return encoding


def _clean_record(record: Dict) -> Dict[str, str]:
    """Normalize a pandas record to plain stripped strings; missing cells become ''."""
    cleaned = {}
    for key, value in record.items():
        if isinstance(value, str):
            cleaned[str(key)] = value.strip()
        elif pd.isna(value):
            cleaned[str(key)] = ""
        else:
            cleaned[str(key)] = str(value).strip()
    return cleaned


class RowSource:
    """
    Finite sequence of (row_index, raw_fields) pairs over one CSV file.

    Each call to `iter_rows` opens a fresh reader, so the sequence can be
    restarted or resumed from any row index. Row indexes are 1-based and
    count the header, matching what a spreadsheet shows. Blank lines are
    dropped by the reader; rows whose cells are all empty are skipped but
    keep their index.
    """

    def __init__(self, file_path: str, chunk_size: int = 500, encoding: Optional[str] = None):
        self.file_path = file_path
        self.chunk_size = chunk_size
        self._encoding = encoding
        self._header: Optional[List[str]] = None

    @property
    def encoding(self) -> str:
        if self._encoding is None:
            self._encoding = detect_csv_encoding(self.file_path)
        return self._encoding

    def _read(self, **kwargs):
        return pd.read_csv(
            self.file_path,
            dtype=str,
            keep_default_na=False,  # Keep "N/A", "null" etc. as literal text
            encoding=self.encoding,
            skipinitialspace=True,
            **kwargs,
        )

    def read_header(self) -> List[str]:
        """
        Read and check the header line.

        Raises:
            SourceFileError: empty file, unreadable bytes or no usable columns
        """
        if self._header is not None:
            return self._header

        try:
            frame = self._read(nrows=0)
        except pd.errors.EmptyDataError:
            raise SourceFileError("Source file is empty or has no header row")
        except (pd.errors.ParserError, UnicodeDecodeError, ValueError) as e:
            raise SourceFileError(f"Source file header is unreadable: {e}")
        except OSError as e:
            raise SourceFileError(f"Cannot read source file: {e}", {"path": self.file_path})

        columns = [str(column).strip() for column in frame.columns]
        named = [column for column in columns if column and not column.startswith("Unnamed:")]
        if not named:
            raise SourceFileError("Source file header has no named columns")

        self._header = columns
        return columns

    def _chunks(self) -> Iterator[pd.DataFrame]:
        try:
            with self._read(chunksize=self.chunk_size) as reader:
                for chunk in reader:
                    yield chunk
        except pd.errors.EmptyDataError:
            return
        except (pd.errors.ParserError, UnicodeDecodeError) as e:
            raise SourceFileError(f"Malformed CSV content: {e}")

    def iter_rows(self, start_row: int = FIRST_DATA_ROW) -> Iterator[Tuple[int, Dict[str, str]]]:
        """
        Yield (row_index, raw_fields) for every non-empty row at or after `start_row`.

        Raises:
            SourceFileError: a malformed line further down the file
        """
        self.read_header()
        row_index = FIRST_DATA_ROW - 1
        for chunk in self._chunks():
            chunk.columns = [str(column).strip() for column in chunk.columns]
            for record in chunk.to_dict("records"):
                row_index += 1
                if row_index < start_row:
                    continue
                raw = _clean_record(record)
                if not any(raw.values()):
                    continue
                yield row_index, raw

    def count_rows(self, start_row: int = FIRST_DATA_ROW) -> int:
        """Pre-scan the file and count the rows `iter_rows(start_row)` will yield."""
        count = sum(1 for _ in self.iter_rows(start_row))
        logger.info(f"Pre-scan of {self.file_path}: {count} rows from row {start_row}")
        return count
