"""
Tabular file parser for uploaded import files

Turns delimited text or spreadsheet uploads into a TabularSource:
- Encoding detection with chardet and common fallbacks
- Delimiter detection with csv.Sniffer
- pandas-backed reading with every cell kept as text until tagging
"""
import csv
import io
import zipfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

import chardet
import pandas as pd
import structlog

from ..config import settings
from ..error_handler import IngestionError
from .tabular_source import TabularSource

logger = structlog.get_logger(__name__)

EXCEL_EXTENSIONS = {'.xlsx', '.xlsm'}
TEXT_EXTENSIONS = {'.csv', '.txt', '.tsv'}


class TabularParser:
    """Parser for CSV and Excel uploads"""

    def __init__(self, max_rows: Optional[int] = None):
        self.max_rows = max_rows or settings.max_rows_per_file
        self.encoding_sample_bytes = settings.encoding_sample_bytes

    def parse_file(self, path: Union[str, Path]) -> TabularSource:
        """Parse a file on disk"""
        file_path = Path(path)
        if not file_path.exists():
            raise IngestionError(f"File {file_path} does not exist")

        size_mb = file_path.stat().st_size / 1024 / 1024
        if size_mb > settings.max_file_size_mb:
            raise IngestionError(
                f"File is {size_mb:.1f} MB, limit is {settings.max_file_size_mb} MB"
            )

        return self.parse_bytes(file_path.read_bytes(), file_path.name)

    def parse_bytes(self, data: bytes, file_name: str) -> TabularSource:
        """Parse raw upload bytes, choosing the reader by file extension"""
        if not data:
            raise IngestionError("Empty file")

        extension = Path(file_name).suffix.lower()
        logger.info("Parsing upload", file_name=file_name, size_bytes=len(data))

        if extension == '.xls':
            raise IngestionError("Legacy .xls workbooks are not supported, save the file as .xlsx")
        if extension in EXCEL_EXTENSIONS:
            frame = self._read_excel(data)
            metadata: Dict[str, Any] = {'sheet': 0}
            file_type = 'excel'
        else:
            encoding_result = self._detect_encoding(data)
            text = self._decode(data, encoding_result['encoding'])
            delimiter = '\t' if extension == '.tsv' else self._detect_delimiter(text)
            frame = self._read_delimited(text, delimiter)
            metadata = {
                'encoding': encoding_result['encoding'],
                'encoding_confidence': encoding_result['confidence'],
                'delimiter': delimiter,
            }
            file_type = 'csv'

        if frame.empty and len(frame.columns) == 0:
            raise IngestionError("Empty file")

        if len(frame) > self.max_rows:
            raise IngestionError(
                f"File has {len(frame)} rows, limit is {self.max_rows}"
            )

        source = TabularSource.from_rows(
            headers=list(frame.columns),
            rows=frame.itertuples(index=False, name=None),
            file_name=file_name,
            file_type=file_type,
            metadata=metadata,
        )

        logger.info(
            "Upload parsed",
            file_name=file_name,
            columns=len(source.headers),
            total_rows=source.total_rows,
            **metadata
        )
        return source

    def _detect_encoding(self, data: bytes) -> Dict[str, Any]:
        """Detect file encoding using chardet"""
        sample = data[:min(len(data), self.encoding_sample_bytes)]
        result = chardet.detect(sample)

        encoding = result.get('encoding') or 'utf-8'
        confidence = result.get('confidence') or 0.0

        # Fallback to common encodings if confidence is low
        if confidence < 0.7:
            for test_encoding in ['utf-8', 'latin-1', 'cp1252', 'iso-8859-1']:
                try:
                    sample.decode(test_encoding)
                    return {"encoding": test_encoding, "confidence": 0.8}
                except UnicodeDecodeError:
                    continue

        return {"encoding": encoding, "confidence": confidence}

    def _decode(self, data: bytes, encoding: str) -> str:
        try:
            text = data.decode(encoding)
        except (UnicodeDecodeError, LookupError) as e:
            logger.warning("Encoding detection failed, trying fallback",
                           encoding=encoding, error=str(e))
            text = data.decode('utf-8', errors='replace')
        return text.lstrip('\ufeff')

    def _detect_delimiter(self, text: str) -> str:
        """Detect delimiter with csv.Sniffer, falling back to counting"""
        sample_lines = [line for line in text.splitlines()[:50] if line.strip()]
        if not sample_lines:
            raise IngestionError("Empty file")

        try:
            return csv.Sniffer().sniff('\n'.join(sample_lines), delimiters=',;|\t').delimiter
        except csv.Error:
            counts = {
                candidate: sum(line.count(candidate) for line in sample_lines[:10])
                for candidate in [',', ';', '|', '\t']
            }
            best = max(counts, key=counts.get)
            return best if counts[best] > 0 else ','

    def _read_delimited(self, text: str, delimiter: str) -> pd.DataFrame:
        try:
            return pd.read_csv(
                io.StringIO(text),
                sep=delimiter,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                skipinitialspace=True,
            )
        except pd.errors.EmptyDataError:
            raise IngestionError("Empty file") from None
        except pd.errors.ParserError as e:
            raise IngestionError(f"Could not parse delimited file: {e}") from e

    def _read_excel(self, data: bytes) -> pd.DataFrame:
        try:
            return pd.read_excel(io.BytesIO(data), sheet_name=0, dtype=str, engine='openpyxl')
        except (ValueError, zipfile.BadZipFile) as e:
            raise IngestionError(f"Could not read spreadsheet: {e}") from e


# Global parser instance
tabular_parser = TabularParser()
