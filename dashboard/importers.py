"""CSV and Excel importers for transaction exports."""
from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Iterator, Optional
from uuid import NAMESPACE_URL, uuid5

import pandas as pd

from .errors import ValidationError
from .models import TransactionRecord
from .parsing import clean_string, transaction_from_row

logger = logging.getLogger(__name__)

_COLUMN_ALIASES = {
    "transaction_id": "id",
    "value": "amount",
    "kind": "type",
    "transaction_type": "type",
    "occurred_on": "date",
    "transaction_date": "date",
    "note": "description",
    "memo": "description",
}


class TransactionFileImporter:
    """Load transactions from a CSV or Excel export.

    The importer performs three tasks:

    1. Read the file into a :class:`~pandas.DataFrame` with every column as
       text, so amounts keep their exact decimal representation.
    2. Normalise column names (``transaction_date`` -> ``date`` and so on).
    3. Convert every row into a :class:`TransactionRecord`, skipping rows that
       fail validation.  Rows without an ``id`` get a UUID derived from their
       content, so importing the same export twice updates rather than
       duplicates.  Identical rows within one file are numbered apart.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.skipped = 0

    def load(self, sheet_name: Optional[str] = None) -> list[TransactionRecord]:
        dataframe = self._read(sheet_name)
        records = list(self._iter_records(dataframe))
        logger.info("Imported %d transactions from %s (%d skipped)", len(records), self.path, self.skipped)
        return records

    def _read(self, sheet_name: Optional[str]) -> pd.DataFrame:
        if self.path.suffix.lower() in {".xlsx", ".xls"}:
            dataframe = pd.read_excel(self.path, sheet_name=sheet_name or 0, dtype=str)
        else:
            dataframe = pd.read_csv(self.path, dtype=str)
        dataframe.columns = [_normalise_column(column) for column in dataframe.columns]
        return dataframe

    def _iter_records(self, dataframe: pd.DataFrame) -> Iterator[TransactionRecord]:
        self.skipped = 0
        occurrences: Counter[str] = Counter()
        for index, row in dataframe.iterrows():
            payload = row.fillna("").to_dict()
            if not clean_string(payload.get("id")):
                fingerprint = _row_fingerprint(payload)
                occurrences[fingerprint] += 1
                payload["id"] = str(uuid5(NAMESPACE_URL, f"{fingerprint}#{occurrences[fingerprint]}"))
            try:
                yield transaction_from_row(payload)
            except ValidationError as exc:
                self.skipped += 1
                logger.warning("Skipping row %s of %s: %s", index, self.path.name, exc)


def _row_fingerprint(payload: dict[str, object]) -> str:
    fields = ("date", "amount", "type", "category", "description")
    return "|".join(clean_string(payload.get(name)) for name in fields)


def _normalise_column(column: object) -> str:
    name = str(column).strip().lower().replace(" ", "_")
    return _COLUMN_ALIASES.get(name, name)
