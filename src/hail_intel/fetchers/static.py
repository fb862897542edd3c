"""Static last-resort dataset of canned hail reports, read from CSV."""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from hail_intel.errors import SourceUnavailable
from hail_intel.models import DateRange, HailReport, SourceTier
from hail_intel.validation import parse_reports

logger = logging.getLogger(__name__)

KNOWN_STORMS_CSV = Path(__file__).resolve().parent.parent / "data" / "known_storms.csv"

REQUIRED_COLUMNS = ("latitude", "longitude", "size_inches", "timestamp")


class StaticFallbackSource:
    """Known storm days shipped as a CSV file.

    Expected columns: ``id``, ``latitude``, ``longitude``, ``size_inches``,
    ``timestamp`` (ISO-8601) and optionally ``city``.  The file is re-read on
    every fetch so it can be swapped without restarting.
    """

    tier = SourceTier.FALLBACK
    name = "Static dataset"

    def __init__(self, path: Path = KNOWN_STORMS_CSV) -> None:
        self.path = Path(path)

    def _load(self) -> pd.DataFrame:
        if not self.path.exists():
            raise SourceUnavailable(self.tier.value, "unreachable", f"{self.path} not found")
        try:
            df = pd.read_csv(self.path, dtype={"id": str})
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
            raise SourceUnavailable(self.tier.value, "malformed", str(exc)) from exc

        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise SourceUnavailable(
                self.tier.value, "malformed", f"{self.path.name} lacks columns {missing}"
            )
        return df

    def fetch(self, date_range: DateRange) -> list[HailReport]:
        df = self._load()
        # NaN cells become None so the parser treats them as absent
        rows = df.astype(object).where(pd.notna(df), None).to_dict(orient="records")
        reports = parse_reports(rows, self.tier, f"{self.name} ({self.path.name})")
        in_range = [r for r in reports if date_range.contains(r.timestamp)]
        logger.info(
            "Static dataset %s: %d rows, %d in range", self.path.name, len(reports), len(in_range)
        )
        return in_range
