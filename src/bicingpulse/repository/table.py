from __future__ import annotations

# `csv` only supplies the quoting constant for `DataFrame.to_csv`.
import csv
from dataclasses import dataclass, field
import io
import logging
from typing import Iterable

import numpy as np
import pandas as pd

from bicingpulse.schemas.core import Snapshot, StationRecord
from bicingpulse.utils.timeutils import format_local, ms_to_iso_z


logger = logging.getLogger(__name__)


TABLE_COLUMNS = [
    "Timestamp_ISO",
    "Timestamp_Local",
    "Station_ID",
    "Station_Name",
    "Free_Bikes",
    "Empty_Slots",
    "E_Bikes",
    "Latitude",
    "Longitude",
]
TABLE_HEADER = ";".join(TABLE_COLUMNS)
DELIMITER = ";"

_COUNT_COLUMNS = ("Free_Bikes", "Empty_Slots", "E_Bikes")
_COORD_COLUMNS = ("Latitude", "Longitude")
_EPOCH = pd.Timestamp("1970-01-01", tz="UTC")


@dataclass
class SeedGroup:
    timestamp_iso: str
    captured_at_ms: int
    stations: list[StationRecord] = field(default_factory=list)


def _numeric(series: pd.Series) -> pd.Series:
    values = pd.to_numeric(series, errors="coerce")
    return values.where(np.isfinite(values), 0.0)


def read_table_frame(text: str) -> pd.DataFrame:
    """
    Read a history table into a string-typed DataFrame with `TABLE_COLUMNS`.

    Quoted fields may contain the delimiter, doubled quotes and newlines. Rows
    with more fields than columns are dropped by the parser; shorter rows are
    padded with NaN.
    """

    body = text.lstrip("﻿")
    if not body.strip():
        return pd.DataFrame(columns=TABLE_COLUMNS)
    try:
        frame = pd.read_csv(
            io.StringIO(body),
            sep=DELIMITER,
            header=None,
            names=TABLE_COLUMNS,
            index_col=False,
            dtype=str,
            keep_default_na=False,
            na_values=[""],
            skip_blank_lines=True,
            on_bad_lines="skip",
        )
    except pd.errors.ParserError:
        logger.warning("History table could not be parsed", exc_info=True)
        return pd.DataFrame(columns=TABLE_COLUMNS)

    if len(frame) and str(frame["Timestamp_ISO"].iloc[0]).startswith(TABLE_COLUMNS[0]):
        frame = frame.iloc[1:]
    return frame.reset_index(drop=True)


def parse_table(text: str) -> list[SeedGroup]:
    """
    Parse a semicolon-delimited history table into one group per unique `Timestamp_ISO`.

    - The header row and blank lines are skipped.
    - Rows without an `E_Bikes` value (fewer than 7 columns) are skipped, as are
      rows whose ISO timestamp does not parse.
    - Numeric parse failures become 0; missing `Latitude`/`Longitude` (older format) default to 0.
    - Groups keep the order in which their timestamp first appears.
    """

    raw = read_table_frame(text)
    if raw.empty:
        return []

    iso = raw["Timestamp_ISO"].fillna("").str.strip()
    captured = pd.to_datetime(iso, utc=True, errors="coerce", format="ISO8601")
    valid = raw["E_Bikes"].notna() & captured.notna()
    skipped = int((~valid).sum())
    if skipped:
        logger.warning("Skipped %s malformed history rows", skipped)

    frame = raw.loc[valid].copy()
    frame["Timestamp_ISO"] = iso[valid]
    frame["captured_at_ms"] = (captured[valid] - _EPOCH) // pd.Timedelta(milliseconds=1)
    frame["Station_ID"] = frame["Station_ID"].fillna("").str.strip()
    frame["Station_Name"] = frame["Station_Name"].fillna("")
    for col in _COUNT_COLUMNS:
        frame[col] = _numeric(frame[col]).astype("int64")
    for col in _COORD_COLUMNS:
        frame[col] = _numeric(frame[col]).astype(float)

    groups: list[SeedGroup] = []
    for timestamp_iso, rows in frame.groupby("Timestamp_ISO", sort=False):
        group = SeedGroup(timestamp_iso=str(timestamp_iso), captured_at_ms=int(rows["captured_at_ms"].iloc[0]))
        for row in rows.itertuples(index=False):
            group.stations.append(
                StationRecord(
                    id=str(row.Station_ID),
                    name=str(row.Station_Name),
                    latitude=float(row.Latitude),
                    longitude=float(row.Longitude),
                    free_bikes=int(row.Free_Bikes),
                    empty_slots=int(row.Empty_Slots),
                    timestamp=group.timestamp_iso,
                    electric_bikes=int(row.E_Bikes),
                )
            )
        groups.append(group)
    return groups


def table_frame(snapshots: Iterable[Snapshot], *, timezone: str = "UTC") -> pd.DataFrame:
    """Flatten snapshots into one row per (snapshot, station) in `TABLE_COLUMNS` order."""

    rows = [
        {
            "Timestamp_ISO": ms_to_iso_z(snapshot.captured_at_ms),
            "Timestamp_Local": format_local(snapshot.captured_at_ms, timezone),
            "Station_ID": record.id,
            "Station_Name": record.name,
            "Free_Bikes": int(record.free_bikes),
            "Empty_Slots": int(record.empty_slots),
            "E_Bikes": int(record.electric_bikes or 0),
            "Latitude": float(record.latitude),
            "Longitude": float(record.longitude),
        }
        for snapshot in snapshots
        for record in snapshot.stations
    ]
    return pd.DataFrame(rows, columns=TABLE_COLUMNS)


def format_table(snapshots: Iterable[Snapshot], *, timezone: str = "UTC") -> str:
    frame = table_frame(snapshots, timezone=timezone)
    # Every text field is quoted (embedded quotes doubled); counts and coordinates stay bare.
    body = frame.to_csv(
        sep=DELIMITER,
        header=False,
        index=False,
        quoting=csv.QUOTE_NONNUMERIC,
        lineterminator="\n",
    )
    return TABLE_HEADER + "\n" + body
