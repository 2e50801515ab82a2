# ABOUTME: Normalizes exported solve-history files into canonical ItemRecord objects.
# ABOUTME: Reads the app's JSON score export or flat CSV/parquet event tables.

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
import typer

from .errors import MalformedInput
from .schemas import ItemRecord, SolveEvent, ensure_utc

EVENT_COLUMNS = ["item_id", "timestamp", "score"]

app = typer.Typer(help="Convert solve-history exports into canonical event tables.")


def _to_datetime(value: Any) -> Optional[datetime]:
    """Epoch milliseconds, ISO strings, or datetimes to tz-aware UTC; None when unusable."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return _to_datetime(float(text))
        except ValueError:
            pass
        try:
            return _to_datetime(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def parse_item_record(item_id: str, payload: Mapping[str, Any]) -> ItemRecord:
    """
    Build an ItemRecord from one entry of the score export.

    Expected keys: ``solveHistory`` (list of ``{date, score}``),
    ``lastSolvedDate``, ``userReviewFlag``, ``userReviewExclude``.
    Events with unusable dates are skipped.
    """

    if not isinstance(payload, Mapping):
        raise MalformedInput(f"Item '{item_id}' must be an object, got {type(payload).__name__}.")
    raw_history = payload.get("solveHistory", [])
    if raw_history is None:
        raw_history = []
    if not isinstance(raw_history, list):
        raise MalformedInput(f"Item '{item_id}' solveHistory must be a list.")

    events: List[SolveEvent] = []
    for entry in raw_history:
        if not isinstance(entry, Mapping):
            continue
        ts = _to_datetime(entry.get("date", entry.get("timestamp")))
        if ts is None:
            continue
        events.append(SolveEvent(timestamp=ts, score=entry.get("score")))

    return ItemRecord(
        item_id=str(item_id),
        solve_history=tuple(sorted(events, key=lambda e: e.timestamp)),
        last_solved_at=_to_datetime(payload.get("lastSolvedDate")),
        review_flag=bool(payload.get("userReviewFlag", False)),
        review_exclude=bool(payload.get("userReviewExclude", False)),
    )


def records_from_export(data: Any) -> List[ItemRecord]:
    if isinstance(data, Mapping):
        return [parse_item_record(item_id, payload) for item_id, payload in data.items()]
    if isinstance(data, list):
        records = []
        for payload in data:
            if not isinstance(payload, Mapping) or "itemId" not in payload:
                raise MalformedInput("List exports need an object with 'itemId' per item.")
            records.append(parse_item_record(str(payload["itemId"]), payload))
        return records
    raise MalformedInput(f"Unsupported export root type {type(data).__name__}.")


def records_from_events(events: pd.DataFrame) -> List[ItemRecord]:
    """Group a flat ``item_id, timestamp, score`` table into item records."""

    missing = [col for col in EVENT_COLUMNS if col not in events.columns]
    if missing:
        raise MalformedInput(f"Event table missing columns: {', '.join(missing)}.")

    df = events.copy()
    if not pd.api.types.is_datetime64_any_dtype(df["timestamp"]):
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True, errors="coerce")
    df = df.dropna(subset=["timestamp"]).sort_values(["item_id", "timestamp"], kind="mergesort")

    flags = "review_flag" in df.columns
    excludes = "review_exclude" in df.columns
    records: List[ItemRecord] = []
    for item_id, item_df in df.groupby("item_id", sort=False):
        history = tuple(
            SolveEvent(timestamp=ts.to_pydatetime(), score=score)
            for ts, score in zip(item_df["timestamp"], item_df["score"])
        )
        records.append(
            ItemRecord(
                item_id=str(item_id),
                solve_history=history,
                review_flag=bool(item_df["review_flag"].fillna(False).any()) if flags else False,
                review_exclude=bool(item_df["review_exclude"].fillna(False).any()) if excludes else False,
            )
        )
    return records


def load_item_records(path: Path) -> List[ItemRecord]:
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".json":
        return records_from_export(json.loads(path.read_text(encoding="utf-8")))
    if suffix == ".parquet":
        return records_from_events(pd.read_parquet(path))
    if suffix == ".csv":
        return records_from_events(pd.read_csv(path))
    raise ValueError(f"Unsupported history file '{path}'. Expected .json, .csv, or .parquet.")


def items_to_events_frame(items: Iterable[ItemRecord]) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for item in items:
        for event in item.sorted_history:
            rows.append(
                {
                    "item_id": item.item_id,
                    "timestamp": event.timestamp,
                    "score": event.score,
                    "review_flag": item.review_flag,
                    "review_exclude": item.review_exclude,
                }
            )
    if not rows:
        return pd.DataFrame(columns=EVENT_COLUMNS + ["review_flag", "review_exclude"])
    return pd.DataFrame(rows)


@app.command()
def build(
    export: Path = typer.Option(..., exists=True, dir_okay=False, help="JSON score export."),
    events_out: Path = typer.Option(..., help="Output parquet for canonical solve events."),
) -> None:
    typer.echo(f"[data] Reading solve history from {export}")
    try:
        items = load_item_records(export)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--export") from exc

    events = items_to_events_frame(items)
    events_out.parent.mkdir(parents=True, exist_ok=True)
    typer.echo(f"[data] Writing {len(events)} events for {len(items)} items to {events_out}")
    events.to_parquet(events_out, index=False)


if __name__ == "__main__":
    app()
