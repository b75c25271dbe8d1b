# influx_datasource/response_parser.py
import json
import re
from typing import List, Union

import pandas as pd
from mlrun.utils import logger

from .backend import DataResponse
from .errors import ServerError
from .models import DEFAULT_MAX_SERIES, Query

_ALIAS_PATTERN = re.compile(r"\$(\s*[@\w-]+?)\b|\[\[([\s\S]+?)\]\]")


def parse(
    body: Union[bytes, str],
    status_code: int,
    query: Query,
    max_series: int = DEFAULT_MAX_SERIES,
    reason: str = "",
) -> DataResponse:
    """
    Turn an InfluxDB /query answer into frames for `query.ref_id`.

    Every series becomes one frame; series beyond `max_series` are dropped
    without raising. A query that produced no series still returns one empty
    frame so the host can tell "no data" from "not executed".
    """
    if not 200 <= status_code < 300:
        return DataResponse(error=ServerError(_error_message(body, status_code, reason), status_code))

    try:
        payload = json.loads(body) if body else {}
    except ValueError as e:
        return DataResponse(error=ServerError(f"failed to decode InfluxDB response: {e}", status_code))
    if not isinstance(payload, dict):
        return DataResponse(error=ServerError("unexpected InfluxDB response shape", status_code))

    if payload.get("error"):
        return DataResponse(error=ServerError(payload["error"], status_code))

    series = []
    for result in payload.get("results") or []:
        if result.get("error"):
            return DataResponse(error=ServerError(result["error"], status_code))
        series.extend(result.get("series") or [])

    if max_series and len(series) > max_series:
        logger.warning(
            "Max series reached, dropping remaining series",
            ref_id=query.ref_id,
            max_series=max_series,
            returned=len(series),
        )
        series = series[:max_series]

    if query.result_format == "table" and series:
        frames = [_table_frame(series, query)]
    else:
        frames = [_series_frame(row, query) for row in series]

    if not frames:
        frames = [_new_frame(pd.DataFrame({"time": pd.Series([], dtype="datetime64[ns, UTC]")}), query.ref_id, query)]

    return DataResponse(frames=frames)


def _error_message(body, status_code: int, reason: str) -> str:
    try:
        payload = json.loads(body)
        if isinstance(payload, dict) and payload.get("error"):
            return str(payload["error"])
    except (TypeError, ValueError):
        pass
    return f"{status_code} {reason}".strip()


def _to_frame(row: dict) -> pd.DataFrame:
    columns = row.get("columns") or []
    df = pd.DataFrame(row.get("values") or [], columns=columns)
    if "time" in df.columns:
        df["time"] = pd.to_datetime(df["time"], unit="ms", utc=True)
    return df


def _series_frame(row: dict, query: Query) -> pd.DataFrame:
    df = _to_frame(row)
    return _new_frame(df, _frame_name(row, query), query, labels=row.get("tags") or {})


def _table_frame(series: List[dict], query: Query) -> pd.DataFrame:
    tag_keys = sorted({key for row in series for key in (row.get("tags") or {})})
    parts = []
    for row in series:
        df = _to_frame(row)
        tags = row.get("tags") or {}
        position = 1 if "time" in df.columns else 0
        for offset, key in enumerate(tag_keys):
            df.insert(position + offset, key, tags.get(key))
        parts.append(df)
    return _new_frame(pd.concat(parts, ignore_index=True), query.ref_id, query)


def _new_frame(df: pd.DataFrame, name: str, query: Query, labels=None) -> pd.DataFrame:
    df.attrs.update(
        {
            "name": name,
            "ref_id": query.ref_id,
            "labels": dict(labels or {}),
            "executed_query_string": query.raw_query,
        }
    )
    return df


def _frame_name(row: dict, query: Query) -> str:
    measurement = row.get("name", "")
    tags = row.get("tags") or {}
    value_columns = [c for c in row.get("columns") or [] if c != "time"]

    if query.alias:
        return _render_alias(query.alias, measurement, value_columns, tags)

    if not tags:
        return measurement
    rendered = ", ".join(f"{key}: {tags[key]}" for key in sorted(tags))
    return f"{measurement} {{{rendered}}}"


def _render_alias(alias: str, measurement: str, value_columns: List[str], tags: dict) -> str:
    segments = measurement.split(".")

    def replace(match):
        token = (match.group(1) or match.group(2) or "").strip()
        if token in ("m", "measurement"):
            return measurement
        if token == "col":
            return ", ".join(value_columns)
        if token.startswith("tag_"):
            return tags.get(token[4:], match.group(0))
        if token.isdigit() and int(token) < len(segments):
            return segments[int(token)]
        return match.group(0)

    return _ALIAS_PATTERN.sub(replace, alias)
