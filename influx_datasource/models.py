# influx_datasource/models.py
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import interval as intervals
from .backend import DataQuery, TimeRange
from .errors import QueryParseError
from .query_parts import QueryPart, render_parts

VERSION_INFLUXQL = "InfluxQL"
VERSION_FLUX = "Flux"
VERSION_SQL = "SQL"

DEFAULT_HTTP_MODE = "GET"
DEFAULT_MAX_SERIES = 1000
DEFAULT_RETENTION_POLICY = "default"

_REGEX_PATTERN = re.compile(r"^/.*/$")


@dataclass
class ExemplarSetting:
    datasource_uid: str
    name: str

    @classmethod
    def from_dict(cls, data: dict) -> "ExemplarSetting":
        return cls(datasource_uid=data.get("datasourceUid", ""), name=data.get("name", ""))


@dataclass
class Exemplar:
    """A sampled point that links a series value to a trace."""

    time: datetime
    value: Any
    trace_id: Optional[str] = None
    datasource_uid: str = ""
    labels: Dict[str, str] = field(default_factory=dict)


class DatasourceInfo:
    """
    Connection configuration of one configured datasource.

    Only the fields of the active `version` are used; Flux/SQL only fields
    (organization, default_bucket, metadata, secure_grpc) are carried as-is.
    """

    def __init__(
        self,
        url: str = "",
        http_client=None,
        token: str = "",
        db_name: str = "",
        version: str = VERSION_INFLUXQL,
        http_mode: str = DEFAULT_HTTP_MODE,
        time_interval: str = "",
        default_bucket: str = "",
        organization: str = "",
        max_series: int = DEFAULT_MAX_SERIES,
        metadata: Optional[List[Dict[str, str]]] = None,
        secure_grpc: bool = True,
        exemplar_trace_id_destinations: Optional[List[ExemplarSetting]] = None,
        timeout: Optional[float] = None,
    ):
        self.url = url
        self.http_client = http_client
        self.token = token
        self.db_name = db_name
        self.version = version
        self.http_mode = http_mode
        self.time_interval = time_interval
        self.default_bucket = default_bucket
        self.organization = organization
        self.max_series = max_series
        self.metadata = metadata or []
        self.secure_grpc = secure_grpc
        self.exemplar_trace_id_destinations = exemplar_trace_id_destinations or []
        self.timeout = timeout

    def dispose(self):
        """Close the pooled HTTP connections once the instance is replaced."""
        close = getattr(self.http_client, "close", None)
        if callable(close):
            close()

    def __repr__(self):
        return f"DatasourceInfo(url={self.url!r}, version={self.version!r}, db_name={self.db_name!r})"


class Tag:
    def __init__(self, key: str, value: str, operator: str = "", condition: str = ""):
        self.key = key
        self.value = value
        self.operator = operator
        self.condition = condition

    @classmethod
    def parse(cls, model) -> "Tag":
        if not isinstance(model, dict) or "key" not in model:
            raise QueryParseError(f"tag filter is missing a key: {model!r}")
        return cls(
            key=model["key"],
            value=_as_text(model.get("value")),
            operator=model.get("operator", ""),
            condition=model.get("condition", ""),
        )

    def render(self, first: bool) -> str:
        prefix = "" if first else f"{self.condition or 'AND'} "

        operator = self.operator
        if not operator:
            operator = "=~" if _REGEX_PATTERN.match(self.value) else "="

        if operator in ("=~", "!~", "<", ">", "<=", ">="):
            value = self.value
        else:
            if operator == "Is":
                operator = "="
            elif operator == "Is Not":
                operator = "!="
            escaped = self.value.replace("\\", "\\\\").replace("'", "\\'")
            value = f"'{escaped}'"

        return f'{prefix}"{self.key}" {operator} {value}'


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class Query:
    """An InfluxQL query parsed from the host's generic payload."""

    def __init__(
        self,
        ref_id: str = "",
        measurement: str = "",
        policy: str = "",
        selects: Optional[List[List[QueryPart]]] = None,
        group_by: Optional[List[QueryPart]] = None,
        tags: Optional[List[Tag]] = None,
        raw_query: str = "",
        use_raw_query: bool = False,
        alias: str = "",
        result_format: str = "time_series",
        limit: str = "",
        slimit: str = "",
        order_by_time: str = "",
        tz: str = "",
        interval: Optional[intervals.Interval] = None,
        time_range: Optional[TimeRange] = None,
    ):
        self.ref_id = ref_id
        self.measurement = measurement
        self.policy = policy
        self.selects = selects or []
        self.group_by = group_by or []
        self.tags = tags or []
        self.raw_query = raw_query
        self.use_raw_query = use_raw_query
        self.alias = alias
        self.result_format = result_format
        self.limit = limit
        self.slimit = slimit
        self.order_by_time = order_by_time
        self.tz = tz
        self.interval = interval or intervals.Interval("1ms", 1)
        self.time_range = time_range

    # ----- parsing -----
    @classmethod
    def parse(cls, data_query: DataQuery, ds_info: Optional[DatasourceInfo] = None) -> "Query":
        model = data_query.json
        if not isinstance(model, dict):
            raise QueryParseError(f"query {data_query.ref_id}: payload must be a JSON object")

        use_raw_query = bool(model.get("rawQuery", False))
        raw_query = model.get("query") or ""
        measurement = model.get("measurement") or ""
        select_models = model.get("select")

        if not use_raw_query:
            if not measurement:
                raise QueryParseError(f"query {data_query.ref_id}: measurement is required")
            if not select_models:
                raise QueryParseError(f"query {data_query.ref_id}: at least one field must be selected")

        selects = []
        for select in select_models or []:
            if not isinstance(select, list):
                raise QueryParseError(f"query {data_query.ref_id}: select entries must be lists")
            selects.append([QueryPart.parse(part) for part in select])

        min_interval = model.get("interval") or (ds_info.time_interval if ds_info else "")
        interval = intervals.calculate(
            data_query.time_range,
            interval_ms=data_query.interval_ms,
            max_data_points=data_query.max_data_points,
            min_interval=min_interval,
        )

        return cls(
            ref_id=data_query.ref_id,
            measurement=measurement,
            policy=model.get("policy") or "",
            selects=selects,
            group_by=[QueryPart.parse(part) for part in model.get("groupBy") or []],
            tags=[Tag.parse(tag) for tag in model.get("tags") or []],
            raw_query=raw_query,
            use_raw_query=use_raw_query,
            alias=model.get("alias") or "",
            result_format=model.get("resultFormat") or "time_series",
            limit=_as_text(model.get("limit")),
            slimit=_as_text(model.get("slimit")),
            order_by_time=model.get("orderByTime") or "",
            tz=model.get("tz") or "",
            interval=interval,
            time_range=data_query.time_range,
        )

    # ----- building -----
    def build(self) -> str:
        if self.use_raw_query and self.raw_query:
            res = self.raw_query
        else:
            res = (
                self._render_selectors()
                + self._render_measurement()
                + self._render_where_clause()
                + "$timeFilter"
                + self._render_group_by()
                + self._render_order_by_time()
                + self._render_limit()
                + self._render_slimit()
                + self._render_tz()
            )

        if "$timeFilter" in res:
            res = res.replace("$timeFilter", self.render_time_filter())
        res = res.replace("$__interval_ms", str(self.interval.milliseconds))
        res = res.replace("$__interval", self.interval.text)
        res = res.replace("$interval", self.interval.text)
        return res

    def render_time_filter(self) -> str:
        if self.time_range is None:
            raise QueryParseError(f"query {self.ref_id}: $timeFilter requires a time range")
        from_ms = int(self.time_range.from_.timestamp() * 1000)
        to_ms = int(self.time_range.to.timestamp() * 1000)
        return f"time >= {from_ms}ms and time <= {to_ms}ms"

    def _render_selectors(self) -> str:
        return "SELECT " + ", ".join(render_parts(select) for select in self.selects)

    def _render_measurement(self) -> str:
        policy = ""
        if self.policy and self.policy != DEFAULT_RETENTION_POLICY:
            policy = f'"{self.policy}".'
        measurement = self.measurement
        if not _REGEX_PATTERN.match(measurement):
            measurement = f'"{measurement}"'
        return f" FROM {policy}{measurement}"

    def _render_where_clause(self) -> str:
        conditions = [tag.render(first=(i == 0)) for i, tag in enumerate(self.tags)]
        if not conditions:
            return " WHERE "
        if len(conditions) > 1:
            return " WHERE (" + " ".join(conditions) + ") AND "
        return f" WHERE {conditions[0]} AND "

    def _render_group_by(self) -> str:
        res = ""
        for i, part in enumerate(self.group_by):
            if i == 0:
                res += " GROUP BY "
            elif part.type == "fill":
                # fill() follows the previous group without a comma
                res += " "
            else:
                res += ", "
            res += part.render()
        return res

    def _render_order_by_time(self) -> str:
        return " ORDER BY time DESC" if self.order_by_time == "DESC" else ""

    def _render_limit(self) -> str:
        return f" limit {self.limit}" if self.limit else ""

    def _render_slimit(self) -> str:
        return f" slimit {self.slimit}" if self.slimit else ""

    def _render_tz(self) -> str:
        return f" tz('{self.tz}')" if self.tz else ""
