# influx_datasource/backend.py
"""
Request/response shapes exchanged with the dashboarding host.

The host owns the plugin lifecycle; these classes only describe what it hands
to the plugin (queries, instance settings) and what it expects back (frames,
health results, stream frames).
"""
import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from .errors import InstanceResolutionError


@dataclass
class TimeRange:
    from_: datetime
    to: datetime

    @classmethod
    def from_epoch_ms(cls, from_ms: int, to_ms: int) -> "TimeRange":
        return cls(
            from_=datetime.fromtimestamp(from_ms / 1000, tz=timezone.utc),
            to=datetime.fromtimestamp(to_ms / 1000, tz=timezone.utc),
        )

    def duration(self):
        return self.to - self.from_


@dataclass
class DataQuery:
    """One query of a batch; `json` is the dialect specific payload."""

    ref_id: str
    json: Any = None
    time_range: Optional[TimeRange] = None
    interval_ms: int = 0
    max_data_points: int = 0
    query_type: str = ""


@dataclass
class DataSourceInstanceSettings:
    uid: str = ""
    name: str = ""
    url: str = ""
    database: str = ""
    basic_auth_enabled: bool = False
    basic_auth_user: str = ""
    json_data: Any = None
    decrypted_secure_json_data: Dict[str, str] = field(default_factory=dict)
    updated: Optional[datetime] = None

    def json_dict(self) -> dict:
        data = self.json_data
        if data is None or data == b"" or data == "":
            return {}
        if isinstance(data, (bytes, str)):
            return json.loads(data)
        return dict(data)


@dataclass
class PluginContext:
    org_id: int = 0
    plugin_id: str = "influxdb"
    datasource_instance_settings: Optional[DataSourceInstanceSettings] = None


@dataclass
class QueryDataRequest:
    plugin_context: PluginContext
    queries: List[DataQuery] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class DataResponse:
    """Frames or an error for a single ref id, never both."""

    frames: List[pd.DataFrame] = field(default_factory=list)
    error: Optional[Exception] = None

    def __post_init__(self):
        if self.error is not None and self.frames:
            raise ValueError("DataResponse carries either frames or an error")


@dataclass
class QueryDataResponse:
    responses: Dict[str, DataResponse] = field(default_factory=dict)


class HealthStatus:
    UNKNOWN = "UNKNOWN"
    OK = "OK"
    ERROR = "ERROR"


@dataclass
class CheckHealthRequest:
    plugin_context: PluginContext


@dataclass
class CheckHealthResult:
    status: str = HealthStatus.UNKNOWN
    message: str = ""


class StreamStatus:
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"


@dataclass
class StreamRequest:
    plugin_context: PluginContext
    path: str = ""
    data: Any = None


@dataclass
class StreamResponse:
    status: str = StreamStatus.OK


class InstanceManager:
    """
    Caches one plugin instance per configured datasource.

    An instance is rebuilt by `factory` only when the datasource uid is new or
    its settings carry a newer `updated` stamp. A replaced instance is
    released through its `dispose()` method, when it has one.
    """

    def __init__(self, factory: Callable[[DataSourceInstanceSettings], Any]):
        self._factory = factory
        self._instances = {}
        self._lock = threading.Lock()

    def get(self, plugin_context: PluginContext):
        settings = plugin_context.datasource_instance_settings
        if settings is None:
            raise InstanceResolutionError("plugin context has no datasource instance settings")

        with self._lock:
            cached = self._instances.get(settings.uid)
            if cached is not None and cached[0] == settings.updated:
                return cached[1]
            instance = self._factory(settings)
            self._instances[settings.uid] = (settings.updated, instance)
        if cached is not None:
            _dispose(cached[1])
        return instance

    def invalidate(self, uid: str):
        with self._lock:
            cached = self._instances.pop(uid, None)
        if cached is not None:
            _dispose(cached[1])


def _dispose(instance):
    dispose = getattr(instance, "dispose", None)
    if callable(dispose):
        dispose()
