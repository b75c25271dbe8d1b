# tests/conftest.py
import json
import os
import subprocess

import pytest
import requests

from influx_datasource.backend import DataQuery, PluginContext, QueryDataRequest, TimeRange
from influx_datasource.models import DatasourceInfo

FROM_MS = 1600000000000
TO_MS = 1600003600000


def _discover_docker_host():
    try:
        ctx = subprocess.check_output(["docker", "context", "show"], text=True).strip()
        host = subprocess.check_output(
            ["docker", "context", "inspect", ctx, "--format", '{{(index .Endpoints "docker").Host}}'],
            text=True,
        ).strip()
        return host
    except Exception:
        return None


def _normalize_docker_socket_for_testcontainers():
    docker_host = os.environ.get("DOCKER_HOST", "")
    # Desktop exposes a per-user socket; testcontainers mounts the canonical path
    if docker_host.startswith("unix://") and "/.docker/run/docker.sock" in docker_host:
        os.environ["TESTCONTAINERS_DOCKER_SOCKET_OVERRIDE"] = "/var/run/docker.sock"


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: needs a reachable Docker daemon")


@pytest.fixture(scope="session", autouse=True)
def ensure_docker_host_env():
    if not os.environ.get("DOCKER_HOST"):
        host = _discover_docker_host()
        if host:
            os.environ["DOCKER_HOST"] = host

    _normalize_docker_socket_for_testcontainers()

    try:
        import docker
        docker.from_env().ping()
    except Exception:
        os.environ["SKIP_INTEGRATION"] = "1"


def pytest_collection_modifyitems(config, items):
    if os.environ.get("SKIP_INTEGRATION") == "1":
        skip_mark = pytest.mark.skip(reason="Docker daemon not reachable for integration tests")
        for item in items:
            if "integration" in item.keywords:
                item.add_marker(skip_mark)


# ----- offline helpers -----

class RecordingSession(requests.Session):
    """Session that records prepared requests and replays canned answers in order."""

    def __init__(self, responses=None):
        super().__init__()
        self.responses = list(responses or [])
        self.sent = []

    def send(self, request, **kwargs):
        self.sent.append(request)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _make_response(status_code=200, payload=None, body=None, reason="OK"):
    res = requests.Response()
    res.status_code = status_code
    res.reason = reason
    res._content = body if body is not None else json.dumps(payload if payload is not None else {}).encode()
    res._content_consumed = True
    return res


@pytest.fixture
def make_response():
    return _make_response


@pytest.fixture
def session():
    return RecordingSession()


@pytest.fixture
def ds_info(session):
    return DatasourceInfo(
        url="http://localhost:8086",
        http_client=session,
        db_name="telegraf",
        http_mode="GET",
    )


@pytest.fixture
def time_range():
    return TimeRange.from_epoch_ms(FROM_MS, TO_MS)


@pytest.fixture
def make_request(time_range):
    def _make(*payloads, plugin_context=None, interval_ms=60000):
        queries = [
            DataQuery(ref_id=chr(ord("A") + i), json=payload, time_range=time_range, interval_ms=interval_ms)
            for i, payload in enumerate(payloads)
        ]
        return QueryDataRequest(plugin_context=plugin_context or PluginContext(), queries=queries)

    return _make


@pytest.fixture
def cpu_payload():
    return {
        "results": [
            {
                "statement_id": 0,
                "series": [
                    {
                        "name": "cpu",
                        "tags": {"host": "a"},
                        "columns": ["time", "mean"],
                        "values": [[FROM_MS, 1.5], [FROM_MS + 60000, 2.5]],
                    },
                    {
                        "name": "cpu",
                        "tags": {"host": "b"},
                        "columns": ["time", "mean"],
                        "values": [[FROM_MS, 3.0]],
                    },
                ],
            }
        ]
    }
