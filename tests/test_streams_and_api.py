import threading

import pytest

from influx_datasource import api
from influx_datasource.backend import PluginContext, StreamRequest, StreamStatus
from influx_datasource.errors import ServerError
from influx_datasource.service import Service


@pytest.fixture
def service(session):
    return Service(http_client_factory=lambda settings, token: session)


@pytest.mark.parametrize("path, status", [("stream", StreamStatus.OK), ("other", StreamStatus.PERMISSION_DENIED)])
def test_subscribe_stream(service, path, status):
    assert service.subscribe_stream(StreamRequest(plugin_context=PluginContext(), path=path)).status == status


def test_publish_is_denied(service):
    response = service.publish_stream(StreamRequest(plugin_context=PluginContext(), path="stream"))
    assert response.status == StreamStatus.PERMISSION_DENIED


def test_run_stream_ticks_until_cancelled(service):
    cancel = threading.Event()
    sent = []

    def sender(frame):
        sent.append(frame)
        if len(sent) == 3:
            cancel.set()

    service.run_stream(StreamRequest(plugin_context=PluginContext(), path="stream"), sender, cancel, interval=0.01)

    assert len(sent) == 3
    assert [frame["values"].iloc[0] for frame in sent] == [10, 20, 10]
    assert list(sent[0].columns) == ["time", "values"]


def test_run_stream_cancelled_before_first_tick(service):
    cancel = threading.Event()
    cancel.set()
    sent = []

    service.run_stream(StreamRequest(plugin_context=PluginContext(), path="stream"), sent.append, cancel, interval=0.01)

    assert sent == []


def test_run_stream_survives_sender_errors(service):
    cancel = threading.Event()
    calls = []

    def sender(frame):
        calls.append(frame)
        if len(calls) == 1:
            raise ConnectionError("client went away")
        cancel.set()

    service.run_stream(StreamRequest(plugin_context=PluginContext(), path="stream"), sender, cancel, interval=0.01)

    assert len(calls) == 2


@pytest.fixture
def dev_env(monkeypatch):
    monkeypatch.setenv("INFLUX_DEV_URL", "http://influx:8086")
    monkeypatch.setenv("INFLUX_DEV_DB", "telegraf")
    monkeypatch.delenv("INFLUX_DEV_TOKEN", raising=False)
    monkeypatch.delenv("INFLUX_DEV_VERSION", raising=False)


def test_read_df_concatenates_series(dev_env, service, session, make_response, cpu_payload):
    session.responses = [make_response(200, cpu_payload)]

    df = api.read_df("SELECT mean(value) FROM cpu GROUP BY host", service=service)

    assert len(df) == 3
    assert df["series"].tolist() == ["cpu {host: a}", "cpu {host: a}", "cpu {host: b}"]
    assert "db=telegraf" in session.sent[0].url


def test_query_frames_raises_query_error(dev_env, service, session, make_response):
    session.responses = [make_response(400, {"error": "error parsing query"}, reason="Bad Request")]

    with pytest.raises(ServerError, match="error parsing query"):
        api.query_frames("SELEKT 1", service=service)
