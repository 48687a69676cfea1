"""
Unit tests for point construction and the write buffer.
"""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from influxdb_client import Point

from telemetry_agent.core.errors import PointError
from telemetry_agent.core.writer import WriteBuffer, make_point


TIMESTAMP = datetime(2024, 1, 1, tzinfo=timezone.utc)


def sample_point(name="system", value=1.0):
    return make_point(name, {"value": value}, {}, TIMESTAMP)


@pytest.fixture
def client():
    return Mock()


@pytest.fixture
def buffer(config, logger, client):
    write_buffer = WriteBuffer(config, logger)
    write_buffer.init(client, "development", "development")
    return write_buffer


class TestMakePoint:
    """Test make_point."""

    def test_line_protocol(self):
        point = make_point("system", {"memTotal": 2000}, {"fsName": "/dev/sda1"}, TIMESTAMP,
                           {"hostname": "test-host", "app": "telemetry"})

        line = point.to_line_protocol()

        assert line.startswith("system,")
        assert "app=telemetry" in line
        assert "hostname=test-host" in line
        assert "fsName=/dev/sda1" in line
        assert "memTotal=2000" in line
        assert line.endswith("1704067200000000000")

    def test_point_tags_override_default_tags(self):
        point = make_point("fs", {"usePercent": 1}, {"app": "custom"}, TIMESTAMP, {"app": "telemetry"})

        line = point.to_line_protocol()

        assert "app=custom" in line
        assert "app=telemetry" not in line

    def test_integer_fields_are_written_as_floats(self):
        line = make_point("system", {"count": 3}, {}, TIMESTAMP).to_line_protocol()

        assert "count=3i" not in line
        assert "count=3" in line

    def test_non_numeric_field_raises_point_error(self):
        with pytest.raises(PointError):
            make_point("system", {"bad": "abc"}, {}, TIMESTAMP)


class TestWriteBuffer:
    """Test WriteBuffer lifecycle."""

    def test_init_configures_batching(self, buffer, client):
        kwargs = client.write_api.call_args.kwargs

        assert "point_settings" not in kwargs
        assert kwargs["write_options"].batch_size == 500
        assert buffer.is_ready

    def test_point_tags_survive_enqueue(self, buffer, client, config):
        point = make_point("fs", {"usePercent": 1}, {"app": "custom"}, TIMESTAMP, config.get_default_tags())

        assert buffer.enqueue(point) is True

        written = client.write_api.return_value.write.call_args.kwargs["record"][0]
        line = written.to_line_protocol()
        assert "app=custom" in line
        assert "app=telemetry" not in line
        assert "hostname=test-host" in line

    def test_init_again_flushes_previous_write_api(self, buffer):
        first = buffer.write_api
        other_client = Mock()

        assert buffer.init(other_client, "development", "metrics") is True

        first.close.assert_called_once()
        assert buffer.write_api is other_client.write_api.return_value
        assert buffer.bucket == "metrics"

    def test_init_again_survives_failed_flush(self, buffer):
        buffer.write_api.close.side_effect = RuntimeError("flush failed")

        assert buffer.init(Mock(), "development", "development") is True
        assert buffer.is_ready

    def test_init_failure_returns_false(self, config, logger):
        client = Mock()
        client.write_api.side_effect = RuntimeError("boom")
        write_buffer = WriteBuffer(config, logger)

        assert write_buffer.init(client, "org", "bucket") is False
        assert not write_buffer.is_ready

    def test_enqueue_batch_writes_to_org_and_bucket(self, buffer, client):
        points = [sample_point(), sample_point("fs")]

        accepted = buffer.enqueue_batch(points)

        assert accepted == 2
        client.write_api.return_value.write.assert_called_once_with(
            bucket="development", org="development", record=points
        )

    def test_malformed_points_are_skipped(self, buffer, client):
        good = sample_point()

        accepted = buffer.enqueue_batch([good, "garbage", Point("empty")])

        assert accepted == 1
        assert buffer.points_rejected == 2
        record = client.write_api.return_value.write.call_args.kwargs["record"]
        assert record == [good]

    def test_enqueue_single_point(self, buffer):
        assert buffer.enqueue(sample_point()) is True
        assert buffer.enqueue(None) is False

    def test_enqueue_before_init_does_not_raise(self, config, logger):
        write_buffer = WriteBuffer(config, logger)

        assert write_buffer.enqueue_batch([sample_point()]) == 0
        assert write_buffer.points_rejected == 1

    def test_write_error_does_not_raise(self, buffer, client):
        client.write_api.return_value.write.side_effect = RuntimeError("queue closed")

        assert buffer.enqueue_batch([sample_point()]) == 0

    def test_close_flushes_and_releases(self, buffer, client):
        write_api = client.write_api.return_value

        assert buffer.close() is True
        write_api.close.assert_called_once()
        assert not buffer.is_ready

    def test_close_twice(self, buffer, client):
        buffer.close()

        assert buffer.close() is True
        client.write_api.return_value.close.assert_called_once()

    def test_close_error_returns_false(self, buffer, client):
        client.write_api.return_value.close.side_effect = RuntimeError("flush failed")

        assert buffer.close() is False
        assert not buffer.is_ready

    def test_failed_batch_reported_on_close(self, buffer):
        buffer._on_error(("development", "development", "ns"), "data", Exception("503"))

        assert buffer.close() is False
        assert buffer.get_stats()["batches_failed"] == 1
