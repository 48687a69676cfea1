"""
Unit tests for the metric shaper.

Tests the value-kind partition, unit conversion and vendor filter.
"""

from unittest.mock import Mock

import pytest

from telemetry_agent.core.errors import ShapeError
from telemetry_agent.core.shaper import (
    MetricShaper,
    ShapedEntity,
    entity_pairs,
    flatten,
    split_by_value_type,
    value_kind,
)


class TestSplitByValueType:
    """Test the generic field/tag partition."""

    def test_numbers_go_to_fields_strings_to_tags(self):
        entity = split_by_value_type({"a": 1, "b": 2.5, "c": "x"})

        assert entity.fields == {"a": 1.0, "b": 2.5}
        assert entity.tags == {"c": "x"}

    def test_other_values_are_dropped(self):
        entity = split_by_value_type({"none": None, "flag": True, "list": [1], "dict": {"a": 1}})

        assert entity == ShapedEntity()

    def test_field_values_are_floats(self):
        entity = split_by_value_type({"count": 3})

        assert isinstance(entity.fields["count"], float)

    def test_key_names_do_not_matter(self):
        first = split_by_value_type({"model": 1, "usePercent": "high"})
        second = split_by_value_type({"usePercent": 1, "model": "high"})

        assert first.fields == {"model": 1.0}
        assert second.tags == {"model": "high"}

    def test_value_kind_dispatch(self):
        assert value_kind(1) == "field"
        assert value_kind(1.5) == "field"
        assert value_kind("s") == "tag"
        assert value_kind(False) is None
        assert value_kind(None) is None


class TestMetricShaper:
    """Test MetricShaper.shape."""

    def test_system_entity(self, raw_sample):
        shaped = MetricShaper().shape(raw_sample)

        assert shaped.system.fields == {
            "cpuLoadAvg": 0.42,
            "cpuLoadCurrent": 12.5,
            "memActive": 2000.0,
            "memFree": 4000.0,
            "memTotal": 16000.0,
            "memUsed": 12000.0,
        }
        assert shaped.system.tags == {}

    def test_memory_uses_decimal_megabytes(self):
        shaped = MetricShaper().shape({"mem": {"total": 2_000_000_000}})

        assert shaped.system.fields["memTotal"] == 2000

    def test_filesystem_entities(self, raw_sample):
        shaped = MetricShaper().shape(raw_sample)

        assert len(shaped.fs_size) == 2
        assert shaped.fs_size[0].tags == {"fsName": "/dev/sda1"}
        assert shaped.fs_size[0].fields == {"usePercent": 41.2}

    def test_default_vendor_filter_keeps_nvidia_only(self, raw_sample):
        shaped = MetricShaper().shape(raw_sample)

        assert len(shaped.graphics) == 1
        assert shaped.graphics[0].tags == {"model": "GeForce RTX 3080"}
        assert shaped.graphics[0].fields["temperatureGpu"] == 41.0
        assert shaped.graphics[0].fields["fanspeed"] == 30.0

    def test_vendor_filter_is_configurable(self):
        sample = {"graphics": {"controllers": [
            {"vendor": "Acme GPU", "model": "A1"},
            {"vendor": "VendorX Pro", "model": "X1"},
        ]}}

        shaped = MetricShaper(gpu_vendor="VendorX").shape(sample)

        assert len(shaped.graphics) == 1
        assert shaped.graphics[0].tags == {"model": "X1"}

    def test_controller_without_vendor_is_dropped(self):
        shaped = MetricShaper().shape({"graphics": {"controllers": [{"model": "?"}]}})

        assert shaped.graphics == []

    def test_missing_groups_yield_empty_entities(self):
        shaped = MetricShaper().shape({})

        assert shaped.system == ShapedEntity()
        assert shaped.graphics == []
        assert shaped.fs_size == []
        assert shaped.entity_count() == 1

    def test_shape_is_deterministic(self, raw_sample):
        shaper = MetricShaper()

        assert shaper.shape(raw_sample) == shaper.shape(raw_sample)

    def test_shape_does_not_mutate_input(self, raw_sample):
        before = repr(raw_sample)

        MetricShaper().shape(raw_sample)

        assert repr(raw_sample) == before

    def test_fields_and_tags_are_disjoint(self, raw_sample):
        shaped = MetricShaper().shape(raw_sample)

        for _, entity in entity_pairs(shaped):
            assert not set(entity.fields) & set(entity.tags)
            assert all(isinstance(v, float) for v in entity.fields.values())
            assert all(isinstance(v, str) for v in entity.tags.values())

    def test_malformed_group_raises_shape_error(self):
        with pytest.raises(ShapeError):
            MetricShaper().shape({"mem": "not-a-dict"})

    def test_malformed_entries_are_skipped_individually(self, raw_sample):
        logger = Mock()
        raw_sample["fsSize"] = raw_sample["fsSize"] + ["not-a-dict"]
        raw_sample["graphics"] = {"controllers": [None] + raw_sample["graphics"]["controllers"]}

        shaped = MetricShaper(logger=logger).shape(raw_sample)

        assert shaped.system.fields["memTotal"] == 16000.0
        assert len(shaped.fs_size) == 2
        assert len(shaped.graphics) == 1
        assert logger.warning.call_count == 2


class TestHelpers:
    """Test flatten and entity_pairs."""

    def test_flatten_merges_groups(self):
        merged = flatten([{"mem": {"total": 1}}, {"fsSize": []}])

        assert merged == {"mem": {"total": 1}, "fsSize": []}

    def test_entity_pairs_order(self, raw_sample):
        pairs = entity_pairs(MetricShaper().shape(raw_sample))

        assert [name for name, _ in pairs] == ["system", "graphics", "fs", "fs"]
