#!/usr/bin/env python3
"""Tests for stack configuration loading and validation."""

import pytest

from flagr_config import (
    ConfigError, FARGATE_CPU_MEMORY, MAX_DESIRED_COUNT, load_stack_config, merge_config,
    validate_config
)


class TestLoadStackConfig:
    """Test suite for the defaults file."""

    def test_defaults_file_loads(self, default_config):
        """Defaults file should parse into a mapping with every section."""
        assert isinstance(default_config, dict)
        for section in ["network", "cluster", "task", "container", "service", "database"]:
            assert section in default_config

    def test_default_values(self, default_config):
        """Defaults should describe the two-AZ Fargate + PostgreSQL topology."""
        assert default_config["network"]["az_count"] == 2
        assert default_config["task"]["cpu"] == 512
        assert default_config["task"]["memory_mib"] == 1024
        assert default_config["container"]["port"] == 80
        assert default_config["container"]["image"] == "myflagrserver:latest"
        assert default_config["service"]["desired_count"] == 1
        assert default_config["database"]["allocated_storage"] == 20
        assert default_config["database"]["backup_retention_days"] == 7
        assert str(default_config["database"]["engine_version"]) == "13.3"

    def test_defaults_have_no_password(self, default_config):
        """Database credentials in the defaults should carry no password."""
        assert "password" not in default_config["database"]

    def test_defaults_are_valid(self, default_config):
        """Defaults file should pass validation as-is."""
        assert validate_config(default_config) is default_config

    def test_missing_file_raises(self):
        """Unknown config file should surface as FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_stack_config("does-not-exist.yaml")


class TestMergeConfig:
    """Test suite for override merging."""

    def test_nested_override_keeps_siblings(self, default_config):
        """Overriding one nested key should keep the rest of the section."""
        merged = merge_config({"task": {"memory_mib": 2048}}, default_config)
        assert merged["task"]["memory_mib"] == 2048
        assert merged["task"]["cpu"] == 512

    def test_inputs_are_not_modified(self, default_config):
        """Merging should not mutate the base or the overrides."""
        overrides = {"network": {"az_count": 3}}
        merge_config(overrides, default_config)
        assert default_config["network"]["az_count"] == 2
        assert overrides == {"network": {"az_count": 3}}

    def test_none_overrides_returns_copy(self, default_config):
        """No overrides should give an equal but independent copy."""
        merged = merge_config(None, default_config)
        assert merged == default_config
        assert merged is not default_config

    def test_empty_section_keeps_base(self, default_config):
        """An empty override section (`database:` in YAML) should change nothing."""
        merged = merge_config({"database": None, "service": None}, default_config)
        assert merged["database"] == default_config["database"]
        assert merged["service"] == default_config["service"]

    def test_base_defaults_to_file(self):
        """Without a base the defaults file is used."""
        merged = merge_config({"service": {"name": "flagr-test"}})
        assert merged["service"]["name"] == "flagr-test"
        assert merged["cluster"]["name"] == "flagr-ecs-cluster"


class TestValidateConfig:
    """Test suite for configuration validation errors."""

    @pytest.mark.parametrize("overrides", [
        {"task": {"cpu": 512, "memory_mib": 512}},
        {"task": {"cpu": 300, "memory_mib": 1024}},
        {"network": {"az_count": 1}},
        {"network": {"az_count": 7}},
        {"container": {"port": 0}},
        {"container": {"port": 70000}},
        {"service": {"desired_count": -1}},
        {"database": {"allocated_storage": 10}},
        {"database": {"backup_retention_days": 36}},
        {"database": {"username": ""}},
        {"database": {"name": None}},
        {"task": {"cpu": "lots"}},
        {"task": {"cpu": 512.7}},
        {"task": {"cpu": True}},
        {"service": {"desired_count": MAX_DESIRED_COUNT + 1}},
        {"service": {"desired_count": 25}},
        {"network": {"cidr": "not-a-cidr"}},
        {"network": {"cidr": 42}},
        {"network": {"cidr": "10.0.0.0/8"}},
        {"network": {"cidr": "10.0.0.0/24"}},
        {"network": {"cidr": "10.0.0.0/22", "az_count": 3}},
    ])
    def test_invalid_config_raises(self, default_config, overrides):
        """Each out-of-range setting should raise ConfigError."""
        with pytest.raises(ConfigError):
            validate_config(merge_config(overrides, default_config))

    def test_config_error_is_value_error(self):
        """ConfigError should be catchable as ValueError."""
        assert issubclass(ConfigError, ValueError)

    def test_section_must_be_mapping(self, default_config):
        """A scalar where a section is expected should raise ConfigError."""
        config = merge_config({}, default_config)
        config["task"] = "512"
        with pytest.raises(ConfigError):
            validate_config(config)

    def test_every_fargate_size_accepts_its_smallest_memory(self, default_config):
        """Each CPU tier's smallest memory value should validate."""
        for cpu, memories in FARGATE_CPU_MEMORY.items():
            config = merge_config({"task": {"cpu": cpu, "memory_mib": memories[0]}}, default_config)
            validate_config(config)

    def test_error_message_lists_valid_memory(self, default_config):
        """Memory mismatch message should name the valid values."""
        config = merge_config({"task": {"memory_mib": 8192}}, default_config)
        with pytest.raises(ConfigError, match="1024, 2048, 3072, 4096"):
            validate_config(config)

    def test_empty_section_becomes_mapping(self, default_config):
        """A None section should validate as an empty mapping."""
        config = merge_config({}, default_config)
        config["service"] = None
        config["container"] = None
        validate_config(config)
        assert config["service"] == {}
        assert config["container"] == {}

    def test_empty_database_section_raises(self, default_config):
        """A None database section still lacks the required name and username."""
        config = merge_config({}, default_config)
        config["database"] = None
        with pytest.raises(ConfigError, match="database.name"):
            validate_config(config)

    def test_desired_count_bounds_accepted(self, default_config):
        """Zero and the parameter maximum are both valid desired counts."""
        for count in (0, MAX_DESIRED_COUNT):
            validate_config(merge_config({"service": {"desired_count": count}}, default_config))

    def test_float_rejected_with_message(self, default_config):
        """A float CPU size should be reported, not truncated."""
        config = merge_config({"task": {"cpu": 512.7}}, default_config)
        with pytest.raises(ConfigError, match="task.cpu must be an integer"):
            validate_config(config)

    @pytest.mark.parametrize("cidr,az_count", [
        ("10.0.0.0/16", 6),
        ("172.16.0.0/20", 6),
        ("10.1.0.0/22", 2),
    ])
    def test_cidr_with_room_for_subnets(self, default_config, cidr, az_count):
        """A block holding two /24 subnets per AZ should validate."""
        config = merge_config({"network": {"cidr": cidr, "az_count": az_count}}, default_config)
        validate_config(config)

    def test_small_cidr_message_names_subnet_count(self, default_config):
        """Too small a block should say how many subnets are needed."""
        config = merge_config({"network": {"cidr": "10.0.0.0/23", "az_count": 2}}, default_config)
        with pytest.raises(ConfigError, match="too small for 4 /24 subnets"):
            validate_config(config)
