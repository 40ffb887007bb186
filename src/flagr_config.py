#!/usr/bin/env python3
# Copyright (C) 2025 CardinalHQ, Inc
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, version 3.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <http://www.gnu.org/licenses/>.

"""Configuration loading and validation for the Flagr stack."""

import copy
import ipaddress
import logging
import os

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "flagr-stack-defaults.yaml"

# Valid Fargate CPU/memory combinations
# Format: {cpu_units: [valid_memory_values_in_mib]}
FARGATE_CPU_MEMORY = {
    256: [512, 1024, 2048],
    512: [1024, 2048, 3072, 4096],
    1024: [2048, 3072, 4096, 5120, 6144, 7168, 8192],
    2048: list(range(4096, 16385, 1024)),
    4096: list(range(8192, 30721, 1024)),
    8192: list(range(16384, 61441, 4096)),
    16384: list(range(32768, 122881, 8192)),
}

MIN_AZ_COUNT = 2
MAX_AZ_COUNT = 6
MAX_DESIRED_COUNT = 20

# Subnets are /24 blocks carved from network.cidr, two per AZ
SUBNET_PREFIX = 24
VPC_MIN_PREFIX = 16


class ConfigError(ValueError):
    """Raised when the stack configuration cannot produce a valid template."""


def load_stack_config(config_file=DEFAULT_CONFIG_FILE):
    """Load stack configuration from YAML file"""
    script_dir = os.path.dirname(os.path.abspath(__file__))
    config_path = os.path.join(script_dir, "..", config_file)

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info("Loaded stack configuration from %s", os.path.normpath(config_path))
    return config


def merge_config(overrides, base=None):
    """Deep-merge ``overrides`` over ``base`` (the defaults file when omitted).

    Nested mappings are merged key by key and an empty (``None``) section
    leaves the base section as it is; any other value replaces the base
    value. Neither input is modified.
    """
    if base is None:
        base = load_stack_config()
    merged = copy.deepcopy(base)
    for key, value in (overrides or {}).items():
        if value is None and isinstance(merged.get(key), dict):
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(value, merged[key])
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _section(config, name):
    section = config.get(name)
    if section is None:
        # An empty YAML section (`service:`) loads as None
        section = config[name] = {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(section).__name__}")
    return section


def _int_in_range(value, name, low, high=None):
    if isinstance(value, (bool, float)):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if number < low or (high is not None and number > high):
        bounds = f"{low}..{high}" if high is not None else f">= {low}"
        raise ConfigError(f"{name} must be in {bounds}, got {number}")
    return number


def _validate_cidr(cidr, az_count):
    try:
        network = ipaddress.IPv4Network(str(cidr))
    except ValueError as e:
        raise ConfigError(f"network.cidr must be an IPv4 CIDR block, got {cidr!r}: {e}") from None

    if network.prefixlen < VPC_MIN_PREFIX:
        raise ConfigError(f"network.cidr {cidr} is larger than the /{VPC_MIN_PREFIX} a VPC allows")

    subnet_count = az_count * 2
    available = 2 ** (SUBNET_PREFIX - network.prefixlen) if network.prefixlen <= SUBNET_PREFIX else 0
    if available < subnet_count:
        raise ConfigError(
            f"network.cidr {cidr} is too small for {subnet_count} /{SUBNET_PREFIX} subnets "
            f"({az_count} AZs); use a larger block"
        )


def validate_config(config):
    """Check the configuration before any resources are built.

    Empty sections are replaced by empty mappings in place; the config is
    returned so it can be used inline.
    """
    network = _section(config, 'network')
    _section(config, 'cluster')
    task = _section(config, 'task')
    container = _section(config, 'container')
    service = _section(config, 'service')
    database = _section(config, 'database')

    az_count = _int_in_range(network.get('az_count', MIN_AZ_COUNT), "network.az_count", MIN_AZ_COUNT, MAX_AZ_COUNT)
    _validate_cidr(network.get('cidr', "10.0.0.0/16"), az_count)

    cpu = _int_in_range(task.get('cpu', 512), "task.cpu", 1)
    memory = _int_in_range(task.get('memory_mib', 1024), "task.memory_mib", 1)
    if cpu not in FARGATE_CPU_MEMORY:
        raise ConfigError(
            f"task.cpu {cpu} is not a Fargate CPU size "
            f"({', '.join(str(c) for c in FARGATE_CPU_MEMORY)})"
        )
    if memory not in FARGATE_CPU_MEMORY[cpu]:
        raise ConfigError(
            f"task.memory_mib {memory} is not valid for {cpu} CPU units. "
            f"Valid values: {', '.join(str(m) for m in FARGATE_CPU_MEMORY[cpu])}"
        )

    _int_in_range(container.get('port', 80), "container.port", 1, 65535)
    _int_in_range(service.get('desired_count', 1), "service.desired_count", 0, MAX_DESIRED_COUNT)
    _int_in_range(database.get('allocated_storage', 20), "database.allocated_storage", 20, 65536)
    _int_in_range(database.get('backup_retention_days', 7), "database.backup_retention_days", 0, 35)

    for key in ('name', 'username'):
        if not database.get(key):
            raise ConfigError(f"database.{key} is required")

    return config
