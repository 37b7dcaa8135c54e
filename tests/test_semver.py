"""Tests for version range matching."""

import pytest

from exthub.utils.semver import is_compatible, parse_version


def test_parse_version():
    assert parse_version("1.2.3") == (1, 2, 3)
    assert parse_version("v10.0.1") == (10, 0, 1)
    assert parse_version("1.2.3-beta.1+build.7") == (1, 2, 3)
    assert parse_version("1.2") is None
    assert parse_version("latest") is None
    assert parse_version(None) is None


@pytest.mark.parametrize(
    "range_spec,version,expected",
    [
        ("*", "0.0.1", True),
        ("", "9.9.9", True),
        (">=1.2.0", "1.2.0", True),
        (">=1.2.0", "2.0.0", True),
        (">=1.2.0", "1.1.9", False),
        ("^1.2.0", "1.9.9", True),
        ("^1.2.0", "1.2.0", True),
        ("^1.2.0", "1.1.0", False),
        ("^1.2.0", "2.0.0", False),
        ("^0.2.3", "0.2.9", True),
        ("^0.2.3", "0.3.0", False),
        ("^0.2.3", "0.2.2", False),
        ("^0.0.3", "0.0.3", True),
        ("^0.0.3", "0.0.4", False),
        ("~1.2.0", "1.2.5", True),
        ("~1.2.0", "1.3.0", False),
        ("~1.2.3", "1.2.2", False),
        ("1.0.0", "1.0.0", True),
        ("1.0.0", "1.0.1", False),
    ],
)
def test_is_compatible(range_spec, version, expected):
    assert is_compatible(range_spec, version) is expected


def test_prerelease_compares_by_core_version():
    assert is_compatible("^1.0.0", "1.4.0-beta.2")


@pytest.mark.parametrize("range_spec,version", [("^1.0.0", "garbage"), ("^x", "1.0.0"), ("~", "1.0.0"), (">=", "1.0.0")])
def test_unparseable_inputs_are_incompatible(range_spec, version):
    assert is_compatible(range_spec, version) is False
