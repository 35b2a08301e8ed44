"""
Tests for hub configuration loading.

Covers:
- the packaged defaults load through get_active_config()
- required keys raise KeyError, malformed values raise ValueError
- the checksum is stable for equal documents and changes with content
"""

import copy

import pytest
import yaml

from access_config import get_active_config
from access_config.loader import compute_checksum, load_yaml_file, parse_hub_config
from access_config.schema import MAX_LIST_LIMIT

ADMIN_GROUP_ID = "00000000-0000-4000-8000-000000000001"

MINIMAL = {
    "config_id": "unit",
    "admin_group_id": ADMIN_GROUP_ID,
    "database": {"url": "sqlite:///:memory:"},
}


def with_changes(**sections):
    data = copy.deepcopy(MINIMAL)
    data.update(sections)
    return data


class TestPackagedDefaults:

    def test_loads(self):
        config = get_active_config()

        assert config.config_id == "local-dev"
        assert config.admin_group_id == ADMIN_GROUP_ID
        assert config.system_catalog.catalog_id == "system"
        assert config.system_catalog.resource_update_flow_id == "resource-update"
        assert config.pagination.max_limit == MAX_LIST_LIMIT
        assert len(config.checksum) == 64

    def test_load_is_logged(self, captured_logs):
        config = get_active_config()

        (record,) = [r for r in captured_logs() if r["message"] == "access_config_loaded"]
        assert record["config_id"] == config.config_id
        assert record["checksum"] == config.checksum


class TestParse:

    def test_minimal_document_gets_defaults(self):
        config = parse_hub_config(copy.deepcopy(MINIMAL))

        assert config.handlers.timeout_seconds == 30.0
        assert config.handlers.max_workers == 8
        assert config.pagination.default_limit == 50
        assert config.logging.level == "INFO"

    @pytest.mark.parametrize("key", ["config_id", "admin_group_id", "database"])
    def test_required_keys(self, key):
        data = copy.deepcopy(MINIMAL)
        del data[key]
        with pytest.raises(KeyError):
            parse_hub_config(data)

    def test_database_url_required(self):
        with pytest.raises(KeyError):
            parse_hub_config(with_changes(database={"echo": True}))

    def test_admin_group_must_be_uuid(self):
        with pytest.raises(ValueError, match="admin_group_id must be a UUID"):
            parse_hub_config(with_changes(admin_group_id="admins"))

    @pytest.mark.parametrize(
        "section",
        [
            {"handlers": {"timeout_seconds": 0}},
            {"handlers": {"max_workers": 0}},
            {"pagination": {"max_limit": MAX_LIST_LIMIT + 1}},
            {"pagination": {"default_limit": 100, "max_limit": 50}},
            {"logging": {"level": "LOUD"}},
        ],
    )
    def test_out_of_range_values(self, section):
        with pytest.raises(ValueError):
            parse_hub_config(with_changes(**section))

    def test_logging_level_is_normalized(self):
        config = parse_hub_config(with_changes(logging={"level": "debug"}))
        assert config.logging.level == "DEBUG"
        assert config.logging.level_number == 10


class TestChecksum:

    def test_key_order_does_not_matter(self):
        reordered = dict(reversed(list(MINIMAL.items())))
        assert compute_checksum(MINIMAL) == compute_checksum(reordered)

    def test_content_changes_checksum(self):
        assert compute_checksum(MINIMAL) != compute_checksum(with_changes(config_id="other"))


class TestLoadYamlFile:

    def test_round_trip_through_file(self, tmp_path):
        path = tmp_path / "hub.yaml"
        path.write_text(yaml.safe_dump(with_changes(handlers={"timeout_seconds": 5})))

        config = get_active_config(path)

        assert config.config_id == "unit"
        assert config.handlers.timeout_seconds == 5.0

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml_file(path) == {}

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="top level must be a mapping"):
            load_yaml_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")
