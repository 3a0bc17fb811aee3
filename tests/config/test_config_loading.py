"""Tests for itad_config -- YAML loading, merging and validation."""

import pytest
import yaml

from itad_config import get_active_config
from itad_config.loader import compute_checksum, deep_merge, load_yaml_file, parse_config
from itad_config.schema import ITADConfig


def _write(tmp_path, text, name="override.yaml"):
    path = tmp_path / name
    path.write_text(text)
    return path


class TestDefaults:

    def test_packaged_defaults(self):
        config = get_active_config()

        assert isinstance(config, ITADConfig)
        assert config.bulk.default_batch_size == 50
        assert config.bulk.max_batch_size == 500
        assert config.bulk.inter_batch_delay_seconds == 1.0
        assert config.lifecycle.carbon_credit_award == 10
        assert config.ledger.enabled is False
        assert config.ledger.retry.max_attempts == 3
        assert config.notifications.email.recipients == ()
        assert config.audit.record_failures is False
        assert config.evidence.root is None
        assert len(config.checksum) == 64

    def test_load_is_logged(self, captured_logs):
        config = get_active_config()
        record = [r for r in captured_logs() if r["message"] == "itad_config_loaded"][0]
        assert record["checksum"] == config.checksum


class TestOverrides:

    def test_deep_merge_keeps_siblings(self, tmp_path):
        path = _write(tmp_path, "bulk:\n  default_batch_size: 10\n")

        config = get_active_config(path)

        assert config.bulk.default_batch_size == 10
        assert config.bulk.max_batch_size == 500

    def test_nested_retry_and_recipients(self, tmp_path):
        path = _write(
            tmp_path,
            "ledger:\n"
            "  enabled: true\n"
            "  endpoint: https://ledger.example\n"
            "  retry:\n"
            "    max_attempts: 5\n"
            "notifications:\n"
            "  email:\n"
            "    enabled: true\n"
            "    recipients: [ops@example.com]\n",
        )

        config = get_active_config(path)

        assert config.ledger.enabled
        assert config.ledger.retry.max_attempts == 5
        assert config.ledger.retry.initial_wait_seconds == 0.5
        assert config.notifications.email.recipients == ("ops@example.com",)

    def test_evidence_root(self, tmp_path):
        path = _write(tmp_path, f'evidence:\n  root: "{tmp_path / "proofs"}"\n')

        config = get_active_config(path)

        assert config.evidence.root == str(tmp_path / "proofs")
        assert config.evidence.gateway_url == "https://ipfs.io/ipfs/"

    def test_override_changes_checksum(self, tmp_path):
        path = _write(tmp_path, "audit:\n  record_failures: true\n")
        assert get_active_config(path).checksum != get_active_config().checksum

    def test_missing_override_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "nope.yaml")


class TestValidation:

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="batchsize"):
            parse_config({"bulk": {"batchsize": 10}})

    def test_unknown_top_level_key_rejected(self):
        with pytest.raises(ValueError, match="ITADConfig"):
            parse_config({"bulky": {}})

    def test_enabled_ledger_needs_endpoint(self):
        with pytest.raises(ValueError, match="endpoint"):
            parse_config({"ledger": {"enabled": True}})

    @pytest.mark.parametrize(
        "data",
        [
            {"bulk": {"max_batch_size": 0}},
            {"bulk": {"inter_batch_delay_seconds": -1}},
            {"lifecycle": {"carbon_credit_award": -5}},
            {"evidence": {"retry": {"max_attempts": 0}}},
        ],
    )
    def test_out_of_range(self, data):
        with pytest.raises(ValueError):
            parse_config(data)

    def test_non_mapping_document(self, tmp_path):
        with pytest.raises(ValueError, match="mapping"):
            load_yaml_file(_write(tmp_path, "- a\n- b\n"))

    def test_malformed_yaml(self, tmp_path):
        with pytest.raises(yaml.YAMLError):
            load_yaml_file(_write(tmp_path, "bulk: [unclosed\n"))

    def test_empty_file_is_empty_mapping(self, tmp_path):
        assert load_yaml_file(_write(tmp_path, "")) == {}


class TestHelpers:

    def test_deep_merge_does_not_mutate(self):
        base = {"a": {"x": 1, "y": 2}}
        merged = deep_merge(base, {"a": {"y": 3}})
        assert merged == {"a": {"x": 1, "y": 3}}
        assert base == {"a": {"x": 1, "y": 2}}

    def test_checksum_is_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
