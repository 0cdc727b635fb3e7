"""Tests for key material and backup schemas."""

import pytest
from pydantic import ValidationError

from vaultmode.config.schemas import BackupEntry, BackupMetadata, ModeConfiguration, UnsealKeySet, preview_key


class TestUnsealKeySet:
    """Tests for UnsealKeySet."""

    def test_shares_prefer_base64(self):
        """Test base64 shares are submitted when present."""
        key_set = UnsealKeySet(keys=["aa", "bb"], keys_base64=["qg==", "uw=="], root_token="hvs.root")
        assert key_set.shares() == ["qg==", "uw=="]

    def test_shares_fall_back_to_hex(self):
        """Test the raw shares are used when no base64 form was stored."""
        key_set = UnsealKeySet(keys=["aa", "bb"], root_token="hvs.root")
        assert key_set.shares() == ["aa", "bb"]

    def test_length_mismatch(self):
        """Test both forms must describe the same number of shares."""
        with pytest.raises(ValidationError, match="differ in length"):
            UnsealKeySet(keys=["aa", "bb"], keys_base64=["qg=="], root_token="hvs.root")

    def test_requires_keys_and_token(self):
        """Test an empty key list or token is rejected."""
        with pytest.raises(ValidationError):
            UnsealKeySet(keys=[], root_token="hvs.root")
        with pytest.raises(ValidationError):
            UnsealKeySet(keys=["aa"], root_token="")

    def test_repr_masks_key_material(self):
        """Test neither shares nor the full root token appear in repr/str."""
        key_set = UnsealKeySet(keys=["deadbeefcafe"], root_token="hvs.supersecret")
        text = repr(key_set) + str(key_set)

        assert "deadbeefcafe" not in text
        assert "hvs.supersecret" not in text
        assert "hvs...." in text

    def test_extra_fields_kept(self):
        """Test unknown fields from newer init responses survive a round trip."""
        key_set = UnsealKeySet.model_validate(
            {"keys": ["aa"], "root_token": "hvs.root", "recovery_keys": []}
        )
        assert "recovery_keys" in key_set.model_dump()


class TestBackupSchemas:
    """Tests for BackupEntry and BackupMetadata."""

    def test_entry_path_normalized(self):
        """Test slashes around the path are stripped."""
        assert BackupEntry(path="/secret/dev/ALPHA/", data={"value": "x"}).path == "secret/dev/ALPHA"

    def test_entry_path_must_be_under_secret(self):
        """Test entries outside the KV mount are rejected."""
        with pytest.raises(ValidationError, match="must start with 'secret/'"):
            BackupEntry(path="sys/policy/x", data={})

    def test_metadata_defaults(self):
        """Test a metadata document without the optional fields."""
        metadata = BackupMetadata.model_validate(
            {"timestamp": "2026-10-18T14:30:00Z", "source_mode": "ephemeral", "target_mode": "durable", "secret_count": 0}
        )
        assert metadata.reachable is True
        assert metadata.failed_paths == []
        assert metadata.failed_namespaces == []
        assert metadata.complete is True

    def test_metadata_incomplete(self):
        """Test an unreachable store or any failed path or namespace marks the backup incomplete."""
        base = {"timestamp": "2026-10-18T14:30:00Z", "source_mode": "durable", "target_mode": "ephemeral", "secret_count": 0}
        assert BackupMetadata(**base, reachable=False).complete is False
        assert BackupMetadata(**base, failed_paths=["secret/dev/ALPHA"]).complete is False
        assert BackupMetadata(**base, failed_namespaces=["secret/dev"]).complete is False

    def test_metadata_negative_count(self):
        """Test the secret count cannot be negative."""
        with pytest.raises(ValidationError):
            BackupMetadata(timestamp="2026-10-18T14:30:00Z", source_mode="a", target_mode="b", secret_count=-1)


class TestModeConfiguration:
    """Tests for ModeConfiguration."""

    def test_frozen(self):
        """Test configurations are immutable values."""
        config = ModeConfiguration()
        with pytest.raises(ValidationError):
            config.auto_unseal = True

    def test_present_not_serialized(self):
        """Test the present flag is bookkeeping, not file content."""
        assert "present" not in ModeConfiguration().model_dump()


def test_preview_key():
    """Test previews show only the first characters."""
    assert preview_key("hvs.abcdef") == "hvs...."
    assert preview_key("abcdef", visible=2) == "ab..."
    assert preview_key("") == ""
