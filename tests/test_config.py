"""Tests for DriveConfig."""

from __future__ import annotations

from datetime import timedelta

import pytest

from drivetree.config import DEFAULT_BIN_RETENTION, DriveConfig


class TestDriveConfig:
    def test_defaults(self):
        config = DriveConfig()
        assert config.bin_retention == timedelta(days=3) == DEFAULT_BIN_RETENTION
        assert config.credential_expires_in == 1800
        assert config.isolation_level is None
        assert config.create_tables is False

    def test_rejects_non_positive_retention(self):
        with pytest.raises(ValueError, match="bin_retention"):
            DriveConfig(bin_retention=timedelta(0))

    def test_rejects_non_positive_expiry(self):
        with pytest.raises(ValueError, match="credential_expires_in"):
            DriveConfig(credential_expires_in=0)
