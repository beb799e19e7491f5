"""Tests for runtime package version resolution."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as distribution_version

import stackfold


class TestRuntimeVersion:
    """Version resolution should reflect installed package metadata."""

    def test_module_version_matches_installed_distribution(self):
        assert stackfold.__version__ == distribution_version("stackfold")

    def test_resolve_version_uses_deterministic_fallback_when_metadata_missing(self, monkeypatch):
        def _raise_package_not_found(_: str) -> str:
            raise PackageNotFoundError

        monkeypatch.setattr(stackfold, "_distribution_version", _raise_package_not_found)

        assert stackfold._resolve_version() == stackfold._LOCAL_VERSION_FALLBACK
