"""Smoke tests for bsnbridge package structure.

Test Techniques Used:
- Specification-based: Verify package imports, version metadata and
  packaged data files exist.
"""

from importlib import resources

import bsnbridge


class TestPackageStructure:
    """Verify the bsnbridge package is properly installed and importable."""

    def test_package_importable(self) -> None:
        """Package can be imported without error."""
        assert bsnbridge is not None

    def test_version_is_string(self) -> None:
        """Package exposes a non-empty version string."""
        assert isinstance(bsnbridge.__version__, str)
        assert len(bsnbridge.__version__) > 0

    def test_default_mapping_is_packaged(self) -> None:
        """The default field mapping ships inside the package."""
        mapping = resources.files("bsnbridge").joinpath("mapping/model-mapping.yml")
        assert mapping.is_file()
