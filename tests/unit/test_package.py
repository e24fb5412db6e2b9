"""Smoke tests for the wallbridge package surface.

Test Techniques Used:
    - Specification-based Testing: version metadata and ``__all__``
    - Importability: every exported name resolves
"""

from __future__ import annotations

import wallbridge


class TestPackageStructure:
    """Verify the wallbridge package is importable and complete."""

    def test_version_is_string(self) -> None:
        """Technique: Specification-based: version metadata contract."""
        assert isinstance(wallbridge.__version__, str)
        assert wallbridge.__version__

    def test_every_export_resolves(self) -> None:
        """Technique: Importability: no stale names in ``__all__``."""
        for name in wallbridge.__all__:
            assert getattr(wallbridge, name) is not None, name

    def test_core_names_exported(self) -> None:
        expected = {
            "Bridge",
            "identity_for",
            "DeviceStateSync",
            "PlatformController",
            "AccessoryRegistry",
            "PlatformAccessory",
            "HostPort",
            "MqttHost",
            "TelemetryPort",
            "WallConnectorClient",
            "DeviceConfig",
            "load_device_config",
            "Settings",
            "TelemetryError",
        }
        assert expected <= set(wallbridge.__all__)
