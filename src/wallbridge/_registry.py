"""Explicit accessory registry keyed by identity.

The host restores its persisted accessories into the registry before
discovery, and discovery adds the ones it creates.  The registry is the
single place that enforces *one accessory per identity* within a
process.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator

from wallbridge._accessory import Origin, PlatformAccessory
from wallbridge._exceptions import RegistryError

logger = logging.getLogger(__name__)


class AccessoryRegistry:
    """In-process accessory set, passed by reference to discovery."""

    def __init__(self) -> None:
        self._accessories: dict[uuid.UUID, PlatformAccessory] = {}

    def restore(self, accessory: PlatformAccessory) -> None:
        """Accept an accessory handed back by the host's cache.

        Raises:
            ValueError: If *accessory* is not a cached accessory.
            RegistryError: If the identity is already present.
        """
        if accessory.origin is not Origin.CACHED:
            msg = f"Only cached accessories can be restored, got {accessory.origin}"
            raise ValueError(msg)
        self._insert(accessory)
        logger.debug(
            "Restored accessory %r (%s) from cache",
            accessory.display_name,
            accessory.identity,
        )

    def add(self, accessory: PlatformAccessory) -> None:
        """Add a newly constructed accessory.

        Raises:
            RegistryError: If the identity is already present.
        """
        self._insert(accessory)

    def get(self, identity: uuid.UUID) -> PlatformAccessory | None:
        return self._accessories.get(identity)

    def _insert(self, accessory: PlatformAccessory) -> None:
        if accessory.identity in self._accessories:
            msg = f"Accessory {accessory.identity} is already registered"
            raise RegistryError(msg)
        self._accessories[accessory.identity] = accessory

    def __contains__(self, identity: object) -> bool:
        return identity in self._accessories

    def __iter__(self) -> Iterator[PlatformAccessory]:
        return iter(list(self._accessories.values()))

    def __len__(self) -> int:
        return len(self._accessories)
