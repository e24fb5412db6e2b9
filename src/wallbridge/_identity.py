"""Deterministic accessory identity.

An accessory's identity is a name-based (version 5) UUID of the
device's network address inside a fixed namespace.  The host persists
accessories by this identity, so it must come out the same on every
start for the same address: that is what lets a restarted bridge find
its cached accessory instead of registering a duplicate.
"""

from __future__ import annotations

import uuid

IDENTITY_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_DNS, "tesla-wallconnector")
"""Namespace all wall connector identities are derived in."""


def identity_for(address: str) -> uuid.UUID:
    """Return the stable accessory identity for a device *address*.

    Pure and total: any address string yields a UUID, the same one on
    every call and in every process.
    """
    return uuid.uuid5(IDENTITY_NAMESPACE, address)
