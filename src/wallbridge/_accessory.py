"""Accessory object model: accessories, services, characteristics.

Mirrors the host platform's shape: an :class:`PlatformAccessory`
represents one physical device and groups :class:`Service` objects,
each of which holds named :class:`Characteristic` values.

Accessories round-trip through a plain JSON-compatible *descriptor*
(:meth:`PlatformAccessory.to_descriptor` /
:meth:`PlatformAccessory.from_descriptor`) so that a host can persist
them and hand them back on the next start.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Service types
ENERGY = "Energy"
CONTACT_SENSOR = "ContactSensor"

# Characteristic names
NAME = "Name"
CONTACT_SENSOR_STATE = "ContactSensorState"


# ---------------------------------------------------------------------------
# Descriptor schema
# ---------------------------------------------------------------------------


class _ServiceDescriptor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    display_name: str
    subtype: str
    characteristics: dict[str, Any] = Field(default_factory=dict)


class _AccessoryDescriptor(BaseModel):
    """Persisted accessory shape.  Host-added keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    identity: uuid.UUID
    display_name: str
    context: dict[str, Any] = Field(default_factory=dict)
    services: list[_ServiceDescriptor] = Field(default_factory=list)


class Origin(enum.StrEnum):
    """Where an accessory object came from."""

    CACHED = "cached"
    NEW = "new"


class AccessoryStatus(enum.StrEnum):
    """Discovery lifecycle of an accessory.

    ``CACHED -> ACTIVE`` for restored accessories,
    ``NEW -> REGISTERED -> ACTIVE`` for new ones.
    """

    CACHED = "cached"
    NEW = "new"
    REGISTERED = "registered"
    ACTIVE = "active"


@dataclass
class Characteristic:
    """A single named value on a service."""

    name: str
    value: object = None


@dataclass
class Service:
    """A named group of characteristics on an accessory."""

    type: str
    display_name: str
    subtype: str
    characteristics: dict[str, Characteristic] = field(default_factory=dict)

    def get_characteristic(self, name: str) -> Characteristic:
        """Return the characteristic *name*, creating it on first use."""
        if name not in self.characteristics:
            self.characteristics[name] = Characteristic(name)
        return self.characteristics[name]

    def set_characteristic(self, name: str, value: object) -> Service:
        """Set a characteristic locally.  Returns ``self`` for chaining."""
        self.get_characteristic(name).value = value
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "display_name": self.display_name,
            "subtype": self.subtype,
            "characteristics": {
                name: char.value for name, char in self.characteristics.items()
            },
        }

    @classmethod
    def from_dict(cls, data: object) -> Service:
        """Rebuild a service from :meth:`to_dict` output.

        Raises:
            pydantic.ValidationError: If *data* does not have that shape.
        """
        return cls._from_descriptor(_ServiceDescriptor.model_validate(data))

    @classmethod
    def _from_descriptor(cls, descriptor: _ServiceDescriptor) -> Service:
        service = cls(
            type=descriptor.type,
            display_name=descriptor.display_name,
            subtype=descriptor.subtype,
        )
        for name, value in descriptor.characteristics.items():
            service.set_characteristic(name, value)
        return service


@dataclass
class PlatformAccessory:
    """One device as the host platform sees it.

    Attributes:
        display_name: Name shown by the host.
        identity: Stable identity, see :func:`~wallbridge.identity_for`.
        origin: ``CACHED`` when restored from the host, ``NEW`` when
            constructed during discovery.
        context: Free-form host-persisted data (e.g. the address the
            identity was derived from).
    """

    display_name: str
    identity: uuid.UUID
    origin: Origin = Origin.NEW
    services: list[Service] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    status: AccessoryStatus = field(init=False)

    def __post_init__(self) -> None:
        self.status = (
            AccessoryStatus.CACHED
            if self.origin is Origin.CACHED
            else AccessoryStatus.NEW
        )

    def get_service(self, type_: str, subtype: str | None = None) -> Service | None:
        """Find a service by type, optionally narrowed by subtype."""
        for service in self.services:
            if service.type != type_:
                continue
            if subtype is None or service.subtype == subtype:
                return service
        return None

    def add_service(
        self,
        type_: str,
        display_name: str | None = None,
        subtype: str | None = None,
    ) -> Service:
        """Attach a new service.

        Raises:
            ValueError: If a service with the same type and subtype
                already exists.
        """
        resolved_subtype = subtype if subtype is not None else type_.lower()
        if self.get_service(type_, resolved_subtype) is not None:
            msg = f"Service {type_}/{resolved_subtype} already exists on {self.display_name!r}"
            raise ValueError(msg)
        service = Service(
            type=type_,
            display_name=display_name or type_,
            subtype=resolved_subtype,
        )
        self.services.append(service)
        return service

    def ensure_service(
        self,
        type_: str,
        display_name: str | None = None,
        subtype: str | None = None,
    ) -> Service:
        """Return the existing service or add it (get-or-add)."""
        existing = self.get_service(type_, subtype)
        if existing is not None:
            return existing
        return self.add_service(type_, display_name, subtype)

    # -- persistence --------------------------------------------------------

    def to_descriptor(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible dict for host persistence."""
        return {
            "identity": str(self.identity),
            "display_name": self.display_name,
            "context": dict(self.context),
            "services": [service.to_dict() for service in self.services],
        }

    @classmethod
    def from_descriptor(cls, data: object) -> PlatformAccessory:
        """Rebuild a persisted accessory.  The result is ``CACHED``.

        Raises:
            pydantic.ValidationError: If *data* is not a descriptor: a
                missing key, a non-UUID identity, or a field of the
                wrong type anywhere in the tree.
        """
        descriptor = _AccessoryDescriptor.model_validate(data)
        return cls(
            display_name=descriptor.display_name,
            identity=descriptor.identity,
            origin=Origin.CACHED,
            services=[Service._from_descriptor(s) for s in descriptor.services],  # noqa: SLF001
            context=dict(descriptor.context),
        )
