"""Unit tests for wallbridge._accessory: the accessory object model.

Test Techniques Used:
    - Specification-based Testing: Service lookup and creation
    - State Transition Testing: Origin determines initial status
    - Round-trip Testing: Descriptor persistence restores a CACHED
      accessory with its services
"""

from __future__ import annotations

import uuid

import pytest
from pydantic import ValidationError

from wallbridge._accessory import (
    CONTACT_SENSOR,
    CONTACT_SENSOR_STATE,
    ENERGY,
    NAME,
    AccessoryStatus,
    Origin,
    PlatformAccessory,
    Service,
)
from wallbridge._identity import identity_for


@pytest.fixture
def garage() -> PlatformAccessory:
    return PlatformAccessory(display_name="Garage", identity=identity_for("10.0.0.42"))


class TestService:
    """Characteristic access on a service.

    Technique: Specification-based Testing.
    """

    def test_get_characteristic_creates_on_first_use(self) -> None:
        service = Service(type=CONTACT_SENSOR, display_name="Status", subtype="contactsensor")

        char = service.get_characteristic(CONTACT_SENSOR_STATE)

        assert char.name == CONTACT_SENSOR_STATE
        assert char.value is None
        assert service.get_characteristic(CONTACT_SENSOR_STATE) is char

    def test_set_characteristic_chains(self) -> None:
        service = Service(type=ENERGY, display_name="Energy", subtype="energy")

        result = service.set_characteristic(NAME, "Wall Connector Energy")

        assert result is service
        assert service.characteristics[NAME].value == "Wall Connector Energy"


class TestPlatformAccessory:
    """Service management and status.

    Technique: State Transition Testing.
    """

    def test_new_accessory_status(self, garage: PlatformAccessory) -> None:
        assert garage.origin is Origin.NEW
        assert garage.status is AccessoryStatus.NEW

    def test_cached_accessory_status(self) -> None:
        acc = PlatformAccessory("Garage", uuid.uuid4(), origin=Origin.CACHED)
        assert acc.status is AccessoryStatus.CACHED

    def test_add_service_defaults(self, garage: PlatformAccessory) -> None:
        service = garage.add_service(CONTACT_SENSOR)

        assert service.display_name == CONTACT_SENSOR
        assert service.subtype == "contactsensor"
        assert garage.get_service(CONTACT_SENSOR) is service

    def test_add_duplicate_service_raises(self, garage: PlatformAccessory) -> None:
        garage.add_service(ENERGY, "Energy", "energy")

        with pytest.raises(ValueError, match="already exists"):
            garage.add_service(ENERGY, "Energy again", "energy")

    def test_same_type_different_subtype_allowed(self, garage: PlatformAccessory) -> None:
        first = garage.add_service(CONTACT_SENSOR, subtype="a")
        second = garage.add_service(CONTACT_SENSOR, subtype="b")

        assert garage.get_service(CONTACT_SENSOR, "b") is second
        assert garage.get_service(CONTACT_SENSOR) is first

    def test_get_missing_service_returns_none(self, garage: PlatformAccessory) -> None:
        assert garage.get_service(ENERGY) is None

    def test_ensure_service_is_get_or_add(self, garage: PlatformAccessory) -> None:
        first = garage.ensure_service(ENERGY, "Energy", "energy")
        second = garage.ensure_service(ENERGY, "Energy", "energy")

        assert first is second
        assert len(garage.services) == 1


class TestDescriptor:
    """Descriptor persistence.

    Technique: Round-trip Testing: a persisted accessory comes back
    cached, with identical identity and services.
    """

    def test_round_trip(self, garage: PlatformAccessory) -> None:
        garage.context["address"] = "10.0.0.42"
        garage.add_service(CONTACT_SENSOR).set_characteristic(CONTACT_SENSOR_STATE, True)

        restored = PlatformAccessory.from_descriptor(garage.to_descriptor())

        assert restored.identity == garage.identity
        assert restored.display_name == "Garage"
        assert restored.origin is Origin.CACHED
        assert restored.context == {"address": "10.0.0.42"}
        service = restored.get_service(CONTACT_SENSOR)
        assert service is not None
        assert service.characteristics[CONTACT_SENSOR_STATE].value is True

    def test_descriptor_identity_is_string(self, garage: PlatformAccessory) -> None:
        assert garage.to_descriptor()["identity"] == str(garage.identity)

    def test_missing_key_raises(self) -> None:
        with pytest.raises(ValidationError):
            PlatformAccessory.from_descriptor({"display_name": "Garage"})

    def test_bad_identity_raises(self) -> None:
        with pytest.raises(ValidationError):
            PlatformAccessory.from_descriptor({"display_name": "x", "identity": "nope"})

    @pytest.mark.parametrize(
        "descriptor",
        [
            {"display_name": "x", "identity": 5},
            {"display_name": 5, "identity": str(uuid.uuid4())},
            {"display_name": "x", "identity": str(uuid.uuid4()), "context": []},
            {
                "display_name": "x",
                "identity": str(uuid.uuid4()),
                "services": [
                    {"type": "Energy", "display_name": "E", "subtype": "e", "characteristics": []},
                ],
            },
            {"display_name": "x", "identity": str(uuid.uuid4()), "services": ["oops"]},
            ["not", "a", "descriptor"],
        ],
        ids=["int-identity", "int-name", "list-context", "list-chars", "str-service", "list"],
    )
    def test_wrongly_typed_descriptor_raises(self, descriptor: object) -> None:
        with pytest.raises(ValidationError):
            PlatformAccessory.from_descriptor(descriptor)

    def test_host_added_keys_ignored(self, garage: PlatformAccessory) -> None:
        descriptor = {**garage.to_descriptor(), "plugin": "wallbridge", "platform": "p"}

        assert PlatformAccessory.from_descriptor(descriptor).identity == garage.identity
