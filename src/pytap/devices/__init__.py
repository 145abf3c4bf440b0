"""Device models that talk to the backend only through the message bus."""

from pytap.devices.keg import KegDevice
from pytap.devices.valve_box import ValveBox, ValveState

__all__ = ["KegDevice", "ValveBox", "ValveState"]
