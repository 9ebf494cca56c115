"""Battery energy model and its periodic refresh."""

from tempo.energy.events import BatteryEvent, BatteryEventChannel, BatteryEventKind
from tempo.energy.model import EnergyModel
from tempo.energy.ticker import EnergyTicker

__all__ = [
    "BatteryEvent",
    "BatteryEventChannel",
    "BatteryEventKind",
    "EnergyModel",
    "EnergyTicker",
]
