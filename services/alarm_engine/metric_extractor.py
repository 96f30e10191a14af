"""
Resolve a rule's metric out of a telemetry payload.

Rules name metrics by dot-path (``inverter.tempC``) or by a human alias
(``temperature``). Devices report flat vendor field names
(``inverterTemperatureValue``), so a missing path falls back to METRIC_ALIASES.
A result of None means "not found" and the rule is skipped for that reading.
"""
from __future__ import annotations

import math
from typing import Any, Mapping, Optional

# Human metric name -> telemetry field names, tried in order.
METRIC_ALIASES: dict[str, tuple[str, ...]] = {
    "temperature": ("inverterTemperatureValue", "inverter_temperature_value"),
    "voltage": ("busVoltageValue", "bus_voltage_value"),
    "power": ("pumpPowerValue", "pump_power_value"),
    "current": ("pumpCurrentValue", "pump_current_value"),
    "frequency": ("frequencyValue", "frequency_value"),
    "energy": (
        "energyPerDayValue",
        "energy_per_day_value",
        "totalEnergyValue",
        "total_energy_value",
    ),
    "pressure": ("pressureSensorValue", "pressure_sensor_value"),
    "water": ("totalWaterVolumeM3Value", "total_water_volume_m3_value"),
    "motorSpeed": ("motorSpeedValue", "motor_speed_value"),
    "tds": ("tdsValue", "tds_sensor_value"),
    "level": ("levelSensorValue", "level_sensor_value"),
    "inverter.temperature": ("inverterTemperatureValue", "inverter_temperature_value"),
    "inverter.tempC": ("inverterTemperatureValue", "inverter_temperature_value"),
    "pump.power": ("pumpPowerValue", "pump_power_value"),
    "pump.current": ("pumpCurrentValue", "pump_current_value"),
    "bus.voltage": ("busVoltageValue", "bus_voltage_value"),
    "motor.speed": ("motorSpeedValue", "motor_speed_value"),
    "water.volume": ("totalWaterVolumeM3Value", "total_water_volume_m3_value"),
    "water.flow": (
        "waterPumpedFlowRatePerHourValue",
        "water_pumped_flow_rate_per_hour_value",
    ),
}

_MISSING = object()


def to_number(raw: Any) -> Optional[float]:
    """Coerce a telemetry value to float; None for null, bool, NaN or junk."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(value):
        return None
    return value


def resolve_alias(data: Mapping[str, Any], metric_name: str) -> Any:
    """Return the first non-null alias field for metric_name, else the literal key."""
    for field_name in METRIC_ALIASES.get(metric_name, ()):
        value = data.get(field_name)
        if value is not None:
            return value
    return data.get(metric_name)


def _walk_path(data: Mapping[str, Any], metric_name: str) -> Any:
    value: Any = data
    for segment in metric_name.split("."):
        if isinstance(value, Mapping) and segment in value:
            value = value[segment]
        else:
            return _MISSING
    return value


def extract_metric_value(data: Mapping[str, Any], metric_name: str) -> Optional[float]:
    if not metric_name or not isinstance(data, Mapping):
        return None
    raw = _walk_path(data, metric_name)
    if raw is _MISSING:
        raw = resolve_alias(data, metric_name)
    return to_number(raw)
