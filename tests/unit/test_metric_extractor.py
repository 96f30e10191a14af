import pytest

from alarm_engine.metric_extractor import (
    METRIC_ALIASES,
    extract_metric_value,
    resolve_alias,
    to_number,
)

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


async def test_direct_key_wins_over_alias():
    data = {"temperature": 22, "inverterTemperatureValue": 80}
    assert extract_metric_value(data, "temperature") == 22.0


async def test_temperature_falls_back_to_inverter_field():
    data = {"inverterTemperatureValue": 71.5}
    assert extract_metric_value(data, "temperature") == 71.5


async def test_alias_order_prefers_first_present_non_null():
    data = {"energyPerDayValue": None, "energy_per_day_value": None, "totalEnergyValue": 900}
    assert extract_metric_value(data, "energy") == 900.0


async def test_nested_path_walks_segments():
    data = {"inverter": {"tempC": "64.2"}}
    assert extract_metric_value(data, "inverter.tempC") == 64.2


async def test_missing_nested_path_uses_alias_table():
    data = {"inverter": {}, "inverter_temperature_value": 58}
    assert extract_metric_value(data, "inverter.tempC") == 58.0


async def test_unknown_metric_is_not_found():
    assert extract_metric_value({"pressure": 3}, "humidity") is None


async def test_null_and_non_numeric_values_are_not_found():
    assert extract_metric_value({"voltage": None}, "voltage") is None
    assert extract_metric_value({"voltage": "n/a"}, "voltage") is None
    assert extract_metric_value({"voltage": True}, "voltage") is None


async def test_path_through_scalar_is_missing():
    assert extract_metric_value({"pump": 5}, "pump.power") is None
    assert extract_metric_value({"pump": 5, "pumpPowerValue": 1.2}, "pump.power") == 1.2


async def test_empty_metric_name_is_not_found():
    assert extract_metric_value({"": 3}, "") is None


async def test_to_number_coercion():
    assert to_number(5) == 5.0
    assert to_number(" 7.25 ") == 7.25
    assert to_number("1e3") == 1000.0
    assert to_number(float("nan")) is None
    assert to_number("") is None
    assert to_number([1]) is None


async def test_resolve_alias_returns_literal_key_without_alias():
    assert resolve_alias({"custom": 3}, "custom") == 3


async def test_alias_table_covers_dotted_names():
    assert METRIC_ALIASES["water.flow"][0] == "waterPumpedFlowRatePerHourValue"
    assert "inverterTemperatureValue" in METRIC_ALIASES["inverter.temperature"]
