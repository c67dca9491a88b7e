import pytest

from bms_bridge.models.commands import DelaySet, ElectronicLoadControl, FetControl, Reset, ThresholdSet
from bms_bridge.services.validation import validate_command, validate_thresholds


@pytest.mark.parametrize(
    "field,value",
    [
        ("overcharge_voltage", 3.70),
        ("overcharge_voltage", 4.20),
        ("undercharge_voltage", 2.50),
        ("undercharge_voltage", 4.00),
        ("overcharge_current", 1.50),
        ("overcharge_current", 2.50),
        ("discharge_current", 2.00),
        ("discharge_current", 6.00),
        ("voltage_delay", 2),
        ("voltage_delay", 7),
        ("charge_current_delay", 5),
        ("discharge_current_delay", 15),
        ("charge_current_release", 10),
        ("discharge_current_release", 32),
    ],
)
def test_bounds_are_inclusive(field, value):
    result = validate_thresholds(**{field: value})
    assert result.ok
    assert result.reason is None


@pytest.mark.parametrize(
    "field,value",
    [
        ("overcharge_voltage", 4.25),
        ("overcharge_voltage", 3.69),
        ("undercharge_voltage", 2.49),
        ("undercharge_voltage", 4.01),
        ("overcharge_current", 2.51),
        ("discharge_current", 1.99),
        ("voltage_delay", 8),
        ("charge_current_delay", 4),
        ("charge_current_release", 33),
        ("discharge_current_delay", 16),
        ("discharge_current_release", 9),
    ],
)
def test_out_of_bounds_reports_field(field, value):
    result = validate_thresholds(**{field: value})
    assert not result.ok
    assert result.field == field
    assert str(value) in result.reason


def test_overcharge_voltage_reason_is_readable():
    result = validate_thresholds(overcharge_voltage=4.25)
    assert not result
    assert result.reason == "Overcharge voltage must be between 3.70V and 4.20V (got 4.25V)"


def test_voltage_gap_below_minimum_fails():
    result = validate_thresholds(overcharge_voltage=3.80, undercharge_voltage=3.76)
    assert not result.ok
    assert "at least 0.05V" in result.reason


def test_voltage_gap_exactly_minimum_passes():
    assert validate_thresholds(overcharge_voltage=3.80, undercharge_voltage=3.75).ok


def test_gap_not_checked_when_only_one_voltage_given():
    assert validate_thresholds(undercharge_voltage=3.99).ok
    assert validate_thresholds(overcharge_voltage=3.70).ok


def test_first_violation_wins_in_fixed_order():
    result = validate_thresholds(
        overcharge_voltage=5.0,
        undercharge_voltage=1.0,
        overcharge_current=9.0,
        voltage_delay=100,
    )
    assert result.field == "overcharge_voltage"

    result = validate_thresholds(
        overcharge_voltage=3.80,
        undercharge_voltage=3.79,
        overcharge_current=9.0,
    )
    assert result.field == "undercharge_voltage"
    assert "exceed" in result.reason

    result = validate_thresholds(overcharge_current=9.0, discharge_current=0.5, voltage_delay=100)
    assert result.field == "overcharge_current"

    result = validate_thresholds(discharge_current=0.5, voltage_delay=100)
    assert result.field == "discharge_current"


def test_validation_is_repeatable():
    first = validate_thresholds(overcharge_voltage=4.3)
    second = validate_thresholds(overcharge_voltage=4.3)
    assert first == second


def test_validate_command_checks_threshold_and_delay_sets():
    assert validate_command(ThresholdSet(overcharge_voltage=4.0)).ok
    assert not validate_command(ThresholdSet(discharge_current=7.0)).ok
    assert validate_command(DelaySet(voltage_delay=5, charge_current_release=20)).ok
    assert not validate_command(DelaySet(charge_current_delay=20)).ok


def test_validate_command_rejects_empty_commands():
    for command in (ThresholdSet(), DelaySet(), FetControl()):
        result = validate_command(command)
        assert not result.ok
        assert result.reason == "Command does not set any value"


def test_validate_command_passes_other_commands():
    assert validate_command(FetControl(charge_fet_status=False)).ok
    assert validate_command(ElectronicLoadControl()).ok
    assert validate_command(Reset()).ok
