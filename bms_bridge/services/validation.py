"""保護閾值驗證

在任何命令離開系統前，檢查閾值與延遲是否落在硬體允許的物理範圍內。
純函數，無副作用。
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from ..models.commands import ControlCommand, DelaySet, FetControl, ThresholdSet

# (欄位, 顯示名稱, 單位, 下限, 上限)，順序即檢查順序
VOLTAGE_BOUNDS = (
    ("overcharge_voltage", "Overcharge voltage", "V", 3.70, 4.20),
    ("undercharge_voltage", "Undercharge voltage", "V", 2.50, 4.00),
)
CURRENT_BOUNDS = (
    ("overcharge_current", "Overcharge current", "A", 1.50, 2.50),
    ("discharge_current", "Discharge current", "A", 2.00, 6.00),
)
DELAY_BOUNDS = (
    ("voltage_delay", "Voltage delay", "s", 2, 7),
    ("charge_current_delay", "Charge current delay", "s", 5, 15),
    ("charge_current_release", "Charge current release", "s", 10, 32),
    ("discharge_current_delay", "Discharge current delay", "s", 5, 15),
    ("discharge_current_release", "Discharge current release", "s", 10, 32),
)

MIN_VOLTAGE_GAP = 0.05
# 浮點誤差容忍（3.80 - 3.75 在二進位下略小於 0.05）
_EPSILON = 1e-9


@dataclass(frozen=True)
class ValidationResult:
    """驗證結果：ok 為 True 時 reason 為 None"""
    ok: bool
    reason: Optional[str] = None
    field: Optional[str] = None

    @classmethod
    def success(cls) -> "ValidationResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str, field: Optional[str] = None) -> "ValidationResult":
        return cls(ok=False, reason=reason, field=field)

    def __bool__(self) -> bool:
        return self.ok


def _fmt(value) -> str:
    return f"{value:.2f}" if isinstance(value, float) else str(value)


def _check_range(values: dict, bounds: Tuple) -> Optional[ValidationResult]:
    for name, label, unit, low, high in bounds:
        value = values.get(name)
        if value is None:
            continue
        if not (low <= value <= high):
            return ValidationResult.failure(
                f"{label} must be between {_fmt(low)}{unit} and {_fmt(high)}{unit} (got {value}{unit})",
                field=name,
            )
    return None


def validate_thresholds(
    overcharge_voltage: Optional[float] = None,
    undercharge_voltage: Optional[float] = None,
    overcharge_current: Optional[float] = None,
    discharge_current: Optional[float] = None,
    voltage_delay: Optional[int] = None,
    charge_current_delay: Optional[int] = None,
    charge_current_release: Optional[int] = None,
    discharge_current_delay: Optional[int] = None,
    discharge_current_release: Optional[int] = None,
) -> ValidationResult:
    """驗證閾值/延遲設定，回傳第一個違規項目

    檢查順序：過充電壓、欠壓、電壓差、過充電流、放電電流、各項延遲。
    電壓差（過充 - 欠壓 >= 0.05V）只在兩者同時提供時檢查。
    """
    values = {
        "overcharge_voltage": overcharge_voltage,
        "undercharge_voltage": undercharge_voltage,
        "overcharge_current": overcharge_current,
        "discharge_current": discharge_current,
        "voltage_delay": voltage_delay,
        "charge_current_delay": charge_current_delay,
        "charge_current_release": charge_current_release,
        "discharge_current_delay": discharge_current_delay,
        "discharge_current_release": discharge_current_release,
    }

    violation = _check_range(values, VOLTAGE_BOUNDS)
    if violation is not None:
        return violation

    if overcharge_voltage is not None and undercharge_voltage is not None:
        if overcharge_voltage - undercharge_voltage < MIN_VOLTAGE_GAP - _EPSILON:
            return ValidationResult.failure(
                f"Overcharge voltage ({overcharge_voltage}V) must exceed undercharge voltage "
                f"({undercharge_voltage}V) by at least {MIN_VOLTAGE_GAP:.2f}V",
                field="undercharge_voltage",
            )

    for bounds in (CURRENT_BOUNDS, DELAY_BOUNDS):
        violation = _check_range(values, bounds)
        if violation is not None:
            return violation

    return ValidationResult.success()


def validate_command(command: ControlCommand) -> ValidationResult:
    """在派送前驗證控制命令"""
    if isinstance(command, (ThresholdSet, DelaySet, FetControl)) and not command.present_fields():
        return ValidationResult.failure("Command does not set any value")
    if isinstance(command, (ThresholdSet, DelaySet)):
        return validate_thresholds(**command.present_fields())
    return ValidationResult.success()
