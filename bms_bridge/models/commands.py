"""控制命令模型

每一種命令只攜帶與其標籤相關的欄位。閾值、延遲與 FET 命令的欄位為
``None`` 時代表「維持現狀」，與 ``False`` 不同。
"""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Command(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    def present_fields(self) -> dict:
        """回傳有指定值的欄位（不含 kind）"""
        return {
            name: value
            for name, value in self.model_dump(exclude={"kind"}).items()
            if value is not None
        }


class ThresholdSet(_Command):
    """保護閾值設定"""
    kind: Literal["threshold_set"] = "threshold_set"
    overcharge_voltage: Optional[float] = None
    undercharge_voltage: Optional[float] = None
    overcharge_current: Optional[float] = None
    discharge_current: Optional[float] = None


class DelaySet(_Command):
    """保護延遲/釋放時間設定（秒）"""
    kind: Literal["delay_set"] = "delay_set"
    voltage_delay: Optional[int] = None
    charge_current_delay: Optional[int] = None
    charge_current_release: Optional[int] = None
    discharge_current_delay: Optional[int] = None
    discharge_current_release: Optional[int] = None


class FetControl(_Command):
    """充放電 FET 開關"""
    kind: Literal["fet_control"] = "fet_control"
    charge_fet_status: Optional[bool] = None
    discharge_fet_status: Optional[bool] = None


class ElectronicLoadControl(_Command):
    """電子負載控制"""
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    kind: Literal["electronic_load_control"] = "electronic_load_control"
    electronic_load_enabled: bool = Field(default=False, alias="electronicLoadEnabled")
    load_mode: Literal["CC", "CP"] = Field(default="CC", alias="loadMode")
    cp_mode_level: int = Field(default=1, alias="cpModeLevel")


class Reset(_Command):
    """重設所有 BMS 設定為預設值"""
    kind: Literal["reset"] = "reset"


ControlCommand = Annotated[
    Union[ThresholdSet, DelaySet, FetControl, ElectronicLoadControl, Reset],
    Field(discriminator="kind"),
]

control_command_adapter = TypeAdapter(ControlCommand)


def parse_command(data: dict) -> ControlCommand:
    """由字典解析控制命令（依 kind 欄位辨識）"""
    return control_command_adapter.validate_python(data)
