from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BmsStatusMessage(BaseModel):
    """MQTT BMS 狀態消息模型（bms/status）"""
    model_config = ConfigDict(extra="ignore")

    total_voltage: Optional[float] = None
    current: Optional[float] = None
    temperature: Optional[float] = None
    remaining_capacity_percent: Optional[float] = None
    charge_fet_status: Optional[bool] = None
    discharge_fet_status: Optional[bool] = None
    cell_voltages: List[float] = []
    # 僅供顯示，權威時間戳於接收時指定
    timestamp: Optional[str] = None

    @field_validator("cell_voltages", mode="before")
    @classmethod
    def _null_cells_as_empty(cls, v):
        return [] if v is None else v

    # 韌體可能送出 epoch 數字或 ISO 字串
    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp_as_text(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class BmsControlMessage(BaseModel):
    """MQTT 控制回顯 / FET 狀態消息模型（bms/control、bms/fet/status）"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    command_type: Optional[str] = Field(default=None, alias="commandType")
    charge_fet_status: Optional[bool] = None
    discharge_fet_status: Optional[bool] = None
    voltage: Optional[float] = None
    current: Optional[float] = None
    delay: Optional[int] = None
    release: Optional[int] = None


class ElectronicLoadMessage(BaseModel):
    """MQTT 電子負載控制回顯消息模型（electronic_load/control）"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    electronic_load_enabled: Optional[bool] = Field(default=None, alias="electronicLoadEnabled")
    load_mode: Optional[str] = Field(default=None, alias="loadMode")
    cp_mode_level: Optional[int] = Field(default=None, alias="cpModeLevel")


class TelemetrySnapshot(BaseModel):
    """不可變的遙測快照，時間戳為接收時間"""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    total_voltage: Optional[float] = None
    current: Optional[float] = None
    temperature: Optional[float] = None
    remaining_capacity_percent: Optional[float] = None
    charge_fet_status: Optional[bool] = None
    discharge_fet_status: Optional[bool] = None
    cell_voltages: List[float] = []

    @classmethod
    def from_message(cls, message: BmsStatusMessage, received_at: datetime) -> "TelemetrySnapshot":
        return cls(
            timestamp=received_at,
            total_voltage=message.total_voltage,
            current=message.current,
            temperature=message.temperature,
            remaining_capacity_percent=message.remaining_capacity_percent,
            charge_fet_status=message.charge_fet_status,
            discharge_fet_status=message.discharge_fet_status,
            cell_voltages=list(message.cell_voltages),
        )


class DispatchResponse(BaseModel):
    """控制命令送達結果"""
    delivered: bool
    channel: Optional[str] = None
    detail: Optional[str] = None


class HealthCheck(BaseModel):
    """健康檢查模型"""
    status: str = "healthy"
    timestamp: datetime
    connections: Dict[str, Any]
    version: str = "1.0.0"
