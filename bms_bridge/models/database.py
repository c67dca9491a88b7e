from datetime import datetime, timezone
import json

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BmsData(Base):
    """BMS 遙測快照表（僅追加）"""
    __tablename__ = "bms_data"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow, index=True, nullable=False)
    total_voltage = Column(Float, nullable=True)
    current = Column(Float, nullable=True)
    temperature = Column(Float, nullable=True)
    remaining_capacity = Column(Float, nullable=True)
    charge_fet_status = Column(Boolean, nullable=True)
    discharge_fet_status = Column(Boolean, nullable=True)
    cell_voltages = Column(Text, nullable=True)  # JSON string

    def to_dict(self):
        """轉換為字典（欄位名稱與 MQTT 狀態消息一致）"""
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "total_voltage": self.total_voltage,
            "current": self.current,
            "temperature": self.temperature,
            "remaining_capacity_percent": self.remaining_capacity,
            "charge_fet_status": self.charge_fet_status,
            "discharge_fet_status": self.discharge_fet_status,
            "cell_voltages": json.loads(self.cell_voltages) if self.cell_voltages else [],
        }
