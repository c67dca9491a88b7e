import logging
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # 單一真實來源：專案根目錄的 .env，忽略前端/docker 的無關鍵值
    model_config = SettingsConfigDict(
        env_file=(".env",),
        extra="ignore",
    )
    """應用設定"""

    # FastAPI 設定
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # 資料庫設定
    database_url: str = "sqlite+aiosqlite:///./bms.db"
    # 開發用：啟動時直接建表（正式環境請使用 alembic upgrade）
    database_create_schema: bool = False

    # Redis 設定（最新快照快取）
    redis_url: str = "redis://localhost:6379"
    cache_ttl: int = 300

    # MQTT 設定
    mqtt_broker_url: str = "mqtt://localhost:1883"
    mqtt_client_id: str = "bms-bridge"
    mqtt_username: str = ""
    mqtt_password: str = ""
    mqtt_subscriptions: List[str] = [
        "bms/#",
        "+/bms/#",
        "electronic_load/#",
        "+/electronic_load/#",
    ]
    mqtt_reconnect_interval: float = 10.0
    bms_control_topic: str = "bms/control"
    electronic_load_control_topic: str = "electronic_load/control"

    # 硬體控制器（直連 HTTP）設定
    hardware_url: str = "http://localhost:8001"
    hardware_enabled: bool = True
    hardware_timeout: float = 5.0
    hardware_probe_timeout: float = 5.0

    # WebSocket 設定
    ws_heartbeat_interval: float = 30.0

    # 日誌設定
    log_level: str = "INFO"

    # 舊版設定以毫秒表示逾時（例如 5000），自動換算為秒
    @field_validator("hardware_timeout", "hardware_probe_timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, v):
        if isinstance(v, str):
            v = float(v.strip())
        if isinstance(v, (int, float)) and v > 100:
            return v / 1000.0
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


def setup_logging(level: str = "INFO") -> None:
    """設置日誌格式與等級"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


settings = Settings()
