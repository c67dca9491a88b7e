import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..api.websocket import WebSocketManager
from ..models.schemas import (
    BmsControlMessage,
    BmsStatusMessage,
    ElectronicLoadMessage,
    TelemetrySnapshot,
)
from .cache_service import CacheService
from .database_service import DatabaseService
from .topic_router import (
    TOPIC_CONTROL,
    TOPIC_ELECTRONIC_LOAD_CONTROL,
    TOPIC_FET_STATUS,
    TOPIC_STATUS,
    TopicRouter,
)

logger = logging.getLogger(__name__)

# WebSocket 廣播頻道
CHANNEL_STATUS = "bms-status"
CHANNEL_CONTROL = "bms-control"
CHANNEL_FET_STATUS = "bms-fet-status"
CHANNEL_ELECTRONIC_LOAD = "electronic-load-control"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RecordOutcome:
    """各項副作用是否成功（彼此獨立）"""
    snapshot: TelemetrySnapshot
    persisted: bool
    cached: bool
    broadcast: bool


class TelemetryRecorder:
    """處理 BMS 狀態消息：儲存快照、快取並廣播"""

    def __init__(
        self,
        database: DatabaseService,
        publisher: WebSocketManager,
        cache: Optional[CacheService] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.database = database
        self.publisher = publisher
        self.cache = cache
        self.clock = clock

    async def handle_status(self, data: Dict[str, Any]) -> RecordOutcome:
        """MQTT bms/status 處理器"""
        return await self.record(BmsStatusMessage.model_validate(data))

    async def record(self, status: BmsStatusMessage) -> RecordOutcome:
        # 權威時間戳為接收時間，負載中的 timestamp 僅供顯示
        snapshot = TelemetrySnapshot.from_message(status, self.clock())

        persisted = await self._persist(snapshot)
        cached = await self._cache(snapshot)
        broadcast = await self._broadcast(status.model_dump(), CHANNEL_STATUS)

        logger.debug(
            f"處理 BMS 狀態: 電壓 {status.total_voltage}V, 電流 {status.current}A, "
            f"儲存={persisted}, 快取={cached}, 廣播={broadcast}"
        )
        return RecordOutcome(snapshot=snapshot, persisted=persisted, cached=cached, broadcast=broadcast)

    async def handle_control(self, data: Dict[str, Any]) -> bool:
        """MQTT bms/control 回顯處理器"""
        message = BmsControlMessage.model_validate(data)
        logger.info(f"收到 BMS 控制回顯: {message.model_dump(exclude_none=True)}")
        return await self._broadcast(message.model_dump(by_alias=True), CHANNEL_CONTROL)

    async def handle_fet_status(self, data: Dict[str, Any]) -> bool:
        """MQTT bms/fet/status 處理器"""
        message = BmsControlMessage.model_validate(data)
        logger.info(
            f"收到 FET 狀態: 充電={message.charge_fet_status}, 放電={message.discharge_fet_status}"
        )
        return await self._broadcast(message.model_dump(by_alias=True), CHANNEL_FET_STATUS)

    async def handle_electronic_load(self, data: Dict[str, Any]) -> bool:
        """MQTT electronic_load/control 回顯處理器"""
        message = ElectronicLoadMessage.model_validate(data)
        logger.info(f"收到電子負載控制回顯: {message.model_dump(exclude_none=True)}")
        return await self._broadcast(message.model_dump(by_alias=True), CHANNEL_ELECTRONIC_LOAD)

    def build_router(self) -> TopicRouter:
        """建立對應本記錄器各處理器的主題路由"""
        return TopicRouter({
            TOPIC_STATUS: self.handle_status,
            TOPIC_CONTROL: self.handle_control,
            TOPIC_FET_STATUS: self.handle_fet_status,
            TOPIC_ELECTRONIC_LOAD_CONTROL: self.handle_electronic_load,
        })

    async def _persist(self, snapshot: TelemetrySnapshot) -> bool:
        try:
            data_id = await self.database.save_snapshot(snapshot)
        except Exception as e:
            logger.error(f"儲存 BMS 快照錯誤: {e!r}")
            return False
        if data_id is None:
            logger.error("BMS 快照未能儲存到資料庫")
            return False
        logger.debug(f"BMS 快照已儲存，ID: {data_id}")
        return True

    async def _cache(self, snapshot: TelemetrySnapshot) -> bool:
        if self.cache is None or not self.cache.is_connected():
            return False
        try:
            return await self.cache.set_latest_snapshot(snapshot.model_dump(mode="json"))
        except Exception as e:
            logger.warning(f"快取 BMS 快照錯誤: {e!r}")
            return False

    async def _broadcast(self, data: Dict[str, Any], channel: str) -> bool:
        try:
            await self.publisher.broadcast(data, channel)
        except Exception as e:
            logger.error(f"廣播 {channel} 錯誤: {e!r}")
            return False
        return True
