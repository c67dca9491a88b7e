import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..models.database import Base, BmsData
from ..models.schemas import TelemetrySnapshot

logger = logging.getLogger(__name__)

# 單次查詢最大返回數量
MAX_HISTORY_ROWS = 1000


class DatabaseService:
    """資料庫服務 - BMS 快照持久化（僅追加）"""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine = None
        self.async_session_maker = None
        self.connected = False

    async def initialize(self, create_schema: bool = False):
        """初始化資料庫連接

        Args:
            create_schema: 是否直接建立資料表（開發/測試用，正式環境使用 alembic）
        """
        try:
            self.engine = create_async_engine(
                self.database_url,
                echo=False,
                pool_pre_ping=True,
            )

            self.async_session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            if create_schema:
                async with self.engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)

            # 測試連接
            async with self.async_session_maker() as session:
                await session.execute(select(1))

            self.connected = True
            logger.info("資料庫服務初始化成功")

        except Exception as e:
            logger.error(f"資料庫初始化失敗: {e}")
            self.connected = False
            raise

    async def close(self):
        """關閉資料庫連接"""
        if self.engine:
            await self.engine.dispose()
        self.connected = False
        logger.info("資料庫連接已關閉")

    def is_connected(self) -> bool:
        """檢查資料庫連接狀態"""
        return self.connected

    async def save_snapshot(self, snapshot: TelemetrySnapshot) -> Optional[int]:
        """儲存 BMS 快照，失敗時回傳 None"""
        if not self.connected:
            logger.warning("資料庫未連接，無法儲存數據")
            return None

        try:
            async with self.async_session_maker() as session:
                bms_data = BmsData(
                    timestamp=snapshot.timestamp,
                    total_voltage=snapshot.total_voltage,
                    current=snapshot.current,
                    temperature=snapshot.temperature,
                    remaining_capacity=snapshot.remaining_capacity_percent,
                    charge_fet_status=snapshot.charge_fet_status,
                    discharge_fet_status=snapshot.discharge_fet_status,
                    cell_voltages=json.dumps(snapshot.cell_voltages),
                )

                session.add(bms_data)
                await session.commit()
                await session.refresh(bms_data)

                logger.debug(f"BMS 快照已儲存，ID: {bms_data.id}")
                return bms_data.id

        except SQLAlchemyError as e:
            logger.error(f"儲存 BMS 快照失敗: {e}")
            return None

    async def get_latest_snapshot(self) -> Optional[Dict[str, Any]]:
        """獲取最新的 BMS 快照"""
        rows = await self.get_recent_snapshots(limit=1)
        return rows[0] if rows else None

    async def get_recent_snapshots(self, limit: int = 10) -> List[Dict[str, Any]]:
        """獲取最新的 N 筆快照（新到舊）"""
        if not self.connected:
            return []

        try:
            async with self.async_session_maker() as session:
                stmt = (
                    select(BmsData)
                    .order_by(BmsData.timestamp.desc(), BmsData.id.desc())
                    .limit(min(limit, MAX_HISTORY_ROWS))
                )
                result = await session.execute(stmt)
                return [row.to_dict() for row in result.scalars().all()]

        except SQLAlchemyError as e:
            logger.error(f"獲取 BMS 快照失敗: {e}")
            return []

    async def get_history(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """獲取時間範圍內的快照（新到舊）"""
        if not self.connected:
            return []

        try:
            async with self.async_session_maker() as session:
                stmt = (
                    select(BmsData)
                    .where(BmsData.timestamp >= start, BmsData.timestamp <= end)
                    .order_by(BmsData.timestamp.desc(), BmsData.id.desc())
                    .limit(MAX_HISTORY_ROWS)
                )
                result = await session.execute(stmt)
                return [row.to_dict() for row in result.scalars().all()]

        except SQLAlchemyError as e:
            logger.error(f"獲取歷史數據失敗: {e}")
            return []
