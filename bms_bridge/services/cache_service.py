import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

LATEST_SNAPSHOT_KEY = "latest:bms-status"


class CacheService:
    """Redis 緩存服務（最新 BMS 快照）"""

    def __init__(self, redis_url: str = "redis://localhost:6379", ttl: int = 300):
        self.redis_url = redis_url
        self.ttl = ttl
        self.redis: Optional[aioredis.Redis] = None
        self.connected = False

    async def connect(self):
        """連接到 Redis"""
        try:
            self.redis = aioredis.from_url(self.redis_url, decode_responses=True)
            # 測試連接
            await self.redis.ping()
            self.connected = True
            logger.info("Redis 緩存服務已連接")
        except (RedisError, OSError) as e:
            logger.error(f"Redis 連接失敗: {e}")
            self.connected = False
            raise

    async def disconnect(self):
        """斷開 Redis 連接"""
        if self.redis:
            await self.redis.aclose()
            self.connected = False
            logger.info("Redis 緩存服務已斷開")

    def is_connected(self) -> bool:
        """檢查連接狀態"""
        return self.connected

    async def set_data(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        """設置緩存數據"""
        if not self.connected:
            logger.warning("Redis 未連接，無法設置數據")
            return False

        try:
            await self.redis.set(key, json.dumps(value, default=str), ex=expire)
            return True
        except RedisError as e:
            logger.error(f"設置緩存數據失敗: {e}")
            return False

    async def get_data(self, key: str) -> Optional[Any]:
        """獲取緩存數據"""
        if not self.connected:
            return None

        try:
            value = await self.redis.get(key)
            if value:
                return json.loads(value)
            return None
        except (RedisError, ValueError) as e:
            logger.error(f"獲取緩存數據失敗: {e}")
            return None

    async def set_latest_snapshot(self, data: Dict[str, Any]) -> bool:
        """設置最新快照"""
        return await self.set_data(LATEST_SNAPSHOT_KEY, data, expire=self.ttl)

    async def get_latest_snapshot(self) -> Optional[Dict[str, Any]]:
        """獲取最新快照"""
        return await self.get_data(LATEST_SNAPSHOT_KEY)
