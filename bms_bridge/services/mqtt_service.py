import asyncio
import json
import logging
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse

import aiomqtt

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], Awaitable[Any]]


def parse_broker_url(broker_url: str) -> tuple:
    """解析 mqtt://host:port，缺省為 localhost:1883"""
    parsed = urlparse(broker_url if "://" in broker_url else f"mqtt://{broker_url}")
    return parsed.hostname or "localhost", parsed.port or 1883


class MQTTService:
    """MQTT 服務"""

    def __init__(
        self,
        broker_url: str = "mqtt://localhost:1883",
        client_id: str = "bms-bridge",
        subscriptions: Optional[List[str]] = None,
        username: str = "",
        password: str = "",
        reconnect_interval: float = 10.0,
    ):
        self.broker_url = broker_url
        self.client_id = client_id
        self.subscriptions = list(subscriptions or [])
        self.username = username or None
        self.password = password or None
        self.reconnect_interval = reconnect_interval
        self.client: Optional[aiomqtt.Client] = None
        self.connected = False
        self.message_handler: Optional[MessageHandler] = None
        self._stack: Optional[AsyncExitStack] = None

    async def connect(self):
        """連接到 MQTT Broker 並訂閱主題"""
        host, port = parse_broker_url(self.broker_url)
        stack = AsyncExitStack()
        try:
            self.client = await stack.enter_async_context(
                aiomqtt.Client(
                    hostname=host,
                    port=port,
                    identifier=self.client_id,
                    username=self.username,
                    password=self.password,
                )
            )
        except Exception as e:
            await stack.aclose()
            logger.error(f"MQTT 連接失敗: {e}")
            self.connected = False
            raise

        self._stack = stack
        self.connected = True
        logger.info(f"MQTT 已連接到 {host}:{port}")
        await self.subscribe_topics()

    async def disconnect(self):
        """斷開 MQTT 連接"""
        self.connected = False
        if self._stack is not None:
            try:
                await self._stack.aclose()
            except aiomqtt.MqttError as e:
                logger.warning(f"MQTT 斷線時發生錯誤: {e}")
            self._stack = None
            self.client = None
            logger.info("MQTT 已斷開連接")

    def is_connected(self) -> bool:
        """檢查連接狀態"""
        return self.connected

    async def subscribe_topics(self):
        """訂閱主題"""
        for topic in self.subscriptions:
            await self.client.subscribe(topic, qos=1)
            logger.info(f"已訂閱 MQTT 主題: {topic}")

    async def publish(self, topic: str, message: Dict[str, Any]) -> bool:
        """發布消息，回傳 broker 是否接受"""
        if not self.connected or self.client is None:
            logger.warning("MQTT 未連接，無法發布消息")
            return False

        try:
            payload = json.dumps(message, default=str)
            await self.client.publish(topic, payload, qos=1)
            logger.debug(f"已發布消息到 {topic}: {payload[:100]}")
            return True
        except aiomqtt.MqttError as e:
            logger.error(f"發布消息失敗: {e}")
            return False

    def register_message_handler(self, handler: MessageHandler):
        """註冊消息處理器（收到的每則消息都交給它）"""
        self.message_handler = handler
        logger.info("已註冊 MQTT 消息處理器")

    async def start_listening(self):
        """開始監聽消息，直到連線中斷"""
        if not self.connected or self.client is None:
            logger.warning("MQTT 未連接，無法開始監聽")
            return

        async for message in self.client.messages:
            await self.handle_message(message)

    async def handle_message(self, message):
        """處理接收到的消息"""
        topic = str(message.topic)
        payload = message.payload
        if isinstance(payload, str):
            payload = payload.encode()
        elif payload is None:
            payload = b""
        elif not isinstance(payload, (bytes, bytearray)):
            payload = str(payload).encode()

        logger.debug(f"收到 MQTT 消息: {topic} - {bytes(payload[:100])!r}")

        if self.message_handler is None:
            logger.debug(f"未註冊處理器，忽略消息: {topic}")
            return
        await self.message_handler(topic, bytes(payload))

    async def run(self):
        """連線、監聽並在斷線後重新連線，直到被取消"""
        while True:
            try:
                if not self.connected:
                    await self.connect()
                await self.start_listening()
            except asyncio.CancelledError:
                await self.disconnect()
                raise
            except (aiomqtt.MqttError, OSError) as e:
                logger.error(f"MQTT 消息監聽錯誤: {e}")
            await self.disconnect()
            logger.info(f"{self.reconnect_interval} 秒後重新連接 MQTT")
            await asyncio.sleep(self.reconnect_interval)

    async def health_check(self) -> Dict[str, Any]:
        """健康檢查"""
        return {
            "connected": self.connected,
            "client_id": self.client_id,
            "broker_url": self.broker_url,
            "subscribed_topics": list(self.subscriptions),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
