from fastapi import WebSocket, WebSocketDisconnect
from typing import Dict, List, Optional, Set
import asyncio
import json
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WebSocketManager:
    """WebSocket 連接管理器（即時廣播）"""

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self.client_info: Dict[WebSocket, dict] = {}

    async def connect(self, websocket: WebSocket, client_ip: Optional[str] = None):
        """接受新的 WebSocket 連接"""
        await websocket.accept()
        self.active_connections.append(websocket)
        self.client_info[websocket] = {
            "connected_at": _now(),
            "client_ip": client_ip,
            "last_ping": _now(),
            # 空集合代表接收所有頻道
            "topics": set(),
        }
        logger.info(f"WebSocket 客戶端已連接: {client_ip}, 總連接數: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        """斷開 WebSocket 連接"""
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        if websocket in self.client_info:
            del self.client_info[websocket]
        logger.info(f"WebSocket 客戶端已斷開，總連接數: {len(self.active_connections)}")

    def subscribe(self, websocket: WebSocket, topics: List[str]) -> Set[str]:
        """設定客戶端訂閱的頻道"""
        info = self.client_info.get(websocket)
        if info is None:
            return set()
        info["topics"] = {str(t) for t in topics}
        return info["topics"]

    def _wants(self, websocket: WebSocket, topic: str) -> bool:
        info = self.client_info.get(websocket)
        if info is None:
            return False
        return not info["topics"] or topic in info["topics"]

    async def send_personal_message(self, message: dict, websocket: WebSocket):
        """發送個人消息"""
        try:
            await websocket.send_text(json.dumps(message, default=str))
        except Exception as e:
            logger.error(f"發送個人消息失敗: {e}")
            self.disconnect(websocket)

    async def broadcast(self, data: dict, topic: str = "bms-status") -> int:
        """廣播消息給訂閱該頻道的客戶端，回傳送達數量"""
        if not self.active_connections:
            return 0

        message = json.dumps(
            {
                "topic": topic,
                "data": data,
                "timestamp": _now().isoformat(),
            },
            default=str,
        )

        sent = 0
        disconnected = []
        for connection in list(self.active_connections):
            if not self._wants(connection, topic):
                continue
            try:
                await connection.send_text(message)
                sent += 1
            except Exception as e:
                logger.error(f"廣播消息失敗: {e}")
                disconnected.append(connection)

        # 清理失效連接
        for conn in disconnected:
            self.disconnect(conn)
        return sent

    def get_connected_clients(self) -> int:
        """獲取連接數量"""
        return len(self.active_connections)

    async def send_heartbeat(self):
        """發送心跳檢測"""
        heartbeat_message = {
            "type": "heartbeat",
            "timestamp": _now().isoformat(),
            "server_time": _now().timestamp(),
        }

        disconnected = []
        for connection in list(self.active_connections):
            try:
                await connection.send_text(json.dumps(heartbeat_message))
            except Exception:
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn)


async def websocket_endpoint(websocket: WebSocket, manager: WebSocketManager):
    """WebSocket 端點處理函數"""
    client_ip = websocket.client.host if websocket.client else "unknown"
    await manager.connect(websocket, client_ip)

    try:
        welcome_message = {
            "type": "welcome",
            "message": "Connected to BMS bridge WebSocket",
            "timestamp": _now().isoformat(),
            "client_count": manager.get_connected_clients(),
        }
        await manager.send_personal_message(welcome_message, websocket)

        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"WebSocket 收到無法解析的消息: {data[:100]}")
                continue
            if not isinstance(message, dict):
                continue

            if message.get("type") == "ping":
                if websocket in manager.client_info:
                    manager.client_info[websocket]["last_ping"] = _now()
                await manager.send_personal_message(
                    {"type": "pong", "timestamp": _now().isoformat()}, websocket
                )

            elif message.get("type") == "subscribe":
                topics = message.get("topics") or []
                if not isinstance(topics, list):
                    topics = [topics]
                subscribed = manager.subscribe(websocket, topics)
                response = {
                    "type": "subscription_confirmed",
                    "topics": sorted(subscribed),
                    "timestamp": _now().isoformat(),
                }
                await manager.send_personal_message(response, websocket)

    except WebSocketDisconnect:
        logger.info(f"WebSocket 客戶端主動斷開: {client_ip}")
    except Exception as e:
        logger.error(f"WebSocket 錯誤: {e}")
    finally:
        manager.disconnect(websocket)


async def start_heartbeat_task(manager: WebSocketManager, interval: float = 30.0):
    """啟動心跳任務"""
    while True:
        await asyncio.sleep(interval)
        await manager.send_heartbeat()
