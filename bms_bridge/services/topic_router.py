"""MQTT 主題路由

依主題字串的子字串分類，每則消息只交給一個處理器。每則消息獨立處理：
解碼或處理失敗只記錄日誌並丟棄該消息，不影響後續消息。
"""
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pydantic import ValidationError

logger = logging.getLogger(__name__)

TOPIC_FET_STATUS = "bms/fet/status"
TOPIC_STATUS = "bms/status"
TOPIC_ELECTRONIC_LOAD_CONTROL = "electronic_load/control"
TOPIC_CONTROL = "bms/control"

# 比對順序：較具體的片段在前
TOPIC_FRAGMENTS: Tuple[str, ...] = (
    TOPIC_FET_STATUS,
    TOPIC_STATUS,
    TOPIC_ELECTRONIC_LOAD_CONTROL,
    TOPIC_CONTROL,
)

TopicHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class DecodeError(ValueError):
    """MQTT 負載無法解碼"""


def classify_topic(topic: str) -> Optional[str]:
    """回傳主題所屬的片段，無法辨識時回傳 None"""
    for fragment in TOPIC_FRAGMENTS:
        if fragment in topic:
            return fragment
    return None


def decode_payload(payload: bytes) -> Dict[str, Any]:
    """將 UTF-8 JSON 負載解碼為字典"""
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"invalid JSON payload: {e}") from e
    if not isinstance(data, dict):
        raise DecodeError(f"expected a JSON object, got {type(data).__name__}")
    return data


class TopicRouter:
    """將 MQTT 消息分派給對應的處理器"""

    def __init__(self, handlers: Optional[Dict[str, TopicHandler]] = None):
        self.handlers: Dict[str, TopicHandler] = dict(handlers or {})
        unknown = set(self.handlers) - set(TOPIC_FRAGMENTS)
        if unknown:
            raise ValueError(f"unknown topic fragments: {sorted(unknown)}")

    def register(self, fragment: str, handler: TopicHandler):
        if fragment not in TOPIC_FRAGMENTS:
            raise ValueError(f"unknown topic fragment: {fragment}")
        self.handlers[fragment] = handler

    async def route(self, topic: str, payload: bytes) -> Optional[str]:
        """處理一則消息，回傳處理它的主題片段（丟棄時回傳 None）"""
        fragment = classify_topic(topic)
        handler = self.handlers.get(fragment) if fragment else None
        if handler is None:
            logger.debug(f"忽略未知主題的消息: {topic}")
            return None

        try:
            data = decode_payload(payload)
            await handler(data)
        except (DecodeError, ValidationError) as e:
            logger.warning(f"無法解碼 {topic} 的消息，已丟棄: {e}")
            return None
        except Exception:
            logger.exception(f"處理 {topic} 的消息時發生錯誤")
            return None

        return fragment
