import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

# 硬體控制器端點
HEALTH_PATH = "/health"
STATUS_PATH = "/api/bms/status"
SETTINGS_PATH = "/api/bms/settings"
OVERCHARGE_VOLTAGE_PATH = "/api/bms/settings/overcharge-voltage"
UNDERCHARGE_VOLTAGE_PATH = "/api/bms/settings/undercharge-voltage"
OVERCHARGE_CURRENT_PATH = "/api/bms/settings/overcharge-current"
DISCHARGE_CURRENT_PATH = "/api/bms/settings/discharge-current"
VOLTAGE_DELAY_PATH = "/api/bms/settings/voltage-delay"
CHARGE_CURRENT_DELAY_PATH = "/api/bms/settings/charge-current-delay"
DISCHARGE_CURRENT_DELAY_PATH = "/api/bms/settings/discharge-current-delay"
RESET_PATH = "/api/bms/settings/reset"
FET_CONTROL_PATH = "/api/bms/hardware/fet/control"
ELECTRONIC_LOAD_PATH = "/api/bms/hardware/electronic-load/control"


@dataclass(frozen=True)
class DirectReply:
    """直連請求結果"""
    ok: bool
    status: Optional[int] = None
    body: Optional[Any] = None
    error: Optional[str] = None


class HardwareClient:
    """硬體控制器 HTTP 直連客戶端

    所有方法都不向呼叫端拋出傳輸錯誤：存活探測回傳布林值，
    命令回傳 DirectReply，讀取回傳字典或 None。
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8001",
        *,
        timeout: float = 5.0,
        probe_timeout: float = 5.0,
        enabled: bool = True,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.enabled = enabled
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """關閉 HTTP 會話（若由本客戶端建立）"""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def is_available(self) -> bool:
        """探測硬體控制器是否存活（GET /health 回傳 200）"""
        if not self.enabled:
            logger.debug("硬體直連已停用")
            return False

        try:
            session = await self._ensure_session()
            async with asyncio.timeout(self.probe_timeout):
                async with session.get(
                    f"{self.base_url}{HEALTH_PATH}",
                    timeout=aiohttp.ClientTimeout(total=self.probe_timeout),
                ) as response:
                    if response.status == 200:
                        return True
                    logger.warning(f"硬體控制器健康檢查失敗: HTTP {response.status}")
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"硬體控制器無法連線: {e!r}")
            return False

    async def post(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> DirectReply:
        """發送 POST 命令，HTTP 200 視為成功"""
        url = f"{self.base_url}{path}"
        try:
            session = await self._ensure_session()
            async with asyncio.timeout(self.timeout):
                async with session.post(url, params=params, json=json) as response:
                    body = await self._read_body(response)
                    if response.status == 200:
                        logger.info(f"硬體命令成功: POST {path} {params or json or ''}")
                        return DirectReply(ok=True, status=response.status, body=body)
                    logger.error(f"硬體命令失敗: POST {path} HTTP {response.status}")
                    return DirectReply(ok=False, status=response.status, body=body,
                                       error=f"HTTP {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            logger.error(f"硬體命令傳輸錯誤: POST {path}: {e!r}")
            return DirectReply(ok=False, error=repr(e))

    async def get_json(self, path: str) -> Optional[Dict[str, Any]]:
        """讀取 JSON 物件，任何非 200 或傳輸錯誤回傳 None"""
        if not self.enabled:
            return None

        try:
            session = await self._ensure_session()
            async with asyncio.timeout(self.timeout):
                async with session.get(f"{self.base_url}{path}") as response:
                    if response.status != 200:
                        logger.error(f"讀取 {path} 失敗: HTTP {response.status}")
                        return None
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            logger.error(f"讀取 {path} 錯誤: {e!r}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"讀取 {path} 回傳非物件 JSON: {type(data).__name__}")
            return None
        return data

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Optional[Any]:
        # 回應內容僅供記錄，非 UTF-8 位元組以替代字元保留
        raw = await response.read()
        if not raw:
            return None
        text = raw.decode("utf-8", errors="replace")
        if "json" in (response.content_type or ""):
            try:
                return json.loads(text)
            except ValueError:
                return text
        return text

    # 設定命令

    async def set_overcharge_voltage(self, voltage: float) -> DirectReply:
        return await self.post(OVERCHARGE_VOLTAGE_PATH, params={"voltage": voltage})

    async def set_undercharge_voltage(self, voltage: float) -> DirectReply:
        return await self.post(UNDERCHARGE_VOLTAGE_PATH, params={"voltage": voltage})

    async def set_overcharge_current(self, current: float) -> DirectReply:
        return await self.post(OVERCHARGE_CURRENT_PATH, params={"current": current})

    async def set_discharge_current(self, current: float) -> DirectReply:
        return await self.post(DISCHARGE_CURRENT_PATH, params={"current": current})

    async def set_voltage_delay(self, delay: int) -> DirectReply:
        return await self.post(VOLTAGE_DELAY_PATH, params={"delay": delay})

    async def set_charge_current_delay(self, delay: Optional[int] = None,
                                       release: Optional[int] = None) -> DirectReply:
        return await self.post(CHARGE_CURRENT_DELAY_PATH, params=_present(delay=delay, release=release))

    async def set_discharge_current_delay(self, delay: Optional[int] = None,
                                          release: Optional[int] = None) -> DirectReply:
        return await self.post(DISCHARGE_CURRENT_DELAY_PATH, params=_present(delay=delay, release=release))

    async def reset_settings(self) -> DirectReply:
        return await self.post(RESET_PATH)

    # 硬體控制

    async def control_fet(self, charge_fet_status: Optional[bool] = None,
                          discharge_fet_status: Optional[bool] = None) -> DirectReply:
        """控制 FET，未指定的一側不送出（維持現狀）"""
        body = _present(charge_fet_status=charge_fet_status, discharge_fet_status=discharge_fet_status)
        return await self.post(FET_CONTROL_PATH, json=body)

    async def control_electronic_load(self, enabled: bool, load_mode: str = "CC",
                                      cp_mode_level: int = 1) -> DirectReply:
        body = {
            "electronicLoadEnabled": enabled,
            "loadMode": load_mode,
            "cpModeLevel": cp_mode_level,
        }
        return await self.post(ELECTRONIC_LOAD_PATH, json=body)

    # 讀取（不經過派送器，無備援）

    async def get_status(self) -> Optional[Dict[str, Any]]:
        return await self.get_json(STATUS_PATH)

    async def get_settings(self) -> Optional[Dict[str, Any]]:
        return await self.get_json(SETTINGS_PATH)


def _present(**values: Any) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}
