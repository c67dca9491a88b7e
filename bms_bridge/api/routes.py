from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from typing import Optional, Union
from datetime import datetime, timezone
import logging

from ..models.commands import (
    ControlCommand,
    DelaySet,
    ElectronicLoadControl,
    FetControl,
    Reset,
    ThresholdSet,
)
from ..models.schemas import DispatchResponse, HealthCheck
from ..services.cache_service import CacheService
from ..services.database_service import DatabaseService
from ..services.dispatcher import CommandDispatcher, Delivered, Failed, Rejected
from ..services.hardware_client import HardwareClient
from ..services.mqtt_service import MQTTService

logger = logging.getLogger(__name__)

router = APIRouter()


# 依賴注入：服務實例由組合根放在 app.state.services
def get_database_service(request: Request) -> DatabaseService:
    return request.app.state.services.database


def get_cache_service(request: Request) -> CacheService:
    return request.app.state.services.cache


def get_mqtt_service(request: Request) -> MQTTService:
    return request.app.state.services.mqtt


def get_hardware_client(request: Request) -> HardwareClient:
    return request.app.state.services.hardware


def get_dispatcher(request: Request) -> CommandDispatcher:
    return request.app.state.services.dispatcher


def parse_instant(value: str) -> datetime:
    """解析 ISO 8601 時間（接受結尾 Z），統一轉為 UTC"""
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


async def _submit(dispatcher: CommandDispatcher, command: ControlCommand) -> Union[DispatchResponse, JSONResponse]:
    result = await dispatcher.submit(command)
    if isinstance(result, Delivered):
        return DispatchResponse(delivered=True, channel=result.channel)
    if isinstance(result, Rejected):
        raise HTTPException(status_code=400, detail=result.reason)
    if isinstance(result, Failed):
        return JSONResponse(
            status_code=502,
            content=DispatchResponse(delivered=False, detail=result.reason).model_dump(),
        )
    raise HTTPException(status_code=500, detail="Unexpected dispatch result")


@router.get("/bms/status")
async def get_latest_status(
    cache: CacheService = Depends(get_cache_service),
    database: DatabaseService = Depends(get_database_service),
):
    """獲取最新 BMS 狀態（先查緩存，再查資料庫）"""
    try:
        if cache and cache.is_connected():
            cached = await cache.get_latest_snapshot()
            if cached:
                return cached

        if database and database.is_connected():
            latest = await database.get_latest_snapshot()
            if latest:
                return latest
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error retrieving BMS status: {str(e)}")

    raise HTTPException(status_code=404, detail="No BMS status available")


@router.get("/bms/history")
async def get_history(
    start: str,
    end: str,
    database: DatabaseService = Depends(get_database_service),
):
    """獲取時間範圍內的歷史數據"""
    try:
        start_time = parse_instant(start)
        end_time = parse_instant(end)
    except ValueError as e:
        logger.error(f"時間參數解析錯誤: {e}")
        raise HTTPException(status_code=400, detail=f"Invalid date parameters: {str(e)}")

    if not database.is_connected():
        raise HTTPException(status_code=503, detail="Database not available")

    try:
        return await database.get_history(start_time, end_time)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error retrieving history data: {str(e)}")


@router.get("/bms/temperature/history")
async def get_temperature_history(
    limit: int = Query(default=10, ge=1, le=1000),
    database: DatabaseService = Depends(get_database_service),
):
    """獲取最新 N 筆快照（溫度趨勢用）"""
    if not database.is_connected():
        raise HTTPException(status_code=503, detail="Database not available")

    try:
        return await database.get_recent_snapshots(limit=limit)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error retrieving temperature history: {str(e)}")


@router.post("/bms/control", response_model=DispatchResponse)
async def send_control_command(
    command: FetControl,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """FET 控制命令"""
    return await _submit(dispatcher, command)


@router.post("/bms/control/charge", response_model=DispatchResponse)
async def control_charge_fet(
    status: bool,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """充電 FET 開關（放電 FET 維持現狀）"""
    return await _submit(dispatcher, FetControl(charge_fet_status=status))


@router.post("/bms/control/discharge", response_model=DispatchResponse)
async def control_discharge_fet(
    status: bool,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """放電 FET 開關（充電 FET 維持現狀）"""
    return await _submit(dispatcher, FetControl(discharge_fet_status=status))


@router.post("/bms/control/electronic-load", response_model=DispatchResponse)
async def control_electronic_load(
    command: ElectronicLoadControl,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """電子負載控制"""
    return await _submit(dispatcher, command)


@router.post("/bms/settings/thresholds", response_model=DispatchResponse)
async def set_thresholds(
    command: ThresholdSet,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """設定保護閾值（過充/欠壓電壓、過充/放電電流）"""
    return await _submit(dispatcher, command)


@router.post("/bms/settings/delays", response_model=DispatchResponse)
async def set_delays(
    command: DelaySet,
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """設定保護延遲與釋放時間"""
    return await _submit(dispatcher, command)


@router.post("/bms/settings/reset", response_model=DispatchResponse)
async def reset_settings(dispatcher: CommandDispatcher = Depends(get_dispatcher)):
    """重設 BMS 設定"""
    return await _submit(dispatcher, Reset())


@router.get("/bms/hardware/status")
async def get_hardware_status(hardware: HardwareClient = Depends(get_hardware_client)):
    """直接向硬體控制器讀取狀態（無備援）"""
    status = await hardware.get_status()
    if status is None:
        raise HTTPException(status_code=503, detail="Hardware controller not available")
    return status


@router.get("/bms/hardware/settings")
async def get_hardware_settings(hardware: HardwareClient = Depends(get_hardware_client)):
    """直接向硬體控制器讀取設定（無備援）"""
    hw_settings = await hardware.get_settings()
    if hw_settings is None:
        raise HTTPException(status_code=503, detail="Hardware controller not available")
    return hw_settings


@router.get("/health", response_model=HealthCheck)
async def health_check(
    cache: CacheService = Depends(get_cache_service),
    mqtt: MQTTService = Depends(get_mqtt_service),
    database: DatabaseService = Depends(get_database_service),
    hardware: HardwareClient = Depends(get_hardware_client),
    probe: Optional[bool] = False,
):
    """健康檢查端點（probe=true 時同時探測硬體直連）"""
    connections = {
        "database": database.is_connected(),
        "redis": cache.is_connected(),
        "mqtt": mqtt.is_connected(),
        "hardware_enabled": hardware.enabled,
    }
    if probe:
        connections["hardware"] = await hardware.is_available()

    status = "healthy" if connections["database"] and connections["mqtt"] else "degraded"
    return HealthCheck(
        status=status,
        timestamp=datetime.now(timezone.utc),
        connections=connections,
    )
