from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from .config import Settings, settings as default_settings, setup_logging
from .api.routes import router as api_router
from .api.websocket import WebSocketManager, websocket_endpoint, start_heartbeat_task
from .services.cache_service import CacheService
from .services.database_service import DatabaseService
from .services.dispatcher import BusChannel, CommandDispatcher
from .services.hardware_client import HardwareClient
from .services.mqtt_service import MQTTService
from .services.telemetry_service import TelemetryRecorder
from .services.topic_router import TopicRouter

# 設置日誌
setup_logging(default_settings.log_level)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@dataclass
class BridgeServices:
    """程序範圍的服務實例，於啟動時建立一次並以參數注入"""
    settings: Settings
    database: DatabaseService
    cache: CacheService
    mqtt: MQTTService
    hardware: HardwareClient
    websocket_manager: WebSocketManager
    recorder: TelemetryRecorder
    router: TopicRouter
    dispatcher: CommandDispatcher


def build_services(config: Settings) -> BridgeServices:
    """組合根：建立並串接所有服務"""
    database = DatabaseService(config.database_url)
    cache = CacheService(config.redis_url, ttl=config.cache_ttl)
    mqtt = MQTTService(
        config.mqtt_broker_url,
        config.mqtt_client_id,
        subscriptions=config.mqtt_subscriptions,
        username=config.mqtt_username,
        password=config.mqtt_password,
        reconnect_interval=config.mqtt_reconnect_interval,
    )
    hardware = HardwareClient(
        config.hardware_url,
        timeout=config.hardware_timeout,
        probe_timeout=config.hardware_probe_timeout,
        enabled=config.hardware_enabled,
    )
    websocket_manager = WebSocketManager()
    recorder = TelemetryRecorder(database, websocket_manager, cache=cache)
    topic_router = recorder.build_router()
    dispatcher = CommandDispatcher(
        hardware,
        BusChannel(mqtt),
        control_topic=config.bms_control_topic,
        load_topic=config.electronic_load_control_topic,
    )
    mqtt.register_message_handler(topic_router.route)

    return BridgeServices(
        settings=config,
        database=database,
        cache=cache,
        mqtt=mqtt,
        hardware=hardware,
        websocket_manager=websocket_manager,
        recorder=recorder,
        router=topic_router,
        dispatcher=dispatcher,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """應用生命週期管理"""
    services: BridgeServices = app.state.services
    config = services.settings
    logger.info("🚀 啟動 BMS 橋接服務...")

    try:
        await services.database.initialize(create_schema=config.database_create_schema)
        logger.info("✅ 資料庫服務已連接")
    except Exception as e:
        logger.error(f"❌ 資料庫服務連接失敗: {e}")
        # 資料庫是關鍵服務，失敗則拋出異常
        raise

    try:
        await services.cache.connect()
        logger.info("✅ Redis 緩存服務已連接")
    except Exception as e:
        logger.warning(f"⚠️  Redis 緩存服務連接失敗: {e}")

    # MQTT 連線與重連由背景任務處理
    tasks = [
        asyncio.create_task(services.mqtt.run(), name="mqtt"),
        asyncio.create_task(
            start_heartbeat_task(services.websocket_manager, config.ws_heartbeat_interval),
            name="ws-heartbeat",
        ),
    ]

    logger.info("🎉 BMS 橋接服務啟動完成")

    yield

    logger.info("🔄 正在關閉服務...")
    for task in tasks:
        task.cancel()
    for task in tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task
    await services.mqtt.disconnect()
    await services.hardware.close()
    await services.cache.disconnect()
    await services.database.close()
    logger.info("✅ 服務已關閉")


def create_app(services: Optional[BridgeServices] = None) -> FastAPI:
    """建立 FastAPI 應用"""
    if services is None:
        services = build_services(default_settings)

    app = FastAPI(
        title="BMS Bridge",
        description="Hardware command dispatch and telemetry bridge for the battery management system",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=services.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api")

    @app.websocket("/ws")
    async def websocket_route(websocket: WebSocket):
        await websocket_endpoint(websocket, services.websocket_manager)

    @app.get("/")
    async def root():
        return {
            "message": "BMS bridge service",
            "version": VERSION,
            "status": "running",
            "services": {
                "database": services.database.is_connected(),
                "cache": services.cache.is_connected(),
                "mqtt": services.mqtt.is_connected(),
                "websocket_clients": services.websocket_manager.get_connected_clients(),
            },
        }

    return app


def run():
    """以 uvicorn 啟動服務"""
    uvicorn.run(
        "bms_bridge.main:create_app",
        factory=True,
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        log_level=default_settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
