"""控制命令派送

派送流程（每次呼叫都從探測開始，不保留任何狀態）::

    探測直連 ─ 存活 ─> 直連發送 ─ 成功 ─> Delivered(direct)
        │                 └ 失敗 ─┐
        └ 不可用 ─────────────────┴─> MQTT 發布 ─ 接受 ─> Delivered(bus)
                                                └ 拒絕 ─> Failed

直連成功時不會觸碰 MQTT；直連失敗後不會在同一次派送中重試直連。
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Tuple, Union

from ..models.commands import (
    ControlCommand,
    DelaySet,
    ElectronicLoadControl,
    FetControl,
    Reset,
    ThresholdSet,
)
from .hardware_client import DirectReply, HardwareClient
from .mqtt_service import MQTTService
from .validation import validate_command

logger = logging.getLogger(__name__)

CHANNEL_DIRECT = "direct"
CHANNEL_BUS = "bus"


@dataclass(frozen=True)
class Delivered:
    channel: str


@dataclass(frozen=True)
class Failed:
    reason: str


@dataclass(frozen=True)
class Rejected:
    """驗證失敗，命令未派送"""
    reason: str


DispatchResult = Union[Delivered, Failed]


class BusChannel:
    """MQTT 命令通道：發布被接受即視為送達（非硬體確認）"""

    def __init__(self, mqtt: MQTTService):
        self.mqtt = mqtt

    async def send(self, topic: str, message: Dict[str, Any]) -> DispatchResult:
        try:
            accepted = await self.mqtt.publish(topic, message)
        except Exception as e:
            logger.error(f"MQTT 發布異常 {topic}: {e!r}")
            return Failed(f"MQTT publish to {topic} failed: {e}")
        if not accepted:
            return Failed(f"MQTT publish to {topic} was not accepted")
        return Delivered(CHANNEL_BUS)


# (主題, 負載)
BusMessage = Tuple[str, Dict[str, Any]]


def encode_bus_messages(
    command: ControlCommand,
    control_topic: str = "bms/control",
    load_topic: str = "electronic_load/control",
) -> List[BusMessage]:
    """將命令轉換為硬體韌體的 MQTT 負載（每個設定項目一則消息）"""
    if isinstance(command, ThresholdSet):
        messages = []
        if command.overcharge_voltage is not None:
            messages.append({"commandType": "set_OV", "voltage": command.overcharge_voltage})
        if command.undercharge_voltage is not None:
            messages.append({"commandType": "set_UV", "voltage": command.undercharge_voltage})
        if command.overcharge_current is not None:
            messages.append({"commandType": "set_ChgOC", "current": command.overcharge_current})
        if command.discharge_current is not None:
            messages.append({"commandType": "set_DsgOC", "current": command.discharge_current})
        return [(control_topic, m) for m in messages]

    if isinstance(command, DelaySet):
        messages = []
        if command.voltage_delay is not None:
            messages.append({"commandType": "set_delayVoltage", "delay": command.voltage_delay})
        for command_type, delay, release in (
            ("set_delayChgOC", command.charge_current_delay, command.charge_current_release),
            ("set_delayDsgOC", command.discharge_current_delay, command.discharge_current_release),
        ):
            if delay is None and release is None:
                continue
            payload: Dict[str, Any] = {"commandType": command_type}
            if delay is not None:
                payload["delay"] = delay
            if release is not None:
                payload["release"] = release
            messages.append(payload)
        return [(control_topic, m) for m in messages]

    if isinstance(command, FetControl):
        return [(control_topic, command.present_fields())]

    if isinstance(command, ElectronicLoadControl):
        return [(load_topic, command.model_dump(by_alias=True, exclude={"kind"}))]

    if isinstance(command, Reset):
        return [(control_topic, {"commandType": "Reset_settings"})]

    raise TypeError(f"unsupported command: {type(command).__name__}")


def direct_requests(
    command: ControlCommand, client: HardwareClient
) -> List[Tuple[str, Callable[[], Awaitable[DirectReply]]]]:
    """將命令轉換為直連請求清單（描述, 呼叫）"""
    requests: List[Tuple[str, Callable[[], Awaitable[DirectReply]]]] = []

    if isinstance(command, ThresholdSet):
        if command.overcharge_voltage is not None:
            requests.append(("set_OV", lambda: client.set_overcharge_voltage(command.overcharge_voltage)))
        if command.undercharge_voltage is not None:
            requests.append(("set_UV", lambda: client.set_undercharge_voltage(command.undercharge_voltage)))
        if command.overcharge_current is not None:
            requests.append(("set_ChgOC", lambda: client.set_overcharge_current(command.overcharge_current)))
        if command.discharge_current is not None:
            requests.append(("set_DsgOC", lambda: client.set_discharge_current(command.discharge_current)))
    elif isinstance(command, DelaySet):
        if command.voltage_delay is not None:
            requests.append(("set_delayVoltage", lambda: client.set_voltage_delay(command.voltage_delay)))
        if command.charge_current_delay is not None or command.charge_current_release is not None:
            requests.append(("set_delayChgOC", lambda: client.set_charge_current_delay(
                command.charge_current_delay, command.charge_current_release)))
        if command.discharge_current_delay is not None or command.discharge_current_release is not None:
            requests.append(("set_delayDsgOC", lambda: client.set_discharge_current_delay(
                command.discharge_current_delay, command.discharge_current_release)))
    elif isinstance(command, FetControl):
        requests.append(("fet_control", lambda: client.control_fet(
            command.charge_fet_status, command.discharge_fet_status)))
    elif isinstance(command, ElectronicLoadControl):
        requests.append(("electronic_load_control", lambda: client.control_electronic_load(
            command.electronic_load_enabled, command.load_mode, command.cp_mode_level)))
    elif isinstance(command, Reset):
        requests.append(("Reset_settings", client.reset_settings))
    else:
        raise TypeError(f"unsupported command: {type(command).__name__}")

    return requests


class CommandDispatcher:
    """命令派送器：優先硬體直連，失敗時改走 MQTT"""

    def __init__(
        self,
        hardware: HardwareClient,
        bus: BusChannel,
        control_topic: str = "bms/control",
        load_topic: str = "electronic_load/control",
    ):
        self.hardware = hardware
        self.bus = bus
        self.control_topic = control_topic
        self.load_topic = load_topic

    async def submit(self, command: ControlCommand) -> Union[Rejected, Delivered, Failed]:
        """驗證後派送；驗證失敗時不觸碰任何通道"""
        validation = validate_command(command)
        if not validation.ok:
            logger.warning(f"命令驗證失敗 ({command.kind}): {validation.reason}")
            return Rejected(validation.reason)
        return await self.dispatch(command)

    async def dispatch(self, command: ControlCommand) -> DispatchResult:
        """派送命令"""
        if await self.hardware.is_available():
            if await self._attempt_direct(command):
                logger.info(f"命令已經由硬體直連送達: {command.kind}")
                return Delivered(CHANNEL_DIRECT)
            logger.warning(f"硬體直連失敗，改用 MQTT 發送: {command.kind}")
        else:
            logger.info(f"硬體直連不可用，改用 MQTT 發送: {command.kind}")

        return await self._attempt_bus(command)

    async def _attempt_direct(self, command: ControlCommand) -> bool:
        for name, request in direct_requests(command, self.hardware):
            reply = await request()
            if not reply.ok:
                logger.error(f"直連命令 {name} 失敗: {reply.error}")
                return False
        return True

    async def _attempt_bus(self, command: ControlCommand) -> DispatchResult:
        messages = encode_bus_messages(command, self.control_topic, self.load_topic)
        for topic, payload in messages:
            result = await self.bus.send(topic, payload)
            if isinstance(result, Failed):
                logger.error(f"MQTT 發送失敗 ({command.kind}): {result.reason}")
                return result
        return Delivered(CHANNEL_BUS)
