#!/usr/bin/env python3
"""
BMS 橋接命令列工具

功能:
- 啟動 API 服務 (serve)
- 探測硬體控制器 (probe)
- 發送閾值/延遲/FET/電子負載/重設命令（先直連，失敗改走 MQTT）
- 直接讀取硬體狀態與設定
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from .config import Settings, setup_logging
from .models.commands import (
    ControlCommand,
    DelaySet,
    ElectronicLoadControl,
    FetControl,
    Reset,
    ThresholdSet,
)
from .services.dispatcher import BusChannel, CommandDispatcher, Delivered, Rejected
from .services.hardware_client import HardwareClient
from .services.mqtt_service import MQTTService

console = Console()


def _on_off(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("on", "true", "1"):
        return True
    if lowered in ("off", "false", "0"):
        return False
    raise argparse.ArgumentTypeError(f"expected on/off, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bms-bridge", description="BMS hardware command and telemetry bridge")
    parser.add_argument("--log-level", default=None, help="logging level (default from settings)")
    sub = parser.add_subparsers(dest="action", required=True)

    sub.add_parser("serve", help="run the API service")
    sub.add_parser("probe", help="check whether the hardware controller is reachable")
    sub.add_parser("hw-status", help="read BMS status directly from the hardware controller")
    sub.add_parser("hw-settings", help="read BMS settings directly from the hardware controller")
    sub.add_parser("reset", help="reset all BMS settings to defaults")

    thresholds = sub.add_parser("thresholds", help="set protection thresholds")
    thresholds.add_argument("--ov", dest="overcharge_voltage", type=float, help="overcharge voltage (V)")
    thresholds.add_argument("--uv", dest="undercharge_voltage", type=float, help="undercharge voltage (V)")
    thresholds.add_argument("--chg-oc", dest="overcharge_current", type=float, help="overcharge current (A)")
    thresholds.add_argument("--dsg-oc", dest="discharge_current", type=float, help="discharge current (A)")

    delays = sub.add_parser("delays", help="set protection delay/release times")
    delays.add_argument("--voltage-delay", type=int, help="voltage delay (s)")
    delays.add_argument("--chg-delay", dest="charge_current_delay", type=int, help="charge current delay (s)")
    delays.add_argument("--chg-release", dest="charge_current_release", type=int, help="charge current release (s)")
    delays.add_argument("--dsg-delay", dest="discharge_current_delay", type=int, help="discharge current delay (s)")
    delays.add_argument("--dsg-release", dest="discharge_current_release", type=int,
                        help="discharge current release (s)")

    fet = sub.add_parser("fet", help="switch charge/discharge FETs (omitted side is left unchanged)")
    fet.add_argument("--charge", dest="charge_fet_status", type=_on_off, help="on/off")
    fet.add_argument("--discharge", dest="discharge_fet_status", type=_on_off, help="on/off")

    load = sub.add_parser("load", help="control the electronic load")
    load.add_argument("state", type=_on_off, help="on/off")
    load.add_argument("--mode", choices=("CC", "CP"), default="CC")
    load.add_argument("--level", type=int, default=1, help="CP mode level")

    return parser


def command_from_args(args: argparse.Namespace) -> Optional[ControlCommand]:
    """將命令列參數轉換為控制命令（非命令類動作回傳 None）"""
    if args.action == "thresholds":
        return ThresholdSet(
            overcharge_voltage=args.overcharge_voltage,
            undercharge_voltage=args.undercharge_voltage,
            overcharge_current=args.overcharge_current,
            discharge_current=args.discharge_current,
        )
    if args.action == "delays":
        return DelaySet(
            voltage_delay=args.voltage_delay,
            charge_current_delay=args.charge_current_delay,
            charge_current_release=args.charge_current_release,
            discharge_current_delay=args.discharge_current_delay,
            discharge_current_release=args.discharge_current_release,
        )
    if args.action == "fet":
        return FetControl(charge_fet_status=args.charge_fet_status, discharge_fet_status=args.discharge_fet_status)
    if args.action == "load":
        return ElectronicLoadControl(
            electronic_load_enabled=args.state, load_mode=args.mode, cp_mode_level=args.level
        )
    if args.action == "reset":
        return Reset()
    return None


def _print_mapping(title: str, data: dict):
    table = Table(title=title)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in data.items():
        table.add_row(str(key), str(value))
    console.print(table)


async def _send(settings: Settings, hardware: HardwareClient, command: ControlCommand) -> int:
    mqtt = MQTTService(
        settings.mqtt_broker_url,
        f"{settings.mqtt_client_id}-cli",
        username=settings.mqtt_username,
        password=settings.mqtt_password,
    )
    try:
        await mqtt.connect()
    except Exception as e:
        console.print(f"[yellow]⚠️  MQTT 無法連接，僅能使用硬體直連: {e}[/yellow]")

    dispatcher = CommandDispatcher(
        hardware,
        BusChannel(mqtt),
        control_topic=settings.bms_control_topic,
        load_topic=settings.electronic_load_control_topic,
    )
    try:
        result = await dispatcher.submit(command)
    finally:
        await mqtt.disconnect()

    if isinstance(result, Delivered):
        console.print(f"[green]✅ 命令已送達 (channel: {result.channel})[/green]")
        return 0
    if isinstance(result, Rejected):
        console.print(f"[red]❌ 命令驗證失敗: {result.reason}[/red]")
        return 1
    console.print(f"[red]❌ 命令未送達: {result.reason}[/red]")
    return 1


async def run_action(args: argparse.Namespace, settings: Settings) -> int:
    hardware = HardwareClient(
        settings.hardware_url,
        timeout=settings.hardware_timeout,
        probe_timeout=settings.hardware_probe_timeout,
        enabled=settings.hardware_enabled,
    )
    try:
        if args.action == "probe":
            available = await hardware.is_available()
            if available:
                console.print(f"[green]✅ 硬體控制器可用: {settings.hardware_url}[/green]")
                return 0
            console.print(f"[red]❌ 硬體控制器不可用: {settings.hardware_url}[/red]")
            return 1

        if args.action in ("hw-status", "hw-settings"):
            data = await (hardware.get_status() if args.action == "hw-status" else hardware.get_settings())
            if data is None:
                console.print("[red]❌ 無法從硬體控制器讀取數據[/red]")
                return 1
            _print_mapping("BMS status" if args.action == "hw-status" else "BMS settings", data)
            return 0

        command = command_from_args(args)
        if command is None:
            console.print(f"[red]未知動作: {args.action}[/red]")
            return 2
        return await _send(settings, hardware, command)
    finally:
        await hardware.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    setup_logging(args.log_level or settings.log_level)

    if args.action == "serve":
        from .main import run

        run()
        return 0

    return asyncio.run(run_action(args, settings))


if __name__ == "__main__":
    sys.exit(main())
