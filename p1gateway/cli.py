"""
Command line interface
Run the gateway, parse captured telegrams or validate a config file.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from p1gateway.config import Config
from p1gateway.dsmr_fields import select_fields
from p1gateway.fields import ParsedData
from p1gateway.main import main as run_gateway
from p1gateway.mqtt_handler import format_value
from p1gateway.parser import P1Parser


def parse_file(path: str, fields: Optional[List[str]], check_crc: bool) -> bool:
    """Parse a captured telegram and print its fields."""
    raw = Path(path).read_bytes()

    data = ParsedData(*select_fields(fields))
    res = P1Parser(check_crc=check_crc).parse(data, raw)

    if res.failed:
        print(f"✗ {res.error.kind} error: {res.error}", file=sys.stderr)
        return False

    def show(field, value, present):
        if present:
            unit = f" {field.unit}" if field.unit else ""
            print(f"  {field.name:28} {format_value(value)}{unit}")

    print(f"✓ Telegram parsed ({res.next} bytes)")
    data.visit(show)
    return True


def check_config(path: str) -> bool:
    """Validate configuration file."""
    try:
        config = Config.load_from_file(path)
    except FileNotFoundError as e:
        print(f"✗ Configuration file not found: {e}", file=sys.stderr)
        return False
    except (ValidationError, ValueError) as e:
        print(f"✗ Configuration error: {e}", file=sys.stderr)
        return False

    print("✓ Configuration loaded successfully\n")
    print("📊 Configuration Summary:")
    print(f"  Serial Port:    {config.serial.port} @ {config.serial.baudrate}")
    print(f"  Check CRC:      {config.parser.check_crc}")
    print(f"  Fields:         {', '.join(config.parser.fields) or 'all'}")
    print(f"  MQTT Broker:    {config.mqtt.broker}:{config.mqtt.port}")
    print(f"  Log Level:      {config.logging.level}")
    return True


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="p1-gateway", description="DSMR P1 to MQTT gateway.")
    sub = p.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Run the gateway")
    run_p.add_argument("config", nargs="?", help="Config file (default: search)")

    parse_p = sub.add_parser("parse", help="Parse a captured telegram file")
    parse_p.add_argument("path", help="File holding one raw telegram")
    parse_p.add_argument("--field", action="append", dest="fields",
                         help="Only extract this field (repeatable)")
    parse_p.add_argument("--no-crc", action="store_true", help="Skip checksum comparison")

    check_p = sub.add_parser("check-config", help="Validate a config file")
    check_p.add_argument("path", help="Config file (*.yaml, *.yml or *.json)")

    args = p.parse_args(argv)

    if args.command == "run":
        return asyncio.run(run_gateway(args.config))

    if args.command == "parse":
        try:
            ok = parse_file(args.path, args.fields, not args.no_crc)
        except (OSError, ValueError) as e:
            print(f"✗ {e}", file=sys.stderr)
            return 1
        return 0 if ok else 1

    return 0 if check_config(args.path) else 1


if __name__ == "__main__":
    raise SystemExit(main())
