"""Dev entry point: python -m africom_gateway {health,stats,send}."""

import argparse
import json
import sys

from africom_gateway.config import GatewayConfig
from africom_gateway.enums import Channel
from africom_gateway.log import setup_logging
from africom_gateway.providers import create_default_registry
from africom_gateway.providers.base import SendOptions
from africom_gateway.router import Router


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="africom_gateway")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("health", help="Check every configured provider")
    sub.add_parser("stats", help="Show provider configuration and counters")

    send = sub.add_parser("send", help="Route one message")
    send.add_argument("recipient")
    send.add_argument("message")
    send.add_argument("--sender-id", required=True)
    send.add_argument("--country", required=True)
    send.add_argument("--network")
    send.add_argument("--subject")
    send.add_argument("--channel", choices=[c.value for c in Channel], default=Channel.SMS.value)

    args = parser.parse_args(argv)

    config = GatewayConfig()
    setup_logging(config.log_level)
    registry = create_default_registry(config)

    if args.command == "health":
        report = {
            name: {"healthy": h.healthy, "message": h.message, "balance": h.balance, "currency": h.currency}
            for name, h in registry.health_check_all().items()
        }
        print(json.dumps(report, indent=2))
        return 0 if all(h["healthy"] for h in report.values()) else 1

    if args.command == "stats":
        print(json.dumps(registry.stats_report(), indent=2))
        return 0

    router = Router(registry, speed_default_latency_ms=config.speed_default_latency_ms)
    outcome = router.send(
        SendOptions(
            recipient=args.recipient,
            message=args.message,
            sender_id=args.sender_id,
            subject=args.subject,
        ),
        args.country,
        args.network,
        channel=Channel(args.channel),
    )
    print(json.dumps(outcome.to_dict(), indent=2))
    return 0 if outcome.success else 1


if __name__ == "__main__":
    sys.exit(main())
