"""Settlement engine command line interface.

Provides operational tools for:
- Schema creation
- Running a reconciliation sweep on demand
- Inspecting the payment records of an order

Usage:
    python -m settlement_engine.cli init-db
    python -m settlement_engine.cli sweep [--force]
    python -m settlement_engine.cli show --order-id 1001
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement_engine.config import Settings, get_settings
from settlement_engine.database import create_schema, dispose_db, init_db
from settlement_engine.gateways import AchGatewayClient, CommercePlatformClient
from settlement_engine.services.clock import Clock
from settlement_engine.services.payment_store import PaymentStore
from settlement_engine.services.poller import ReconciliationPoller


class SettlementCli:
    """Settlement engine command line interface."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        ach: AchGatewayClient | None = None,
        commerce: CommercePlatformClient | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.ach = ach
        self.commerce = commerce
        self.clock = clock
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m settlement_engine.cli",
            description="Settlement engine operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create payment tables")

        sweep = subparsers.add_parser(
            "sweep",
            help="Run one ACH reconciliation sweep",
        )
        sweep.add_argument(
            "--force",
            action="store_true",
            help="Sweep even when no poll window is open",
        )

        show = subparsers.add_parser(
            "show",
            help="Show the payment records of an order",
        )
        show.add_argument(
            "--order-id",
            type=int,
            required=True,
            help="Commerce order id",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        return asyncio.run(self.run_async(args))

    async def run_async(self, args: list[str] | None = None) -> int:
        """Parse ``args`` and run the matching command."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
            "init-db": self._cmd_init_db,
            "sweep": self._cmd_sweep,
            "show": self._cmd_show,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        owns_db = self.session_factory is None
        try:
            return await handler(parsed)
        finally:
            if owns_db:
                await dispose_db()

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        if self.session_factory is None:
            _, self.session_factory = init_db(self.settings.database_url)
        return self.session_factory

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create tables."""
        engine, _ = init_db(self.settings.database_url)
        await create_schema(engine)
        print("Schema created")
        return 0

    async def _cmd_sweep(self, args: argparse.Namespace) -> int:
        """Run one reconciliation sweep."""
        if self.ach is None or self.commerce is None:
            print(
                "No ACH gateway or commerce client available; sweep needs real adapters",
                file=sys.stderr,
            )
            return 1
        poller = ReconciliationPoller(
            PaymentStore(self._sessions()),
            self.ach,
            self.commerce,
            self.settings.poller_config(),
            clock=self.clock,
            gateway_label=(self.settings.ach_gateway_tags or ("ach",))[0],
        )

        if args.force:
            result = await poller.sweep()
        else:
            result = await poller.tick()
            if result is None:
                print("No poll window open; use --force to sweep anyway")
                return 0

        print(json.dumps(result.to_dict(), indent=2))
        return 0 if result.success else 1

    async def _cmd_show(self, args: argparse.Namespace) -> int:
        """Print the ACH and card records for an order."""
        store = PaymentStore(self._sessions())
        ach = await store.get_ach_by_order(args.order_id)
        card = await store.get_card_by_order(args.order_id)

        if ach is None and card is None:
            print(f"No payment records for order {args.order_id}", file=sys.stderr)
            return 1

        output: dict[str, Any] = {
            "order_id": args.order_id,
            "ach": ach.to_dict() if ach else None,
            "card": card.to_dict() if card else None,
        }
        print(json.dumps(output, indent=2, default=str))
        return 0


def main() -> int:
    """CLI entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cli = SettlementCli(settings)
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
