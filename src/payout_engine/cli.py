"""Payout engine command line interface.

Provides operational tools for:
- Running one scheduled payment pass
- Health checks
- Reclaiming fee charges stuck in processing
- Waiving unpaid fee charges
- Creating the database schema

Usage:
    python -m payout_engine.cli run --trigger-type manual
    python -m payout_engine.cli health
    python -m payout_engine.cli reclaim-stuck --older-than-hours 2
    python -m payout_engine.cli waive <fee-charge-id> --by ops --reason "goodwill"
    python -m payout_engine.cli init-db
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict, replace
from datetime import timedelta
from typing import Any, Callable
from uuid import UUID

from payout_engine.config import Settings, get_settings
from payout_engine.database import create_engine_for, create_schema
from payout_engine.errors import PayoutEngineError
from payout_engine.runtime import PayoutRuntime, build_runtime, configure_logging


class PayoutCli:
    """Payout engine command line interface."""

    def __init__(
        self,
        settings: Settings | None = None,
        runtime_factory: Callable[[Settings], PayoutRuntime] = build_runtime,
    ) -> None:
        self._settings = settings
        self.runtime_factory = runtime_factory
        self.parser = self._build_parser()

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m payout_engine.cli",
            description="Payout engine operational tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: $DATABASE_URL)",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            help="Log level (default: $LOG_LEVEL)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # run command
        run = subparsers.add_parser(
            "run",
            help="Run one scheduled payment pass and print its statistics",
        )
        run.add_argument(
            "--trigger-type",
            type=str,
            default="manual",
            help="Label recorded on the run (default: manual)",
        )

        # health command
        subparsers.add_parser(
            "health",
            help="Check payment system health",
        )

        # reclaim-stuck command
        reclaim = subparsers.add_parser(
            "reclaim-stuck",
            help="Release fee charges stuck in processing for another attempt",
        )
        reclaim.add_argument(
            "--older-than-hours",
            type=float,
            help="Only charges whose attempt started this long ago "
            "(default: configured stuck threshold)",
        )

        # waive command
        waive = subparsers.add_parser(
            "waive",
            help="Waive an unpaid fee charge",
        )
        waive.add_argument("fee_charge_id", type=UUID, help="Fee charge to waive")
        waive.add_argument("--by", dest="waived_by", required=True, help="Operator granting it")
        waive.add_argument("--reason", required=True, help="Why the fee is waived")

        # init-db command
        subparsers.add_parser(
            "init-db",
            help="Create missing database tables",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        if parsed.database_url:
            self._settings = _with_database_url(self.settings, parsed.database_url)
        configure_logging(parsed.log_level or self.settings.log_level)

        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "run": self._cmd_run,
            "health": self._cmd_health,
            "reclaim-stuck": self._cmd_reclaim_stuck,
            "waive": self._cmd_waive,
            "init-db": self._cmd_init_db,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _cmd_run(self, args: argparse.Namespace) -> int:
        """Run one scheduled payment pass."""
        runtime = self.runtime_factory(self.settings)
        try:
            result = runtime.runner.run_scheduled_payment_processing(
                trigger_type=args.trigger_type
            )
        finally:
            runtime.close()

        _print_json(result.to_dict())
        return 0 if result.success else 1

    def _cmd_health(self, args: argparse.Namespace) -> int:
        """Check system health."""
        runtime = self.runtime_factory(self.settings)
        try:
            report = runtime.runner.check_payment_system_health()
        finally:
            runtime.close()

        print("Payment System Health Check")
        print("=" * 40)
        for key, value in report.to_dict().items():
            if key == "warnings":
                continue
            print(f"  {key}: {value}")
        for warning in report.warnings:
            print(f"  ! {warning}")
        print("=" * 40)
        if report.healthy:
            print("Overall: HEALTHY")
            return 0
        print("Overall: UNHEALTHY")
        return 1

    def _cmd_reclaim_stuck(self, args: argparse.Namespace) -> int:
        """Reclaim stuck fee charges."""
        runtime = self.runtime_factory(self.settings)
        try:
            older_than = (
                timedelta(hours=args.older_than_hours)
                if args.older_than_hours is not None
                else None
            )
            count = runtime.runner.reclaim_stuck_charges(older_than)
        finally:
            runtime.close()

        print(f"Reclaimed {count} stuck fee charge(s)")
        return 0

    def _cmd_waive(self, args: argparse.Namespace) -> int:
        """Waive one fee charge."""
        runtime = self.runtime_factory(self.settings)
        try:
            charge = runtime.runner.fee_charges.waive_fee_charge(
                args.fee_charge_id,
                waived_by=args.waived_by,
                reason=args.reason,
                at=runtime.runner.clock(),
            )
        except (PayoutEngineError, ValueError) as e:
            print(f"Cannot waive: {e}", file=sys.stderr)
            return 1
        finally:
            runtime.close()

        _print_json(asdict(charge))
        return 0

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create database tables."""
        engine = create_engine_for(self.settings.database_url)
        try:
            create_schema(engine)
        finally:
            engine.dispose()
        print("Database schema is up to date")
        return 0


def _with_database_url(settings: Settings, database_url: str) -> Settings:
    return replace(settings, database_url=database_url)


def _print_json(data: dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, default=str))


def main() -> None:
    """CLI entry point."""
    cli = PayoutCli()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
