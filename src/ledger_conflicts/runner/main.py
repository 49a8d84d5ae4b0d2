"""
CLI main entry point.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..detection import DetectionResult
from ..ledger_client import LedgerClient, LedgerError
from ..notifications import Notification, Notifier, Severity
from ..resolution import ResolutionError
from ..schemas.conflict import ConflictPair, ResolutionAction
from ..schemas.transaction import Transaction
from ..services import ConflictService

logger = logging.getLogger(__name__)

ACTIONS = [a.value for a in ResolutionAction]

_ICONS = {
    Severity.INFO: "ℹ️ ",
    Severity.SUCCESS: "✓",
    Severity.WARNING: "⚠️ ",
    Severity.ERROR: "❌",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-conflicts",
        description="Detect and resolve duplicates between manual entries and bank imports",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # detect command
    detect_parser = subparsers.add_parser("detect", help="List potential duplicate transactions")
    detect_parser.add_argument(
        "--input",
        type=Path,
        help="Read transactions from a JSON file instead of the ledger",
    )
    detect_parser.add_argument(
        "--account",
        type=str,
        help="Only fetch transactions of this account",
    )
    detect_parser.add_argument(
        "--json",
        action="store_true",
        help="Print conflicts as JSON",
    )

    # resolve command
    resolve_parser = subparsers.add_parser("resolve", help="Resolve one conflict")
    resolve_parser.add_argument(
        "--pair-id",
        type=str,
        required=True,
        help="Conflict ID (the manual transaction ID)",
    )
    resolve_parser.add_argument(
        "--action",
        choices=ACTIONS,
        required=True,
        help="Resolution to apply",
    )

    # resolve-all command
    resolve_all_parser = subparsers.add_parser(
        "resolve-all", help="Resolve every open conflict the same way"
    )
    resolve_all_parser.add_argument(
        "--action",
        choices=ACTIONS,
        required=True,
        help="Resolution to apply",
    )

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    return parser


def load_transactions_file(path: Path) -> dict[str, list[Transaction]]:
    """
    Read transactions from a JSON export.

    Accepts {"data": ...}, an {account_id: [tx, ...]} mapping or a flat list
    of records carrying their account ID.

    Raises:
        ValueError: If the file content is not a transaction export
    """
    with open(path) as f:
        data = json.load(f)

    if isinstance(data, dict) and "data" in data:
        data = data["data"]

    grouped: dict[str, list[Transaction]] = {}
    if isinstance(data, dict):
        for account, records in data.items():
            grouped[account] = [Transaction.from_dict(r, account_id=account) for r in records]
    elif isinstance(data, list):
        for record in data:
            tx = Transaction.from_dict(record)
            grouped.setdefault(tx.account_id, []).append(tx)
    else:
        raise ValueError(f"Unsupported transaction export in {path}")
    return grouped


def _print_notification(notification: Notification) -> None:
    icon = _ICONS.get(notification.severity, "")
    print(f"{icon} {notification.message}")


def _print_conflicts(pairs: list[ConflictPair]) -> None:
    print()
    print("🔍 Potential Duplicates")
    print("=" * 60)
    for pair in pairs:
        manual = pair.manual
        imported = pair.imported
        print(f"  [{pair.pair_id}] score {pair.points:.0f} ({pair.conflict_type.value})")
        print(f"      manual:   {manual.date}  {manual.amount:>10}  {manual.display_payee}")
        print(f"      imported: {imported.date}  {imported.amount:>10}  {imported.display_payee}")
    print()


def _build_service(config: Config, client: LedgerClient, quiet: bool = False) -> ConflictService:
    notifier = Notifier()
    if not quiet:
        notifier.subscribe(_print_notification)
    return ConflictService(client, config, notifier)


def _make_client(config: Config) -> LedgerClient:
    return LedgerClient(
        base_url=config.ledger.base_url,
        token=config.ledger.token,
        timeout=config.ledger.timeout_seconds,
    )


async def _detect(
    config: Config, input_path: Path | None, account_id: str | None, as_json: bool
) -> int:
    async with _make_client(config) as client:
        service = _build_service(config, client, quiet=as_json)
        try:
            if input_path is not None:
                result = await service.detect(load_transactions_file(input_path))
            else:
                if not await client.test_connection():
                    print(f"❌ Cannot connect to ledger at {config.ledger.base_url}")
                    return 1
                result = await service.refresh_from_ledger(account_id)
        finally:
            await service.aclose()

    return _report_detection(result, as_json)


def _report_detection(result: DetectionResult, as_json: bool) -> int:
    if as_json:
        print(json.dumps([p.to_dict() for p in result.pairs], indent=2))
        return 0 if result.success else 1

    if not result.success:
        print(f"❌ Detection failed: {result.error}")
        return 1

    print()
    print("📊 Detection Results")
    print("=" * 40)
    print(f"  Manual transactions: {result.manual_count}")
    print(f"  Bank transactions:   {result.bank_count}")
    print(f"  Comparisons:         {result.comparisons}")
    print(f"  Pairs skipped:       {result.pairs_skipped}")
    print(f"  Conflicts:           {len(result.pairs)}")
    print(f"  Duration:            {result.duration_ms}ms")

    if result.pairs:
        _print_conflicts(result.pairs)
    else:
        print()
        print("✓ No potential duplicates found")
    return 0


def cmd_detect(
    config: Config,
    input_path: Path | None = None,
    account_id: str | None = None,
    as_json: bool = False,
) -> int:
    """Detect potential duplicates from a JSON file or the ledger."""
    try:
        return asyncio.run(_detect(config, input_path, account_id, as_json))
    except (OSError, ValueError) as e:
        print(f"❌ Cannot read transactions: {e}")
        return 1
    except LedgerError as e:
        print(f"❌ Ledger error: {e}")
        return 1


async def _resolve(config: Config, pair_id: str | None, action: ResolutionAction) -> int:
    async with _make_client(config) as client:
        service = _build_service(config, client)
        try:
            result = await service.refresh_from_ledger()
            if not result.success:
                print(f"❌ Detection failed: {result.error}")
                return 1

            if pair_id is None:
                if not await service.resolve_all(action):
                    print("✓ Nothing to resolve")
                return 0

            resolved = await service.resolve_one(pair_id, action)
            return 0 if resolved else 1
        finally:
            await service.aclose()


def cmd_resolve(config: Config, pair_id: str, action: str) -> int:
    """Resolve one conflict."""
    try:
        return asyncio.run(_resolve(config, pair_id, ResolutionAction(action)))
    except ResolutionError as e:
        print(f"❌ {e}")
        return 1
    except LedgerError as e:
        print(f"❌ Ledger error: {e}")
        return 1


def cmd_resolve_all(config: Config, action: str) -> int:
    """Resolve every open conflict with one action."""
    try:
        return asyncio.run(_resolve(config, None, ResolutionAction(action)))
    except ResolutionError as e:
        print(f"❌ {e}")
        return 1
    except LedgerError as e:
        print(f"❌ Ledger error: {e}")
        return 1


def cmd_init_config(config_path: Path) -> int:
    """Write a default configuration file."""
    if config_path.exists():
        print(f"⚠️  {config_path} already exists, not overwriting")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default configuration to {config_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "detect":
        return cmd_detect(config, parsed.input, parsed.account, parsed.json)
    elif parsed.command == "resolve":
        return cmd_resolve(config, parsed.pair_id, parsed.action)
    elif parsed.command == "resolve-all":
        return cmd_resolve_all(config, parsed.action)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
