"""
CLI main entry point.
"""

import argparse
import base64
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..exceptions import ChatLedgerError, NotFoundError, NotRegisteredError
from ..extraction import ExtractionClient, Transcriber
from ..gateway_client import GatewayClient
from ..schemas.message import InboundMessage
from ..services import ExpirySweeper, IngestionService, PendingTracker, UserDirectory
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="chat-ledger",
        description="Turn chat messages into confirmed ledger transactions",
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

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    # register-user command
    register_parser = subparsers.add_parser("register-user", help="Register a sender phone")
    register_parser.add_argument("--phone", required=True, help="Phone number")
    register_parser.add_argument("--cohort", help="Cohort code (default: config default_cohort)")
    register_parser.add_argument("--name", help="Display name")

    # ingest command
    ingest_parser = subparsers.add_parser("ingest", help="Process an inbound message")
    ingest_source = ingest_parser.add_mutually_exclusive_group(required=True)
    ingest_source.add_argument("--text", help="Text message body")
    ingest_source.add_argument("--audio-file", type=Path, help="Audio file to transcribe")
    ingest_source.add_argument(
        "--json", type=Path, dest="json_file", help="Gateway payload (JSON file)"
    )
    ingest_parser.add_argument("--sender", help="Sender phone (required with --text/--audio-file)")
    ingest_parser.add_argument("--message-id", help="Gateway message id (enables dedupe)")
    ingest_parser.add_argument(
        "--timestamp",
        help="Event time, ISO 8601 or epoch seconds (default: now)",
    )

    # reply command
    reply_parser = subparsers.add_parser("reply", help="Handle a confirmation reply")
    reply_parser.add_argument("--sender", required=True, help="Sender phone")
    reply_parser.add_argument("--text", required=True, help="Reply text or emoji")

    # edit command
    edit_parser = subparsers.add_parser("edit", help="Correct a prediction's fields")
    edit_parser.add_argument("--prediction-id", type=int, required=True, help="Prediction ID")
    edit_parser.add_argument("--cohort", required=True, help="Cohort code of the prediction")
    edit_parser.add_argument(
        "--set",
        dest="fields",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Field to change (repeatable), e.g. --set amount=25 --set category=comida",
    )

    # sweep command
    sweep_parser = subparsers.add_parser("sweep", help="Time out expired pending confirmations")
    sweep_parser.add_argument("--secret", help="Sweeper secret (if configured)")

    # status command
    subparsers.add_parser("status", help="Show pipeline status and statistics")

    # policy command
    policy_parser = subparsers.add_parser("policy", help="Show or override cohort policies")
    policy_parser.add_argument("--cohort", help="Cohort code")
    mode = policy_parser.add_mutually_exclusive_group()
    mode.add_argument("--auto", action="store_true", help="Switch cohort to automatic mode")
    mode.add_argument("--manual", action="store_true", help="Require confirmation for cohort")

    return parser


def _open_store(config: Config) -> StateStore:
    return StateStore(
        config.state_db_path,
        timeout=config.store_timeout_seconds,
        default_currency=config.default_currency,
    )


def _gateway(config: Config) -> GatewayClient | None:
    if not config.gateway.base_url:
        return None
    return GatewayClient(
        base_url=config.gateway.base_url,
        token=config.gateway.token,
        timeout=config.gateway.timeout_seconds,
    )


def _parse_fields(items: list[str]) -> dict[str, str]:
    fields = {}
    for item in items:
        if "=" not in item:
            raise ValueError(f"Expected FIELD=VALUE, got '{item}'")
        key, value = item.split("=", 1)
        fields[key.strip()] = value.strip()
    return fields


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ Config file already exists: {config_path}")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_register_user(config: Config, phone: str, cohort: str | None, name: str | None) -> int:
    """Register a sender."""
    users = UserDirectory(_open_store(config), config.default_cohort)
    try:
        user = users.register(phone, cohort=cohort, display_name=name)
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    print(f"✓ User {user.id} registered: {user.phone} (cohort {user.cohort})")
    return 0


def cmd_ingest(
    config: Config,
    text: str | None,
    audio_file: Path | None,
    json_file: Path | None,
    sender: str | None,
    message_id: str | None,
    timestamp: str | None,
) -> int:
    """Process one inbound message."""
    try:
        if json_file:
            message = InboundMessage.from_dict(json.loads(json_file.read_text()))
        else:
            if not sender:
                print("❌ --sender is required with --text/--audio-file")
                return 1
            if audio_file:
                body_kind, payload = "audio", base64.b64encode(audio_file.read_bytes()).decode()
            else:
                body_kind, payload = "text", text
            message = InboundMessage.from_dict(
                {
                    "sender": sender,
                    "body_kind": body_kind,
                    "payload": payload,
                    "message_id": message_id,
                    "timestamp": timestamp or datetime.now(timezone.utc).isoformat(),
                }
            )
    except (OSError, ValueError) as e:
        print(f"❌ Invalid message: {e}")
        return 1

    store = _open_store(config)
    extractor = ExtractionClient(config.extraction, default_currency=config.default_currency)
    transcriber = Transcriber(config.extraction)
    service = IngestionService(
        store,
        config,
        extractor=extractor,
        transcriber=transcriber,
        gateway=_gateway(config),
    )

    try:
        result = service.handle_message(message)
    except NotRegisteredError as e:
        suffix = " (invitation sent)" if e.invitation_sent else ""
        print(f"❌ {e}{suffix}")
        return 1
    except ChatLedgerError as e:
        print(f"❌ {e}")
        return 2 if e.retryable else 1
    finally:
        extractor.close()
        transcriber.close()

    print(f"✓ {result.status.value}: prediction(s) {result.prediction_ids}")
    if result.reply:
        print(result.reply)
    return 0


def cmd_reply(config: Config, sender: str, text: str) -> int:
    """Handle a confirmation reply."""
    store = _open_store(config)
    tracker = PendingTracker(store, config)

    user = UserDirectory(store, config.default_cohort).find(sender)
    if user is None:
        print(f"❌ Sender '{sender}' is not registered")
        return 1

    try:
        result = tracker.handle_reply(user.id, text)
    except ChatLedgerError as e:
        print(f"❌ {e}")
        return 2 if e.retryable else 1

    print(f"✓ {result.status.value}: {result.resolved_count} resolved")
    if result.accuracy is not None:
        mode = "automatic" if result.auto_enabled else "manual"
        print(
            f"  Cohort {result.cohort}: accuracy {result.accuracy:.2f}% "
            f"({result.verified_count} verified, {mode})"
        )
    print(result.reply)
    return 0


def cmd_edit(config: Config, prediction_id: int, cohort: str, field_args: list[str]) -> int:
    """Correct a prediction."""
    try:
        fields = _parse_fields(field_args)
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    if not fields:
        print("❌ Nothing to change (use --set FIELD=VALUE)")
        return 1

    store = _open_store(config)
    tracker = PendingTracker(store, config)
    try:
        result = tracker.edit(prediction_id, cohort.upper(), fields)
    except NotFoundError as e:
        print(f"❌ {e}")
        return 1
    except ValueError as e:
        print(f"❌ Invalid edit: {e}")
        return 1
    except ChatLedgerError as e:
        print(f"❌ {e}")
        return 2 if e.retryable else 1

    print(f"✓ Prediction {prediction_id} edited ({result.resolved_count} resolved)")
    print(f"  Cohort {result.cohort}: accuracy {result.accuracy:.2f}%")
    return 0


def cmd_sweep(config: Config, secret: str | None) -> int:
    """Time out expired pending confirmations."""
    store = _open_store(config)
    tracker = PendingTracker(store, config)
    sweeper = ExpirySweeper(tracker, config.sweeper)

    try:
        result = sweeper.run(secret=secret if secret is not None else config.sweeper.secret)
    except PermissionError as e:
        print(f"❌ {e}")
        return 1
    except ChatLedgerError as e:
        print(f"❌ Sweep failed: {e}")
        return 2

    print(
        f"✓ Sweep done: {result.processed} processed, {result.skipped} skipped, "
        f"{result.failed} errors ({result.duration_ms}ms)"
    )
    for error in result.errors:
        print(f"  ⚠️ {error}")
    return 0 if result.success else 2


def cmd_status(config: Config) -> int:
    """Show pipeline status."""
    store = _open_store(config)
    stats = store.get_stats()

    print("\n📊 Pipeline Status")
    print("=" * 40)
    print(f"  Registered users:       {stats['users']}")
    print(f"  Predictions total:      {stats['predictions_total']}")
    print(f"  Pending confirmations:  {stats['pending_open']}")
    print(f"  Feedback entries:       {stats['feedback_entries']}")
    print(f"  Committed transactions: {stats['transactions_committed']}")
    for method, count in sorted(stats["by_resolution"].items()):
        print(f"    {method:<20}  {count}")
    print()

    return 0


def cmd_policy(config: Config, cohort: str | None, auto: bool, manual: bool) -> int:
    """Show or override cohort policies."""
    store = _open_store(config)
    tracker = PendingTracker(store, config)

    if auto or manual:
        if not cohort:
            print("❌ --cohort is required to change a policy")
            return 1
        try:
            tracker.policy.set_mode(cohort.upper(), require_confirmation=manual)
        except ValueError as e:
            print(f"❌ {e}")
            return 1

    policies = [tracker.policy.get(cohort.upper())] if cohort else store.list_policies()
    if not policies:
        print("No cohort policies recorded yet (all cohorts require confirmation)")
        return 0

    print("\n🧭 Confirmation Policies")
    print("=" * 40)
    for policy in policies:
        mode = "automatic" if policy.auto_enabled else "manual"
        print(
            f"  {policy.cohort:<6} {mode:<10} accuracy {policy.accuracy:6.2f}%  "
            f"verified {policy.verified_count}"
        )
    print()
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

    errors = config.validate()
    if errors:
        for error in errors:
            print(f"❌ Config: {error}")
        return 1

    # Route to command
    if parsed.command == "register-user":
        return cmd_register_user(config, parsed.phone, parsed.cohort, parsed.name)
    elif parsed.command == "ingest":
        return cmd_ingest(
            config,
            text=parsed.text,
            audio_file=parsed.audio_file,
            json_file=parsed.json_file,
            sender=parsed.sender,
            message_id=parsed.message_id,
            timestamp=parsed.timestamp,
        )
    elif parsed.command == "reply":
        return cmd_reply(config, parsed.sender, parsed.text)
    elif parsed.command == "edit":
        return cmd_edit(config, parsed.prediction_id, parsed.cohort, parsed.fields)
    elif parsed.command == "sweep":
        return cmd_sweep(config, parsed.secret)
    elif parsed.command == "status":
        return cmd_status(config)
    elif parsed.command == "policy":
        return cmd_policy(config, parsed.cohort, parsed.auto, parsed.manual)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
