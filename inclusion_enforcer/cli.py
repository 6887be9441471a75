#!/usr/bin/env python3
"""
Forced Inclusion Enforcer CLI

Usage:
    inclusion-enforcer --height=H init --operator=ACCOUNT [--upper-bound=N]
    inclusion-enforcer --height=H [--caller=ACCOUNT] submit <message_id>
    inclusion-enforcer --height=H [--caller=ACCOUNT] include <message_id>
    inclusion-enforcer --height=H --caller=OPERATOR set-upper-bound <n>
    inclusion-enforcer --height=H --caller=OPERATOR blacklist-add <account>
    inclusion-enforcer --height=H --caller=OPERATOR blacklist-remove <account>
    inclusion-enforcer --height=H gate
    inclusion-enforcer --height=H status [<message_id>]
    inclusion-enforcer --height=H process-batch
    inclusion-enforcer --height=H ledger [--event=EVENT] [--verify]

State is read from and written to --state (default: INCLUSION_STATE_PATH or
data/engine_state.json). Output is JSON on stdout.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

# Add project root to path for imports when running as script
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from inclusion_enforcer.control_plane.engine import InclusionEngine
from inclusion_enforcer.control_plane.settings import EngineSettings, load_settings
from inclusion_enforcer.control_plane.state_store import EngineStateStore
from inclusion_enforcer.core.enforcement_ledger import EnforcementLedger
from inclusion_enforcer.core.errors import EnforcementError, StateStoreError, UnprocessedMessages
from inclusion_enforcer.core.ledger_height import LedgerHeightClock
from inclusion_enforcer.version import get_version

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_ERROR = 2


def _emit(data) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _error(code: str, message: str) -> int:
    print(f"[ERROR] {code}: {message}", file=sys.stderr)
    return EXIT_ERROR


def _settings_from_args(args) -> EngineSettings:
    return load_settings(
        env_file=args.env_file,
        state_path=args.state,
        ledger_path=args.ledger,
        operator=getattr(args, 'operator', None),
        upper_bound=getattr(args, 'upper_bound', None),
    )


def _open_engine(args, settings: EngineSettings) -> InclusionEngine:
    clock = LedgerHeightClock(height=args.height)
    if args.command != 'init':
        if not settings.state_path or not EngineStateStore(settings.state_path).exists():
            raise StateStoreError(f"no engine state at {settings.state_path}; run 'init' first")
    return InclusionEngine.open(settings, clock)


def _entry_view(engine: InclusionEngine, message_id: str) -> dict:
    entry = engine.get_entry(message_id)
    view = entry.to_dict()
    view["status"] = engine.message_status(message_id).value
    return view


def cmd_init(args, settings: EngineSettings) -> int:
    """Create engine state for an operator."""
    if settings.state_path and EngineStateStore(settings.state_path).exists():
        return _error("INIT", f"engine state already exists at {settings.state_path}")
    engine = _open_engine(args, settings)
    _emit(engine.summary())
    return EXIT_OK


def cmd_submit(args, engine: InclusionEngine) -> int:
    entry = engine.submit(args.message_id, caller=args.caller)
    _emit(_entry_view(engine, entry.message_id))
    return EXIT_OK


def cmd_include(args, engine: InclusionEngine) -> int:
    entry = engine.mark_included(args.message_id, caller=args.caller)
    _emit(_entry_view(engine, entry.message_id))
    return EXIT_OK


def cmd_set_upper_bound(args, engine: InclusionEngine) -> int:
    engine.set_upper_bound(args.caller, args.value)
    _emit({"upper_bound": engine.upper_bound})
    return EXIT_OK


def cmd_blacklist(args, engine: InclusionEngine) -> int:
    if args.command == 'blacklist-add':
        changed = engine.add_to_blacklist(args.caller, args.account)
    else:
        changed = engine.remove_from_blacklist(args.caller, args.account)
    _emit({
        "account": args.account,
        "blacklisted": engine.is_blacklisted(args.account),
        "changed": changed,
    })
    return EXIT_OK


def cmd_gate(args, engine: InclusionEngine) -> int:
    """Monitoring view of the batch gate."""
    _emit({
        "height": engine.current_height(),
        "reject_new_batch": engine.reject_new_batch(),
        "blocking": engine.blocking_messages(),
    })
    return EXIT_OK


def cmd_status(args, engine: InclusionEngine) -> int:
    if args.message_id:
        if engine.get_entry(args.message_id) is None:
            return _error("FIE-MSG-004", f"message {args.message_id} is not tracked")
        _emit(_entry_view(engine, args.message_id))
    else:
        _emit(engine.summary())
    return EXIT_OK


def cmd_process_batch(args, engine: InclusionEngine) -> int:
    try:
        engine.process_new_batch()
    except UnprocessedMessages as e:
        _emit({"accepted": False, "height": e.height, "blocking": e.blocking})
        return EXIT_REJECTED
    _emit({"accepted": True, "height": engine.current_height()})
    return EXIT_OK


def cmd_ledger(args, settings: EngineSettings) -> int:
    if not settings.ledger_path:
        return _error("LEDGER", "no enforcement ledger configured")
    ledger = EnforcementLedger(settings.ledger_path)
    if args.verify:
        ledger.verify_integrity()
    _emit({
        "verified": bool(args.verify),
        "entries": ledger.get_entries(event=args.event),
    })
    return EXIT_OK


ENGINE_COMMANDS = {
    'submit': cmd_submit,
    'include': cmd_include,
    'set-upper-bound': cmd_set_upper_bound,
    'blacklist-add': cmd_blacklist,
    'blacklist-remove': cmd_blacklist,
    'gate': cmd_gate,
    'status': cmd_status,
    'process-batch': cmd_process_batch,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='inclusion-enforcer',
        description='Forced Inclusion Enforcer - deadline-based L1 -> L2 message inclusion gate'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {get_version()}')
    parser.add_argument('--state', help='Engine state file (default: INCLUSION_STATE_PATH)')
    parser.add_argument('--ledger', help='Enforcement ledger file (default: INCLUSION_LEDGER_PATH)')
    parser.add_argument('--env-file', dest='env_file', help='Path to a .env file')
    parser.add_argument('--height', type=int, required=True, help='Current L1 ledger height')
    parser.add_argument('--caller', help='Account making the call')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    init_parser = subparsers.add_parser('init', help='Create engine state')
    init_parser.add_argument('--operator', required=True, help='Operator account')
    init_parser.add_argument('--upper-bound', dest='upper_bound', type=int,
                             help='Initial inclusion window in height units')

    submit_parser = subparsers.add_parser('submit', help='Track a message')
    submit_parser.add_argument('message_id', help='32-byte message hash (hex)')

    include_parser = subparsers.add_parser('include', help='Mark a message included')
    include_parser.add_argument('message_id', help='32-byte message hash (hex)')

    bound_parser = subparsers.add_parser('set-upper-bound', help='Set the inclusion window (operator)')
    bound_parser.add_argument('value', type=int, help='Height units')

    for name in ('blacklist-add', 'blacklist-remove'):
        bl_parser = subparsers.add_parser(name, help=f'{name.split("-")[1].title()} a blacklisted account (operator)')
        bl_parser.add_argument('account', help='Account identifier')

    subparsers.add_parser('gate', help='Show the batch gate')

    status_parser = subparsers.add_parser('status', help='Show engine or message status')
    status_parser.add_argument('message_id', nargs='?', help='Message to inspect')

    subparsers.add_parser('process-batch', help='Accept a new batch if the gate is open')

    ledger_parser = subparsers.add_parser('ledger', help='Show the enforcement ledger')
    ledger_parser.add_argument('--event', help='Only show this event type')
    ledger_parser.add_argument('--verify', action='store_true', help='Verify ledger integrity')

    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    if not args.command:
        parser.print_help()
        return EXIT_OK

    try:
        settings = _settings_from_args(args)
        if args.command == 'init':
            return cmd_init(args, settings)
        if args.command == 'ledger':
            return cmd_ledger(args, settings)
        engine = _open_engine(args, settings)
        return ENGINE_COMMANDS[args.command](args, engine)
    except EnforcementError as e:
        return _error(e.code, e.details or str(e))
    except ValueError as e:
        return _error("INVALID", str(e))


if __name__ == '__main__':
    sys.exit(main())
