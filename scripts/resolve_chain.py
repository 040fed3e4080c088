#!/usr/bin/env python3
"""
Preview the approval chain a request would get, without storing anything.

Loads the active configuration set, resolves the chain for the given
policy and starting identity, and prints one line per level.

Usage:
    python3 scripts/resolve_chain.py cash_request --name "Mr. Boris Ngu" --department Technical
    python3 scripts/resolve_chain.py supplier_invoice --department IT
    python3 scripts/resolve_chain.py supplier_onboarding --category Construction --json
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

W = 72


def hline(char: str = "=") -> str:
    return char * W


def print_chain(policy_key: str, chain) -> None:
    print(hline())
    print(f"  {policy_key}: {len(chain)} level(s)")
    print(hline())
    for level, person in enumerate(chain, start=1):
        print(f"  L{level}  {person.role:<20} {person.name} <{person.email}>")
        print(f"       {'':<20} {person.department}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Resolve the approval chain for a policy and starting identity.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  python3 scripts/resolve_chain.py cash_request --name 'Mr. Boris Ngu' --department Technical\n"
            "  python3 scripts/resolve_chain.py supplier_onboarding --category Construction\n"
        ),
    )
    parser.add_argument(
        "policy_key",
        help="Policy to resolve (cash_request, supplier_invoice, supplier_onboarding, user_hierarchy)",
    )
    parser.add_argument("--name", type=str, help="Display name of the requesting person")
    parser.add_argument("--department", type=str, help="Department of the requester / invoice")
    parser.add_argument("--category", type=str, help="Service category or supplier type")
    parser.add_argument(
        "--config-set", type=str, default="default",
        help="Configuration set name (default: default)",
    )
    parser.add_argument(
        "--config-dir", type=Path, default=None,
        help="Directory holding configuration sets",
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Output the chain as JSON instead of formatted text",
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Emit structured resolver logs on stderr",
    )

    args = parser.parse_args(argv)

    if args.verbose:
        from approval_kernel.logging_config import configure_logging
        configure_logging(level=logging.DEBUG)
    else:
        logging.disable(logging.CRITICAL)

    from approval_config import get_active_config
    from approval_engines import resolve_chain
    from approval_kernel.domain import StartingIdentity
    from approval_kernel.exceptions import ApprovalKernelError

    try:
        config = get_active_config(args.config_set, args.config_dir)
        policy = config.policy_for(args.policy_key)
        chain = resolve_chain(
            policy=policy,
            directory=config.directory,
            identity=StartingIdentity(
                name=args.name,
                department=args.department,
                category=args.category,
            ),
        )
    except ApprovalKernelError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    finally:
        if not args.verbose:
            logging.disable(logging.NOTSET)

    if args.json:
        print(json.dumps(
            [dict(level=i, **asdict(p)) for i, p in enumerate(chain, start=1)],
            indent=2,
        ))
        return 0

    print_chain(policy.key.value, chain)
    return 0


if __name__ == "__main__":
    sys.exit(main())
