"""
cli.py
======
Command-line front end for quick lookups::

    python -m psnapi account some_online_id
    python -m psnapi profile 1234567890123456789
    python -m psnapi games 1234567890123456789 --all

Settings come from a JSON config file (``config.json`` by default), then
environment variables, then command-line flags, each overriding the last:

========================  ================  ==================
config key                environment       flag
========================  ================  ==================
``psn_npsso``             ``PSN_NPSSO``     ``--npsso``
``psn_language``          ``PSN_LANGUAGE``  ``--language``
``psn_region``            ``PSN_REGION``    ``--region``
``psn_timeout``           (none)            (none)
========================  ================  ==================

``psn_timeout`` is the per-request timeout in seconds.  ``--timeout`` sets
an overall deadline for the whole command instead.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Dict, List, Optional

from colorama import Fore, Style, init

from .client import Client
from .context import RequestContext
from .errors import ConfigurationError, PSNError
from .retry import RetryPolicy, call_with_retry

DEFAULT_CONFIG_PATH = 'config.json'

_ENV_OVERRIDES = {
    'PSN_NPSSO':    'psn_npsso',
    'PSN_LANGUAGE': 'psn_language',
    'PSN_REGION':   'psn_region',
}

_PLACEHOLDER_VALUES = {'YOUR_PSN_NPSSO_HERE', 'YOUR_PSN_NPSSO_TOKEN_HERE', 'DEMO_MODE'}


def setup_logging(level: str = 'WARNING') -> logging.Logger:
    """Attach a stream handler to the ``psnapi`` logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               Unknown names fall back to WARNING.
    """
    numeric = getattr(logging, level.upper(), logging.WARNING)
    logger = logging.getLogger('psnapi')
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('[%(levelname)s] %(name)s: %(message)s'))
        logger.addHandler(handler)
    logger.setLevel(numeric)
    return logger


def is_placeholder_value(value) -> bool:
    """True for empty values and template sentinels such as ``YOUR_…``."""
    if not value or not isinstance(value, str):
        return True
    return value.startswith('YOUR_') or value in _PLACEHOLDER_VALUES


def load_config(config_path: str, required: bool = False) -> Dict:
    """Load settings from *config_path* and apply environment overrides.

    Args:
        config_path: JSON file to read.
        required:    Raise when the file is missing instead of starting
                     from an empty configuration.

    Raises:
        ConfigurationError: The file is missing (when *required*), is not
                            valid JSON, is not a JSON object, or has a
                            non-numeric or non-positive ``psn_timeout``.
    """
    config: Dict = {}
    if os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"error parsing config file '{config_path}': {e}") from e
        if not isinstance(config, dict):
            raise ConfigurationError(f"config file '{config_path}' must contain a JSON object")
    elif required:
        raise ConfigurationError(f"config file '{config_path}' not found")

    for env_name, key in _ENV_OVERRIDES.items():
        if os.getenv(env_name):
            config[key] = os.getenv(env_name)

    if 'psn_timeout' in config:
        config['psn_timeout'] = _parse_timeout(config['psn_timeout'])
    return config


def _parse_timeout(value) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"psn_timeout must be a number of seconds, got {value!r}") from None
    if timeout <= 0:
        raise ConfigurationError(f"psn_timeout must be positive, got {value!r}")
    return timeout


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='psnapi',
        description='Look up PlayStation Network accounts, profiles and game libraries',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m psnapi account some_online_id
  python -m psnapi profile 1234567890123456789
  python -m psnapi games 1234567890123456789 --limit 25
  python -m psnapi games me --all
  python -m psnapi --retries 3 games me --all
        """
    )
    parser.add_argument(
        '--config', '-c',
        default=None,
        help=f'Path to config file (default: {DEFAULT_CONFIG_PATH})'
    )
    parser.add_argument('--npsso', help='NPSSO session cookie value')
    parser.add_argument('--language', help='Accept-Language tag, e.g. en-US')
    parser.add_argument('--region', help='Store region code, e.g. us')
    parser.add_argument(
        '--timeout',
        type=float,
        help='Overall deadline in seconds for the whole command'
    )
    parser.add_argument(
        '--retries',
        type=int,
        default=0,
        metavar='N',
        help='Retry rate-limited or failed requests up to N times (default: 0)'
    )
    parser.add_argument(
        '--log-level',
        default='WARNING',
        help='Log level (default: WARNING)'
    )

    sub = parser.add_subparsers(dest='command', required=True)
    account = sub.add_parser('account', help='Resolve an online ID to an account ID')
    account.add_argument('online_id')
    profile = sub.add_parser('profile', help='Show the profile of an account')
    profile.add_argument('account_id')
    games = sub.add_parser('games', help='List the games played by an account')
    games.add_argument('account_id')
    games.add_argument('--limit', type=int, default=10, help='Page size (default: 10)')
    games.add_argument('--all', action='store_true', help='Fetch every page')
    return parser


def _print_account(resp) -> None:
    p = resp.profile
    print(f"{Fore.YELLOW}Online ID:  {Fore.WHITE}{p.online_id}")
    print(f"{Fore.YELLOW}Account ID: {Fore.WHITE}{p.account_id}")
    if p.current_online_id and p.current_online_id != p.online_id:
        print(f"{Fore.YELLOW}Current ID: {Fore.WHITE}{p.current_online_id}")


def _print_profile(resp) -> None:
    detail = resp.personal_detail
    print(f"{Fore.CYAN}{Style.BRIGHT}{resp.online_id}")
    if detail.display_name:
        print(f"{Fore.YELLOW}Name:      {Fore.WHITE}{detail.display_name}")
    if resp.about_me:
        print(f"{Fore.YELLOW}About:     {Fore.WHITE}{resp.about_me}")
    if resp.languages:
        print(f"{Fore.YELLOW}Languages: {Fore.WHITE}{', '.join(resp.languages)}")
    print(f"{Fore.YELLOW}PS Plus:   {Fore.WHITE}{'yes' if resp.is_plus else 'no'}")
    if resp.is_officially_verified:
        print(f"{Fore.GREEN}Officially verified")


def _print_games(titles) -> None:
    for title in titles:
        try:
            duration = title.play_duration_delta
        except ValueError:
            # e.g. P1Y: years and months have no fixed length
            duration = None
        hours = f"{duration.total_seconds() / 3600:.1f}h" if duration else '-'
        print(f"{Fore.CYAN}{title.name} {Fore.WHITE}[{title.title_id}] "
              f"{Fore.YELLOW}plays: {Fore.WHITE}{title.play_count} "
              f"{Fore.YELLOW}time: {Fore.WHITE}{hours}")
    print(f"{Fore.GREEN}{len(titles)} title(s)")


def _fetch_all_games(policy, api, account_id, ctx, page_size) -> List:
    """Follow ``nextOffset`` page by page, retrying each page under *policy*."""
    titles: List = []
    offset = 0
    while True:
        page = call_with_retry(policy, api.get_user_games, account_id,
                               ctx=ctx, limit=page_size, offset=offset)
        titles.extend(page.titles)
        if not page.titles or not page.next_offset or page.next_offset <= offset:
            return titles
        offset = page.next_offset


def main(argv: Optional[List[str]] = None) -> int:
    """Run the CLI and return the process exit status."""
    init(autoreset=True)
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_config(args.config or DEFAULT_CONFIG_PATH, required=args.config is not None)
        npsso = args.npsso or config.get('psn_npsso', '')
        if is_placeholder_value(npsso):
            print(f"{Fore.RED}Error: Please configure your NPSSO in config.json, "
                  f"set PSN_NPSSO, or pass --npsso")
            print(f"{Fore.YELLOW}Log in at https://my.playstation.com and copy the 'npsso' cookie.")
            return 1

        client = Client(
            language=args.language or config.get('psn_language', 'en-US'),
            region=args.region or config.get('psn_region', 'us'),
            timeout=config.get('psn_timeout', 10.0),
        )
        ctx = RequestContext(timeout=args.timeout)
        policy = RetryPolicy(max_retries=max(0, args.retries))

        api = client.authenticate(npsso, ctx=ctx)

        if args.command == 'account':
            _print_account(call_with_retry(policy, api.get_user_account_id, args.online_id, ctx=ctx))
        elif args.command == 'profile':
            _print_profile(call_with_retry(policy, api.get_user_profile, args.account_id, ctx=ctx))
        elif args.all:
            _print_games(_fetch_all_games(policy, api, args.account_id, ctx, args.limit))
        else:
            page = call_with_retry(policy, api.get_user_games, args.account_id,
                                   ctx=ctx, limit=args.limit)
            _print_games(page.titles)
    except PSNError as e:
        print(f"{Fore.RED}Error: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
