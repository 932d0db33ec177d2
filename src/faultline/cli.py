"""
Faultline CLI

Command-line interface for the Faultline mock server, proxy and rule tools.

Commands:
    serve       - Start the mock HTTP server
    proxy       - Start a mitmproxy-based intercepting proxy
    check       - Show which rule would handle a request
    validate    - Validate a rule file

Examples:
    faultline serve rules.yaml --port 8080 --upstream http://localhost:3000
    faultline check rules.yaml POST /api/user/login
"""

import argparse
import json
import os
import sys
from pathlib import Path

from .common import RuleLoader, configure_logging
from .engine import InterceptionPipeline
from .errors import RuleConfigError


def _load_or_exit(rules_file: str):
    try:
        return RuleLoader(rules_file).load()
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except RuleConfigError as e:
        print(f"Invalid rule file: {e}", file=sys.stderr)
        sys.exit(1)


def cmd_serve(args):
    """
    Start the mock server.

    Args:
        args: Parsed command-line arguments
    """
    from .transport.server import MockServer, ServerConfig

    configure_logging(args.log_level)
    rules, config = _load_or_exit(args.rules_file)

    server_config = ServerConfig(
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        upstream=args.upstream,
        admin_enabled=not args.no_admin,
    )
    pipeline = InterceptionPipeline(rules, config)
    server = MockServer(config=server_config, pipeline=pipeline)
    server.rules_file = args.rules_file
    server.start()


def cmd_proxy(args):
    """
    Start mitmdump with the Faultline addon.

    Configuration is passed via environment variables because mitmproxy
    re-imports the addon module.
    """
    from mitmproxy.tools import main as mitmain

    # Fail early on a broken rule file instead of inside mitmproxy
    _load_or_exit(args.rules_file)

    os.environ['FAULTLINE_RULES'] = str(Path(args.rules_file).resolve())
    os.environ['FAULTLINE_LOG_LEVEL'] = args.log_level

    addon_path = Path(__file__).parent / 'transport' / 'mitm_addon.py'

    print(f"Faultline proxy listening on port {args.listen}")
    print(f"  export HTTP_PROXY=http://localhost:{args.listen}")
    print(f"  export HTTPS_PROXY=http://localhost:{args.listen}")
    print()

    try:
        sys.argv = [
            'mitmdump',
            '--listen-host', args.host,
            '--listen-port', str(args.listen),
            '-s', str(addon_path),
        ]
        if args.quiet:
            sys.argv.append('--quiet')

        mitmain.mitmdump()
    except (KeyboardInterrupt, SystemExit):
        pass


def cmd_check(args):
    """Print the rule matching a request, with its delay and error settings."""
    configure_logging(args.log_level)
    rules, config = _load_or_exit(args.rules_file)
    pipeline = InterceptionPipeline(rules, config)

    match_url = pipeline.match_url(args.url)
    result = pipeline.matcher.find_match(pipeline.rules, match_url, args.method)

    if not result.matched:
        print(f"No rule matches {args.method.upper()} {args.url}")
        print(f"  Matched against: {match_url}")
        sys.exit(2)

    rule = result.rule
    print(f"Rule: {rule.id} ({rule.method} {rule.url})")
    if result.params:
        print(f"  Params: {json.dumps(result.params)}")
    if rule.passthrough:
        print("  Pass-through: request goes to the real network")
        return
    print(f"  Delay: {pipeline.simulator.resolve_delay(rule, config)} ms")
    print(f"  Error mode: {rule.network.error_mode}, fail rate: {rule.network.fail_rate}%")
    print(f"  Status: {rule.response.status}")
    if rule.field_omit.enabled:
        print(f"  Field omission: {rule.field_omit.mode}")


def cmd_validate(args):
    """Validate a rule file and summarize it."""
    rules, config = _load_or_exit(args.rules_file)

    print(f"{args.rules_file}: {len(rules)} rules")
    for rule in rules:
        state = 'on ' if rule.enabled else 'off'
        print(f"  [{state}] {rule.method:<6} {rule.url}  ({rule.id})")

    ids = [rule.id for rule in rules]
    duplicates = sorted({rule_id for rule_id in ids if ids.count(rule_id) > 1})
    if duplicates:
        print(f"Warning: duplicate rule ids: {', '.join(duplicates)}")

    if config.network_profile and config.network_profile not in config.profile_table():
        print(f"Warning: unknown global network profile {config.network_profile!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='faultline',
        description="Faultline - intercept HTTP calls during development and answer them from rules",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve rules, proxy everything else to a real backend
  %(prog)s serve rules.yaml --port 8080 --upstream http://localhost:3000

  # Intercept traffic of any client through an HTTP proxy
  %(prog)s proxy rules.yaml --listen 8888

  # Which rule handles this request?
  %(prog)s check rules.yaml GET /api/user/123
        """
    )
    subparsers = parser.add_subparsers(dest='command', help='Command to run')
    log_levels = ['debug', 'info', 'warning', 'error']

    # --- SERVE command ---
    serve_parser = subparsers.add_parser('serve', help='Start mock HTTP server')
    serve_parser.add_argument('rules_file', help='YAML or JSON rule file')
    serve_parser.add_argument('--host', default='127.0.0.1', help='Host to bind (default: 127.0.0.1)')
    serve_parser.add_argument('-p', '--port', type=int, default=8080, help='Port to bind (default: 8080)')
    serve_parser.add_argument('-u', '--upstream', help='Base URL for requests no rule handles')
    serve_parser.add_argument('--no-admin', action='store_true', help='Disable admin API')
    serve_parser.add_argument('--log-level', default='info', choices=log_levels, help='Log level (default: info)')

    # --- PROXY command ---
    proxy_parser = subparsers.add_parser('proxy', help='Start intercepting HTTP proxy (requires mitmproxy)')
    proxy_parser.add_argument('rules_file', help='YAML or JSON rule file')
    proxy_parser.add_argument('--host', default='127.0.0.1', help='Host to bind (default: 127.0.0.1)')
    proxy_parser.add_argument('-l', '--listen', type=int, default=8888, help='Proxy port (default: 8888)')
    proxy_parser.add_argument('--quiet', action='store_true', help='Suppress mitmproxy flow output')
    proxy_parser.add_argument('--log-level', default='info', choices=log_levels, help='Log level (default: info)')

    # --- CHECK command ---
    check_parser = subparsers.add_parser('check', help='Show which rule would handle a request')
    check_parser.add_argument('rules_file', help='YAML or JSON rule file')
    check_parser.add_argument('method', help='HTTP method')
    check_parser.add_argument('url', help='Request path or URL')
    check_parser.add_argument('--log-level', default='warning', choices=log_levels, help='Log level (default: warning)')

    # --- VALIDATE command ---
    validate_parser = subparsers.add_parser('validate', help='Validate a rule file')
    validate_parser.add_argument('rules_file', help='YAML or JSON rule file')

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == 'serve':
        cmd_serve(args)
    elif args.command == 'proxy':
        cmd_proxy(args)
    elif args.command == 'check':
        cmd_check(args)
    elif args.command == 'validate':
        cmd_validate(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == '__main__':
    main()
