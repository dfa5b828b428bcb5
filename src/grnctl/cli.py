#!/usr/bin/env python3
"""
grnctl command line entry point.

This is the only module that reads the process environment. It captures
os.environ once, renders settings, and hands a frozen Settings instance to
the controller.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Mapping, Optional

from .cli_utils import get_cli_version
from .console import configure_logging, success
from .controller import Action, LifecycleController
from .errors import ConfigurationError, GrnctlError
from .runtime import ContainerRuntime, check_runtime_dependencies
from .settings import (
    Environment,
    NodeType,
    load_settings,
    rendered_settings_path,
    write_rendered_toml,
)

logger = logging.getLogger(__name__)


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    """
    Parse command-line arguments for grnctl.

    Positional arguments:
    1. ACTION - init, deploy, stop, restart, clean, validate, show-node-id, show-validator
    2. ENVIRONMENT - local, test, live (default: local)
    3. NODE_TYPE - validator, full, seed (default: validator)

    Invalid values or combinations exit with status 2 and print usage.
    """
    parser = argparse.ArgumentParser(
        prog='grnctl',
        description='Graphene node identity bootstrap and deployment lifecycle control',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # Generate validator keys for the local environment
  %(prog)s init local validator

  # Deploy the test environment and tail the logs afterwards
  %(prog)s deploy test --logs

  # Show the peer id from NODE_KEY_JSON
  NODE_KEY_JSON=... %(prog)s show-node-id live full

  # Print the docker / compose commands a restart would run
  %(prog)s restart test --dry-run

  # Check compose files and env files without starting anything
  %(prog)s validate live
        '''
    )

    parser.add_argument(
        'action',
        choices=[a.value for a in Action],
        metavar='ACTION',
        help='One of: ' + ', '.join(a.value for a in Action)
    )

    parser.add_argument(
        'environment',
        nargs='?',
        default=Environment.LOCAL.value,
        choices=[e.value for e in Environment],
        metavar='ENVIRONMENT',
        help='Target environment: local, test or live (default: local)'
    )

    parser.add_argument(
        'node_type',
        nargs='?',
        default=NodeType.VALIDATOR.value,
        choices=[t.value for t in NodeType],
        metavar='NODE_TYPE',
        help='Node type for identity actions: validator, full or seed (default: validator)'
    )

    parser.add_argument(
        '--force',
        action='store_true',
        help='init only: discard an existing identity and generate a new one'
    )

    parser.add_argument(
        '--no-build',
        action='store_true',
        help='Start services without rebuilding images'
    )

    parser.add_argument(
        '--no-git-lfs',
        action='store_true',
        help='Skip the Git LFS pull before deploying'
    )

    parser.add_argument(
        '--skip-network',
        action='store_true',
        help='Do not inspect or create the shared Docker network'
    )

    parser.add_argument(
        '-l', '--logs',
        action='store_true',
        help='Show the last log lines of every group after a successful deploy'
    )

    parser.add_argument(
        '--log-tail',
        type=int,
        default=None,
        metavar='N',
        help='Number of log lines shown by --logs (default: deploy.log_tail, 50)'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print mutating docker / compose commands instead of running them (deployment actions only)'
    )

    parser.add_argument(
        '--repo-root',
        type=Path,
        default=None,
        metavar='PATH',
        help='Deployment repository root (default: current directory)'
    )

    parser.add_argument(
        '--log-level',
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Override grnctl.log_level'
    )

    parser.add_argument(
        '--render-toml',
        action='store_true',
        help='Write the merged settings to grnctl.toml and exit'
    )

    parser.add_argument(
        '--print-context',
        action='store_true',
        help='Print merged settings as JSON and exit (debugging)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {get_cli_version()}'
    )

    args = parser.parse_args(argv)

    if args.force and args.action != Action.INIT.value:
        parser.error('--force is only valid with the init action')
    if args.dry_run and Action(args.action).is_identity:
        parser.error(f'--dry-run is not supported for {args.action}')
    if args.action == Action.SHOW_VALIDATOR.value and args.node_type != NodeType.VALIDATOR.value:
        parser.error('show-validator requires NODE_TYPE validator')
    if args.log_tail is not None and args.log_tail <= 0:
        parser.error('--log-tail must be a positive integer')

    return args


def run(args: argparse.Namespace, environ: Mapping[str, str]) -> int:
    environment = Environment.parse(args.environment)
    node_type = NodeType.parse(args.node_type)
    repo_root = (args.repo_root or Path.cwd()).resolve()
    if not repo_root.is_dir():
        raise ConfigurationError(f"Repository root not found: {repo_root}", path=str(repo_root))

    settings = load_settings(
        repo_root,
        environment,
        node_type,
        environ,
        no_build=args.no_build,
        no_git_lfs=args.no_git_lfs,
        skip_network=args.skip_network,
        show_logs=args.logs,
        log_tail=args.log_tail,
        dry_run=args.dry_run,
        force=args.force,
    )
    configure_logging(args.log_level or settings.log_level, environ=environ)

    if args.print_context:
        print(json.dumps(settings.config, indent=2, default=str))
        return 0

    if args.render_toml:
        output_path = rendered_settings_path(repo_root)
        write_rendered_toml(output_path, settings.config)
        success(logger, f"Rendered settings written to {output_path}")
        return 0

    action = Action.parse(args.action)
    runtime = ContainerRuntime(dry_run=settings.dry_run, timeout=settings.command_timeout)
    check_runtime_dependencies(
        runtime,
        skip=environ.get('GRNCTL_SKIP_DEPENDENCY_CHECK') == '1',
        need_compose=not action.is_identity,
    )

    report = LifecycleController(settings, runtime).run(action)
    return report.exit_code


def main(argv: Optional[list] = None) -> int:
    args = parse_arguments(argv)
    environ = dict(os.environ)
    configure_logging(args.log_level or environ.get('GRNCTL_LOG_LEVEL', 'INFO'), environ=environ)

    try:
        return run(args, environ)
    except GrnctlError as e:
        logger.error(str(e))
        return e.exit_code
    except KeyboardInterrupt:
        print("\n[WARN] Interrupted by user", file=sys.stderr)
        return 130


if __name__ == '__main__':
    raise SystemExit(main())
