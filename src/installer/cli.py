"""CLI handlers for the installer verbs (install, upgrade, uninstall, plan, validate).

Usage:
    stack-installer install -m <manifest> [--dry-run] [--json-output] [--verbose]
    stack-installer upgrade -m <manifest> [--dry-run] [--json-output]
    stack-installer uninstall -m <manifest> [--dry-run] [--yes]
    stack-installer plan -m <manifest>
    stack-installer validate -m <manifest> [--verbose]

Install walks the components concurrently in dependency order, upgrade
walks the plan one component at a time, uninstall walks concurrently in
reverse dependency order.
"""

import argparse
import json
import logging
import signal
import sys
import time
from contextlib import contextmanager
from typing import Optional

from actions import HelmAction, KubectlAction
from cluster import Cluster, ClusterError
from common import missing_executables
from config import ARG_TO_ENV, ConfigError, InstallerConfig, load_config
from manifest import ComponentType, Manifest, load_manifest
from installer.checks import ComponentActions
from installer.context import ContextError, RunContext
from installer.lifecycle import ActionError, Install, Uninstall, Upgrade
from installer.plan import Plan, build_plan
from installer.state import RunState, TrackedAction
from installer.walker import reverse_walk, walk, walk_serially

logger = logging.getLogger(__name__)

ACTIONS = {
    'install': Install,
    'upgrade': Upgrade,
    'uninstall': Uninstall,
}


def _env_help(setting: str, text: str) -> str:
    """Prefix help text with the environment variable bound to a setting."""
    return f"({ARG_TO_ENV[setting]}) {text}"


def _common_parser(verb: str, description: str) -> argparse.ArgumentParser:
    """Build argument parser with common options for all verbs."""
    parser = argparse.ArgumentParser(
        prog=f'stack-installer {verb}',
        description=description,
    )
    parser.add_argument(
        '--manifest', '-m',
        help=_env_help('manifest', 'Path to the component manifest'),
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    return parser


def _cluster_parser(verb: str, description: str) -> argparse.ArgumentParser:
    """Common parser plus the options of verbs that talk to a cluster."""
    parser = _common_parser(verb, description)
    parser.add_argument(
        '--kubeconfig',
        help=_env_help('kubeconfig', 'Kubeconfig file'),
    )
    parser.add_argument(
        '--context',
        dest='kube_context',
        help=_env_help('kube_context', 'Kubeconfig context'),
    )
    parser.add_argument(
        '--timeout-multiplier',
        type=int,
        help=_env_help('timeout_multiplier', 'Multiply every wait timeout'),
    )
    parser.add_argument(
        '--strict-checks',
        action='store_true',
        default=None,
        help=_env_help('strict_checks', 'Fail on unrecognized check types'),
    )
    parser.add_argument(
        '--timeout',
        type=float,
        help='Overall deadline for the command in seconds',
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Preview the plan without touching the cluster',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    parser.add_argument(
        '--skip-preflight',
        action='store_true',
        help='Skip the helm/kubectl availability check',
    )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _load_settings(args) -> InstallerConfig:
    overrides = {'manifest': args.manifest}
    for name in ('kubeconfig', 'kube_context', 'timeout_multiplier', 'strict_checks'):
        overrides[name] = getattr(args, name, None)
    return load_config(overrides=overrides)


def _load(args) -> tuple[InstallerConfig, Manifest, Plan]:
    """Resolve settings, load the manifest and build the plan.

    Raises:
        ConfigError: On invalid settings, manifest or dependency graph
    """
    settings = _load_settings(args)
    if not settings.manifest:
        raise ConfigError(
            f"specify a manifest with --manifest or {ARG_TO_ENV['manifest']}"
        )
    manifest = load_manifest(settings.manifest)
    plan = build_plan(manifest.components)
    return settings, manifest, plan


def _required_tools(settings: InstallerConfig, manifest: Manifest) -> list[str]:
    types = {c.type for c in manifest.components}
    tools = []
    if ComponentType.HELM in types:
        tools.append(settings.helm_bin)
    if ComponentType.YAML in types:
        tools.append(settings.kubectl_bin)
    return tools


def _run_preflight(args, settings: InstallerConfig, manifest: Manifest) -> Optional[int]:
    """Check the tools the manifest needs are on PATH.

    Returns:
        None if checks pass, exit code (1) if checks fail.
    """
    if args.skip_preflight or args.dry_run:
        return None

    missing = missing_executables(_required_tools(settings, manifest))
    if missing:
        print("Pre-flight validation failed:", file=sys.stderr)
        for name in missing:
            print(f"  ✗ {name} not found on PATH", file=sys.stderr)
        print("Use --skip-preflight to bypass these checks", file=sys.stderr)
        return 1
    logger.info("Pre-flight validation passed")
    return None


@contextmanager
def _cancel_on_signals(ctx: RunContext):
    """Cancel ctx on SIGINT/SIGTERM for the duration of the block."""
    def handler(signum, frame):
        logger.warning(f"Received {signal.Signals(signum).name}, cancelling")
        ctx.cancel()

    previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def _build_action(verb: str, cluster: Cluster, settings: InstallerConfig):
    timeout = settings.timeouts.deployment
    helm = HelmAction(
        binary=settings.helm_bin,
        kubeconfig=settings.kubeconfig,
        kube_context=settings.kube_context,
        timeout=timeout,
    )
    kubectl = KubectlAction(
        binary=settings.kubectl_bin,
        kubeconfig=settings.kubeconfig,
        kube_context=settings.kube_context,
        timeout=timeout,
    )
    checks = ComponentActions(cluster, settings)
    return ACTIONS[verb](cluster, checks, helm, kubectl)


def _walk(verb: str, ctx: RunContext, manifest: Manifest, plan: Plan, action) -> None:
    if verb == 'install':
        walk(ctx, manifest.components, action)
    elif verb == 'upgrade':
        walk_serially(ctx, plan, action)
    else:
        reverse_walk(ctx, manifest.components, action)


def _emit_json(state: RunState, success: bool, error: Optional[str] = None) -> None:
    """Emit structured JSON output."""
    output = {**state.to_dict(), 'success': success}
    if error is not None:
        output['error'] = error
    print(json.dumps(output, indent=2))


def _print_plan(verb: str, plan: Plan) -> None:
    order = list(plan)
    if verb == 'uninstall':
        order.reverse()
    print(f"{verb.capitalize()} order ({len(order)} component{'s' if len(order) != 1 else ''}):")
    for i, c in enumerate(order, 1):
        needs = f" (needs {c.needs})" if c.needs else ''
        print(f"  {i}. {c.id} [{c.type.value}]{needs}")


def _run_verb(verb: str, args) -> int:
    """Load, plan and execute one lifecycle verb."""
    try:
        settings, manifest, plan = _load(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.info(f"Plan for '{manifest.name}': {plan}")

    if args.dry_run:
        _print_plan(verb, plan)
        return 0

    preflight_rc = _run_preflight(args, settings, manifest)
    if preflight_rc is not None:
        return preflight_rc

    if verb == 'uninstall' and not args.yes:
        print(f"\nWARNING: This will uninstall all components in manifest '{manifest.name}'.")
        print("This action cannot be undone.")
        response = input("Continue? [y/N] ").strip().lower()
        if response != 'y':
            print("Aborted.")
            return 1

    state = RunState(verb, manifest.name, plan.ids())
    ctx = RunContext(timeout=args.timeout)
    error: Optional[str] = None
    start = time.time()
    state.start()
    try:
        cluster = Cluster.connect(settings)
        action = TrackedAction(_build_action(verb, cluster, settings), state)
        logger.info(f"Starting {verb} of '{manifest.name}'")
        with _cancel_on_signals(ctx):
            _walk(verb, ctx, manifest, plan, action)
    except (ConfigError, ActionError, ClusterError, ContextError) as e:
        error = str(e)
        print(f"Error: {e}", file=sys.stderr)
    finally:
        state.finish()

    success = error is None
    if success:
        logger.info(f"{verb.capitalize()} of '{manifest.name}' completed in {time.time() - start:.1f}s")
    if args.json_output:
        _emit_json(state, success, error)
    return 0 if success else 1


def install_main(argv: list) -> int:
    """Handle 'install' verb."""
    parser = _cluster_parser('install', 'Install all manifest components')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)
    return _run_verb('install', args)


def upgrade_main(argv: list) -> int:
    """Handle 'upgrade' verb."""
    parser = _cluster_parser('upgrade', 'Upgrade all manifest components, one at a time')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)
    return _run_verb('upgrade', args)


def uninstall_main(argv: list) -> int:
    """Handle 'uninstall' verb."""
    parser = _cluster_parser('uninstall', 'Uninstall all manifest components')
    parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Skip confirmation prompt',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)
    return _run_verb('uninstall', args)


def plan_main(argv: list) -> int:
    """Handle 'plan' verb: print the install order without a cluster."""
    parser = _common_parser('plan', 'Show the install order of manifest components')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, False)

    try:
        _, _, plan = _load(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    _print_plan('install', plan)
    return 0


def validate_main(argv: list) -> int:
    """Handle 'validate' verb.

    Checks manifest structure (fields, types, ids, needs) and that the
    dependency graph is acyclic.
    """
    parser = _common_parser('validate', 'Validate manifest structure and dependencies')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, False)

    try:
        _, manifest, plan = _load(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for c in plan:
        logger.debug(f"Component '{c.id}' ({c.type.value}) needs {c.needs or '-'}")

    count = len(manifest.components)
    print(f"Manifest '{manifest.name}' is valid ({count} component{'s' if count != 1 else ''})")
    return 0
