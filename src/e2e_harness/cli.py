"""
e2e-harness command line

Usage:
    e2e-harness preflight                      # Check host, ensure admin+user sessions
    e2e-harness auth-setup --role admin        # Interactive login, save session
    e2e-harness auth-status                    # Show saved sessions
    e2e-harness auth-clear --role user         # Delete saved sessions
    e2e-harness credentials setup --env dev    # Store credentials for headless login
    e2e-harness modules                        # List discovered test modules
    e2e-harness results --pillar synthetic     # Summarize recorded results
    e2e-harness results --notify               # ...and post the summary to Slack
    e2e-harness run -- -k smoke                # Preflight, then pytest
"""

import argparse
import asyncio
import getpass
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from e2e_harness.config import (
    EnvironmentSelector,
    RunContext,
    load_auth_settings,
    load_run_context,
    resolve_base_url,
)
from e2e_harness.credentials import CredentialManager
from e2e_harness.discovery import PILLARS, SCANNED_PILLARS, scan_modules
from e2e_harness.exceptions import (
    AuthenticationError,
    ConfigurationError,
    CredentialsUnavailable,
    HarnessError,
    HostUnreachable,
)
from e2e_harness.health import ReachabilityGate
from e2e_harness.identity import IdentityProviderClient
from e2e_harness.logging_config import setup_logging
from e2e_harness.reporting import SlackReporter
from e2e_harness.results import ResultReader
from e2e_harness.session.lifecycle import PreflightReport, run_preflight
from e2e_harness.session.store import SessionStore
from e2e_harness.types import AccountCredentials, Role

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_UNREACHABLE = 2
EXIT_CONFIG = 3

ROLE_CHOICES = ["admin", "user", "all"]


def _roles(choice: Optional[str]) -> list[Role]:
    if choice in (None, "all"):
        return [Role.ADMIN, Role.USER]
    return [Role(choice)]


def _make_driver():
    from e2e_harness.browser.playwright_driver import PlaywrightDriver

    return PlaywrightDriver()


def _print_header(title: str) -> None:
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def _print_unreachable(error: HostUnreachable) -> None:
    print(f"\n❌ Cannot reach {error.url} ({error.cause})")
    if error.detail:
        print(f"   {error.detail}")
    print(f"   {error.hint}")
    print("   Aborting before any session work.\n")


def _print_report(report: PreflightReport) -> None:
    _print_header(f"Session summary: {report.environment} ({report.app_url})")
    for outcome in report.outcomes:
        if outcome.ready:
            print(f"  ✅ {outcome.role.value}: ready ({outcome.method})")
        else:
            print(f"  ❌ {outcome.role.value}: {outcome.message}")
            if outcome.hint:
                print(f"     {outcome.hint}")
    print("=" * 60 + "\n")


# =============================================================================
# Session Commands
# =============================================================================


def cmd_preflight(args, context: RunContext) -> int:
    try:
        report = asyncio.run(run_preflight(context, _roles(args.role), driver=_make_driver()))
    except HostUnreachable as e:
        _print_unreachable(e)
        return EXIT_UNREACHABLE

    _print_report(report)
    return EXIT_OK if report.all_ready else EXIT_FAILED


async def _auth_setup(context: RunContext, roles: list[Role]) -> int:
    selector = EnvironmentSelector(context.environments_dir)
    app_url = resolve_base_url(context, selector)
    settings = load_auth_settings(context, selector)

    await ReachabilityGate(timeout=settings.reachability_timeout).require(app_url)

    store = SessionStore(context.session_dir)
    client = IdentityProviderClient(_make_driver(), settings, automated=context.automated)
    failures = 0
    for role in roles:
        print(f"\n🔐 {role.label}: sign in in the browser window ({app_url})")
        try:
            artifact = await client.login_interactive(role, app_url)
        except AuthenticationError as e:
            print(f"❌ {role.value}: {e}")
            failures += 1
            continue
        try:
            path = store.save(role, context.environment, artifact)
        except OSError as e:
            print(f"❌ {role.value}: logged in but the session could not be saved: {e}")
            print(f"   Check that {store.auth_dir} is writable.")
            failures += 1
            continue
        print(f"✅ {role.value} session saved to {path}")

    return EXIT_FAILED if failures else EXIT_OK


def cmd_auth_setup(args, context: RunContext) -> int:
    if context.automated:
        print("❌ auth-setup needs a human at the browser and cannot run in CI.")
        print("   Provide E2E_<ROLE>_EMAIL / E2E_<ROLE>_PASSWORD and run 'e2e-harness preflight'.")
        return EXIT_FAILED
    try:
        return asyncio.run(_auth_setup(context, _roles(args.role)))
    except HostUnreachable as e:
        _print_unreachable(e)
        return EXIT_UNREACHABLE


def cmd_auth_status(args, context: RunContext) -> int:
    store = SessionStore(context.session_dir)
    _print_header(f"Saved sessions: {context.environment} ({store.auth_dir})")
    now = datetime.now(timezone.utc)
    for role in _roles(args.role):
        status = store.status(role, context.environment)
        if not status.exists:
            print(f"  ⚪ {role.value}: no saved session")
            continue
        if status.corrupt:
            print(f"  ❌ {role.value}: corrupt ({status.path}); run auth-clear")
            continue

        age = now - status.updated_at
        line = f"{status.cookie_count} cookies, saved {age.days}d {age.seconds // 3600}h ago"
        if status.earliest_expiry is not None:
            line += f", earliest cookie expiry {status.earliest_expiry:%Y-%m-%d %H:%M} UTC"
        if status.token_expiry is not None:
            state = "expired" if status.token_expired else "expires"
            line += f", token {state} {status.token_expiry:%Y-%m-%d %H:%M} UTC"
        icon = "⚠️ " if status.expired or status.token_expired else "✅"
        print(f"  {icon} {role.value}: {line}")
    print("=" * 60 + "\n")
    return EXIT_OK


def cmd_auth_clear(args, context: RunContext) -> int:
    store = SessionStore(context.session_dir)
    environment = None if args.all_environments else context.environment
    removed = store.clear(_roles(args.role), environment)
    if not removed:
        print("No saved sessions to remove.")
    for path in removed:
        print(f"🗑️  Removed {path}")
    return EXIT_OK


# =============================================================================
# Credential Commands
# =============================================================================


def _prompt_account(label: str, required: bool, environment: str) -> Optional[AccountCredentials]:
    username = input(f"{label} email{'' if required else ' (blank to skip)'}: ").strip()
    if not username:
        if required:
            raise CredentialsUnavailable(environment, f"{label} email is required")
        return None
    password = getpass.getpass(f"{label} password: ")
    if not password:
        raise CredentialsUnavailable(environment, f"{label} password is required")
    return AccountCredentials(username=username, password=password)


def cmd_credentials(args, context: RunContext) -> int:
    manager = CredentialManager(context.credential_dir)
    environment = context.environment

    if args.action == "setup":
        print(f"Storing credentials for '{environment}' in {manager.path_for(environment)}")
        regular = _prompt_account("Regular user", True, environment)
        elevated = _prompt_account("Admin (elevated)", False, environment)
        path = manager.save(environment, regular, elevated)
        print(f"✅ Saved {path} (mode 600)")
        return EXIT_OK

    if args.action == "clear":
        if manager.clear(environment):
            print(f"🗑️  Credentials cleared for '{environment}'")
        else:
            print(f"No stored credentials for '{environment}'")
        return EXIT_OK

    _print_header(f"Credentials: {environment}")
    for role in (Role.ADMIN, Role.USER):
        try:
            account = manager.load(environment, elevated=role.elevated)
        except CredentialsUnavailable:
            print(f"  ⚪ {role.value}: not stored")
            continue
        print(f"  ✅ {role.value}: {account.username} / {manager.mask_password(account.password)}")
    print("=" * 60 + "\n")
    return EXIT_OK


# =============================================================================
# Discovery / Results
# =============================================================================


def cmd_modules(args, context: RunContext) -> int:
    pillars = [args.pillar] if args.pillar else list(SCANNED_PILLARS)
    for pillar in pillars:
        _print_header(f"{pillar.title()} test modules")
        modules = scan_modules(pillar, context.project_root)
        if not modules:
            print("  (none)")
        for m in modules:
            print(f"  - {m.display_name} [{m.name}]: {m.description} ({m.test_count} test files)")
    print()
    return EXIT_OK


def cmd_results(args, context: RunContext) -> int:
    reader = ResultReader(context.result_dir)
    environment = context.environment

    summary = reader.summary(args.pillar, environment, days=args.days)
    _print_header(f"Results: {args.pillar} / {environment} (last {args.days} days)")
    print(f"  Total:   {summary.total}")
    print(f"  Passed:  {summary.passed}")
    print(f"  Failed:  {summary.failed}")
    print(f"  Skipped: {summary.skipped}")
    print(f"  Pass rate: {summary.pass_rate:.1f}%")

    if args.flaky:
        print("\nFlaky tests:")
        flaky = reader.flaky_tests(args.pillar, days=args.days)
        if not flaky:
            print("  (none)")
        for f in flaky:
            print(f"  - {f.test}: {f.failures}/{f.runs} failed ({f.flaky_rate:.0f}%)")

    if args.trends:
        print("\nDaily trend:")
        for point in reader.trends(args.pillar, environment, days=args.days):
            print(
                f"  {point.date}: {point.pass_rate:5.1f}% of {point.total_tests} "
                f"(avg {point.avg_duration:.0f}ms)"
            )

    if args.notify:
        reporter = SlackReporter.from_file(context.project_root / "config" / "slack.json")
        if not reporter.enabled:
            print("\n⚠️  Slack reporting is disabled (config/slack.json or E2E_SLACK_WEBHOOK_URL)")
        elif asyncio.run(reporter.send_summary(summary, report_url=args.report_url)):
            print("\n✅ Summary posted to Slack")
        else:
            print("\n  Slack notification not sent (see log)")
    print("=" * 60 + "\n")
    return EXIT_OK


# =============================================================================
# Test Run
# =============================================================================


def run_pytest(pytest_args: list[str], cwd: Path) -> int:
    """Run pytest with the harness plugin enabled"""
    cmd = [sys.executable, "-m", "pytest", "-p", "e2e_harness.pytest_plugin"] + pytest_args
    print(f"Running: {' '.join(cmd)}\n")

    result = subprocess.run(cmd, cwd=cwd)
    return result.returncode


def cmd_run(args, context: RunContext) -> int:
    if not args.skip_preflight:
        code = cmd_preflight(args, context)
        if code == EXIT_UNREACHABLE:
            return code
        if code != EXIT_OK:
            print("⚠️  Continuing with partial authentication; tests needing a missing session will fail.\n")

    pytest_args = list(args.pytest_args)
    if pytest_args and pytest_args[0] == "--":
        pytest_args = pytest_args[1:]
    return run_pytest(pytest_args, context.project_root)


# =============================================================================
# Entry Point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="e2e-harness", description="E2E session and test orchestration")
    parser.add_argument("--env", help="Environment name (default: E2E_ENVIRONMENT or 'local')")
    parser.add_argument("--project-root", type=Path, default=None, help="Project root (default: cwd)")
    parser.add_argument("--log-level", default=None, help="Log level (default: E2E_LOG_LEVEL or INFO)")

    # --env is accepted after the subcommand too
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--env", default=argparse.SUPPRESS, help=argparse.SUPPRESS)

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("preflight", help="Check the host and ensure sessions for all roles", parents=[common])
    p.add_argument("--role", choices=ROLE_CHOICES, default="all")
    p.set_defaults(func=cmd_preflight)

    p = sub.add_parser("auth-setup", help="Sign in interactively and save the session", parents=[common])
    p.add_argument("--role", choices=ROLE_CHOICES, required=True)
    p.set_defaults(func=cmd_auth_setup)

    p = sub.add_parser("auth-status", help="Show saved sessions", parents=[common])
    p.add_argument("--role", choices=ROLE_CHOICES, default="all")
    p.set_defaults(func=cmd_auth_status)

    p = sub.add_parser("auth-clear", help="Delete saved sessions", parents=[common])
    p.add_argument("--role", choices=ROLE_CHOICES, default="all")
    p.add_argument("--all-environments", action="store_true", help="Clear every environment")
    p.set_defaults(func=cmd_auth_clear)

    p = sub.add_parser("credentials", help="Manage stored credentials for headless login", parents=[common])
    p.add_argument("action", choices=["setup", "show", "clear"])
    p.set_defaults(func=cmd_credentials)

    p = sub.add_parser("modules", help="List discovered test modules", parents=[common])
    p.add_argument("--pillar", choices=list(SCANNED_PILLARS))
    p.set_defaults(func=cmd_modules)

    p = sub.add_parser("results", help="Summarize recorded test results", parents=[common])
    p.add_argument("--pillar", choices=list(PILLARS), default="synthetic")
    p.add_argument("--days", type=int, default=7)
    p.add_argument("--flaky", action="store_true", help="List flaky tests")
    p.add_argument("--trends", action="store_true", help="Show daily pass rate")
    p.add_argument("--notify", action="store_true", help="Post the summary to Slack (config/slack.json)")
    p.add_argument("--report-url", help="Link included in the Slack message")
    p.set_defaults(func=cmd_results)

    p = sub.add_parser("run", help="Preflight, then run pytest with the harness plugin", parents=[common])
    p.add_argument("--role", choices=ROLE_CHOICES, default="all")
    p.add_argument("--skip-preflight", action="store_true")
    p.add_argument("pytest_args", nargs=argparse.REMAINDER, help="Arguments passed to pytest")
    p.set_defaults(func=cmd_run)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    context = load_run_context(args.project_root, environment=args.env)
    setup_logging(args.log_level or context.log_level)

    try:
        return args.func(args, context)
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}")
        return EXIT_CONFIG
    except HarnessError as e:
        print(f"❌ {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
