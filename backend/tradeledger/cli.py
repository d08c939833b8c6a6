# Overview: Flask CLI command groups for bootstrap, sweeps, installments, and automation.

# backend/tradeledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default chart of accounts.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system trial-balance
#   Per-account debit/credit totals.
#
# Sweeps:
# - python -m flask sweep run-once
#   Expire holds, then run the consistency audit.
# - python -m flask sweep start
#   Run the background scheduler in the foreground until Ctrl-C.
# - python -m flask sweep expire
#   Release expired temporary holds.
# - python -m flask sweep consistency
#   Report orphaned reservations, orphaned sales, and ledger divergences.
# - python -m flask sweep daily-report --date 2024-01-15
#   Status-change counts for one day (default: yesterday).
#
# Installments:
# - python -m flask installments late-charges
#   Apply late charges to past-due installments and refresh overdue invoices.
# - python -m flask installments reminders --days 7
#   List installments due within the window.
#
# Automation:
# - python -m flask automation list --status FAILED
#   List recent automation runs.
# - python -m flask automation retry 12 --actor ops
#   Retry a FAILED automation run.

import json
import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .services import accounting_service, automation_service, installment_service, invoice_service
from .services import reconciliation_service
from .scheduler import create_default_scheduler
from .validation import ValidationError, require_iso_date


def _money(cents: int) -> str:
    return f"${cents / 100:,.2f}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create all tables and seed the chart of accounts.

    Safe to run repeatedly; existing accounts are left alone.
    """
    click.echo("START Initializing database...")
    db.create_all()
    created = accounting_service.ensure_default_accounts(db.session)
    if created:
        click.echo(f"PASS Created accounts: {', '.join(a.code for a in created)}")
    else:
        click.echo("PASS Accounts already configured")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@system_group.command('trial-balance')
@with_appcontext
def trial_balance_cli():
    """Show debit/credit totals per account."""
    result = accounting_service.trial_balance(db.session)

    click.echo("\n" + "="*70)
    click.echo(f"{'Code':<8} {'Name':<30} {'Debit':>14} {'Credit':>14}")
    click.echo("="*70)
    for row in result["accounts"]:
        click.echo(f"{row['code']:<8} {row['name'][:30]:<30} "
                   f"{_money(row['debit_cents']):>14} {_money(row['credit_cents']):>14}")
    click.echo("="*70)
    click.echo(f"{'Total':<39} {_money(result['total_debit_cents']):>14} {_money(result['total_credit_cents']):>14}")

    if result["balanced"]:
        click.echo("PASS Journal is balanced\n")
    else:
        click.echo("FAIL Journal is NOT balanced\n")


@click.group('sweep')
def sweep_group():
    """Reservation expiry and consistency sweeps."""


@sweep_group.command('run-once')
@with_appcontext
def sweep_run_once():
    """Expire holds, then audit consistency."""
    results = reconciliation_service.run_cleanup_now(db.session)
    expired = results["expired_reservations"]
    check = results["consistency_check"]
    click.echo(f"PASS Expired {expired['expired_count']} reservation(s)")
    _echo_consistency(check)


@sweep_group.command('start')
@click.option('--poll-seconds', type=float, default=1.0, show_default=True)
@with_appcontext
def sweep_start(poll_seconds):
    """Run the sweep scheduler until interrupted."""
    app = current_app._get_current_object()
    scheduler = create_default_scheduler(app, poll_seconds=poll_seconds)
    scheduler.start()
    click.echo(f"START Scheduler running jobs: {', '.join(scheduler.jobs)} (Ctrl-C to stop)")
    try:
        while scheduler.is_running:
            time.sleep(poll_seconds)
    except KeyboardInterrupt:
        click.echo("\nSTOP Stopping scheduler...")
    finally:
        scheduler.stop()
    click.echo(json.dumps(scheduler.status(), indent=2))


@sweep_group.command('expire')
@with_appcontext
def sweep_expire():
    """Release expired temporary holds."""
    result = reconciliation_service.expire_reservations(db.session)
    click.echo(f"PASS Expired {result['expired_count']} reservation(s)")
    for unit_id in result["unit_ids"]:
        click.echo(f"  - unit {unit_id}")


def _echo_consistency(check: dict) -> None:
    if check["total_inconsistencies"] == 0:
        click.echo("PASS No inconsistencies found")
        return
    click.echo(f"WARN {check['total_inconsistencies']} inconsistencies found")
    click.echo(f"  Orphaned reservations: {check['orphaned_reservations']}")
    click.echo(f"  Orphaned sales:        {check['orphaned_sales']}")
    click.echo(f"  Ledger divergences:    {check['ledger_divergences']}")
    click.echo(json.dumps(check["details"], indent=2, default=str))


@sweep_group.command('consistency')
@with_appcontext
def sweep_consistency():
    """Report inconsistencies without correcting them."""
    _echo_consistency(reconciliation_service.check_consistency(db.session))


@sweep_group.command('daily-report')
@click.option('--date', 'day', help='Report date (YYYY-MM-DD), defaults to yesterday')
@with_appcontext
def sweep_daily_report(day):
    """Status-change counts and current inventory distribution."""
    try:
        report_date = require_iso_date(day, "--date")
    except ValidationError as exc:
        raise click.BadParameter(str(exc))
    report = reconciliation_service.generate_daily_report(db.session, report_date)
    click.echo(json.dumps(report, indent=2))


@click.group('installments')
def installments_group():
    """Installment batch commands."""


@installments_group.command('late-charges')
@with_appcontext
def late_charges_cli():
    """Apply late charges to every past-due installment."""
    result = installment_service.process_late_charges(db.session)
    overdue = invoice_service.refresh_overdue_invoices(db.session)
    click.echo(f"PASS Processed {result['processed']} installment(s), {result['failed']} failed")
    for row in result["results"]:
        if row["status"] != "SUCCESS":
            click.echo(f"FAIL installment {row['installment_id']}: {row['message']}")
    click.echo(f"PASS {overdue} invoice(s) moved to OVERDUE")


@installments_group.command('reminders')
@click.option('--days', type=int, help='Days ahead (defaults to REMINDER_DAYS_AHEAD)')
@with_appcontext
def reminders_cli(days):
    """List installments coming due."""
    reminders = installment_service.generate_installment_reminders(db.session, days_ahead=days)
    if not reminders:
        click.echo("No installments due in the window.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'Due':<12} {'Invoice':<14} {'#':<4} {'Amount':>12} {'Customer':<25} {'Contact'}")
    click.echo("="*100)
    for r in reminders:
        contact = r["customer_phone"] or r["customer_email"] or "-"
        click.echo(f"{r['due_date']:<12} {r['invoice_number']:<14} {r['installment_number']:<4} "
                   f"{_money(r['amount_cents']):>12} {r['customer_name'][:25]:<25} {contact}")
    click.echo("="*100 + "\n")


@click.group('automation')
def automation_group():
    """Automation log inspection and retry."""


@automation_group.command('list')
@click.option('--status', help='Filter by status (IN_PROGRESS, SUCCESS, FAILED)')
@click.option('--action', help='Filter by action')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_automation_cli(status, action, limit):
    """List recent automation runs."""
    logs = automation_service.list_automation_logs(db.session, status=status, action=action, limit=limit)
    if not logs:
        click.echo("No automation runs found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<6} {'Action':<28} {'Source':<20} {'Status':<12} {'Created':<20} {'Error'}")
    click.echo("="*110)
    for log in logs:
        source = f"{log.source_type}#{log.source_id}"
        error = log.error_message[:30] if log.error_message else "-"
        click.echo(f"{log.id:<6} {log.action:<28} {source:<20} {log.status:<12} "
                   f"{str(log.created_at)[:19]:<20} {error}")
    click.echo("="*110 + "\n")


@automation_group.command('retry')
@click.argument('log_id', type=int)
@click.option('--actor', required=True, help='Who is retrying')
@with_appcontext
def retry_automation_cli(log_id, actor):
    """Retry a FAILED automation run."""
    try:
        result = automation_service.retry_automation(db.session, log_id, actor)
    except Exception as exc:
        click.echo(f"FAIL Retry failed: {exc}")
        raise SystemExit(1)
    click.echo(f"PASS {result.message} (log {result.log_id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sweep_group)
    app.cli.add_command(installments_group)
    app.cli.add_command(automation_group)
