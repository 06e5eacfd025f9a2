import click
from sqlalchemy import func
from botdesk.core.database import SessionLocal
from botdesk.models.user import User
from botdesk.models.bot import Bot
from botdesk.services.entitlement_service import EntitlementService
import logging

logger = logging.getLogger(__name__)


def _find_user(db, email, user_id):
    if user_id:
        return db.query(User).filter(User.id == user_id).first()
    return db.query(User).filter(User.email == email).first()


@click.group()
def cli():
    """BotDesk operator commands"""
    pass


@cli.command()
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (Firebase UID)')
def entitlement(email, user_id):
    """Show a user's subscription status, plan and billing customer.

    Read-only; entitlements change through Stripe webhooks.
    """
    db = SessionLocal()
    try:
        if not email and not user_id:
            click.echo("❌ Please provide --email or --id for this operation", err=True)
            return

        user = _find_user(db, email, user_id)
        if not user:
            click.echo(f"❌ User not found: {user_id or email}", err=True)
            return

        current = EntitlementService().get(db, user.id)
        bot_count = db.query(Bot).filter(Bot.user_id == user.id).count()

        click.echo(f"User {user.email or user.id}")
        click.echo(f"  status:   {current.status}")
        click.echo(f"  plan:     {current.plan}")
        click.echo(f"  customer: {current.stripe_customer_id or '<unbound>'}")
        click.echo(f"  bots:     {bot_count}")
    except Exception as e:
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command()
def stats():
    """Show user counts by subscription plan and status"""
    db = SessionLocal()
    try:
        total = db.query(func.count(User.id)).scalar() or 0
        click.echo(f"\nUsers: {total}")

        click.echo("\nBy plan:")
        by_plan = db.query(User.subscription_plan, func.count(User.id)).group_by(User.subscription_plan).all()
        for plan, count in sorted(by_plan, key=lambda row: row[0] or ''):
            click.echo(f"  - {plan}: {count}")

        click.echo("\nBy status:")
        by_status = db.query(User.subscription_status, func.count(User.id)).group_by(User.subscription_status).all()
        for status, count in sorted(by_status, key=lambda row: row[0] or ''):
            click.echo(f"  - {status}: {count}")

        bots = db.query(func.count(Bot.id)).scalar() or 0
        click.echo(f"\nBots: {bots}")
    except Exception as e:
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


if __name__ == '__main__':
    cli()
