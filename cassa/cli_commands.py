"""
Flask CLI commands.

Commands:
- flask init-db: Create the POS tables
- flask add-promotion: Store a promotion rule after checking its syntax
"""

import click

from cassa import database
from cassa.exceptions import PromotionSyntaxError


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    @click.option('--drop', is_flag=True, help='Drop existing tables first')
    def init_db_command(drop):
        """Create every table of the POS schema."""
        if drop:
            database.drop_all()
            click.echo(click.style('Tabelle eliminate.', fg='yellow'))
        database.create_all()
        click.echo(click.style('Database inizializzato.', fg='green'))

    @app.cli.command('add-promotion')
    @click.option('--description', required=True, help='Promotion name shown to operators')
    @click.argument('rule')
    def add_promotion(description, rule):
        """Validate RULE and store it as an active promotion."""
        from cassa.models import Promotion
        from cassa.services.promotion_service import parse_promotion

        try:
            parse_promotion(rule)
        except PromotionSyntaxError as e:
            raise click.ClickException(e.message)

        session = database.get_session()
        promotion = Promotion(description=description, rule=rule, active=True)
        session.add(promotion)
        session.commit()
        click.echo(click.style(f'Promozione {promotion.id} salvata.', fg='green'))
