import click
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from config import config

db = SQLAlchemy()


def create_app(config_name='default', overrides=None):
    """Application factory — creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    # ── Logging ───────────────────────────────────────────────────
    from invoicer.utils.logging import setup_logging
    setup_logging(app)

    # ── Extensions ────────────────────────────────────────────────
    db.init_app(app)
    with app.app_context():
        _configure_sqlite_locking(db.engine)

    # ── Blueprints ────────────────────────────────────────────────
    from invoicer.main import main as main_blueprint
    app.register_blueprint(main_blueprint)

    from invoicer.auth import auth as auth_blueprint
    app.register_blueprint(auth_blueprint, url_prefix='/auth')

    from invoicer.businesses import businesses as businesses_blueprint
    app.register_blueprint(businesses_blueprint, url_prefix='/businesses')

    from invoicer.invoicing import invoicing as invoicing_blueprint
    app.register_blueprint(invoicing_blueprint, url_prefix='/invoices')

    from invoicer.payments import payments as payments_blueprint
    app.register_blueprint(payments_blueprint, url_prefix='/payments')

    # ── Error Handlers ────────────────────────────────────────────
    from invoicer.invoicing.errors import InvoicingError

    @app.errorhandler(InvoicingError)
    def invoicing_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({'error': 'BAD_REQUEST', 'message': e.description}), 400

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({'error': 'UNAUTHORIZED', 'message': 'Login required.'}), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({'error': 'FORBIDDEN', 'message': 'Access denied.'}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'NOT_FOUND', 'message': 'Resource not found.'}), 404

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({'error': 'SERVER_ERROR', 'message': 'Internal server error.'}), 500

    # ── CLI Commands ──────────────────────────────────────────────
    register_commands(app)

    return app


def _configure_sqlite_locking(engine):
    """
    SQLite ignores SELECT … FOR UPDATE, so open every transaction with
    BEGIN IMMEDIATE instead. The write lock is taken up front and concurrent
    admissions queue on the busy timeout rather than failing on a lock
    upgrade.
    """
    if engine.dialect.name != 'sqlite':
        return

    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        # ON DELETE CASCADE from businesses → invoices / invoice_sequences
        dbapi_connection.execute('PRAGMA foreign_keys=ON')

    @event.listens_for(engine, 'begin')
    def _begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')


def register_commands(app):
    """Register custom Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables."""
        # Models are registered when the blueprints are imported above.
        db.create_all()
        click.echo('✅  Database tables created.')

    @app.cli.command('show-sequences')
    def show_sequences():
        """Show per-business invoice sequence counters (diagnostic)."""
        from invoicer.businesses.models import Business
        from invoicer.invoicing.models import InvoiceSequence
        from invoicer.invoicing.sequence import format_invoice_number

        rows = (
            db.session.query(InvoiceSequence, Business)
            .join(Business, Business.id == InvoiceSequence.business_id)
            .order_by(InvoiceSequence.business_id)
            .all()
        )
        if not rows:
            click.echo('No sequence rows found. They are created with the first invoice.')
            return
        click.echo(f'{"Business":<10} {"Name":<24} {"Last Seq":<10} {"Next Invoice"}')
        click.echo('─' * 60)
        for seq, business in rows:
            next_inv = format_invoice_number(seq.last_seq + 1)
            click.echo(f'{seq.business_id:<10} {business.name[:24]:<24} {seq.last_seq:<10} {next_inv}')

    @app.cli.command('seed-admin')
    @click.option('--name',     prompt='Full name',  help='Admin full name')
    @click.option('--username', prompt='Username',   help='Admin username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Admin password')
    def seed_admin(name, username, password):
        """Create the initial admin user."""
        _create_user(name, username, password, admin=True)

    @app.cli.command('create-owner')
    @click.option('--name',     prompt='Full name',  help='Owner full name')
    @click.option('--username', prompt='Username',   help='Owner username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Owner password')
    def create_owner(name, username, password):
        """Create a business owner account."""
        _create_user(name, username, password, admin=False)

    @app.cli.command('add-credits')
    @click.option('--business-id', type=int, required=True)
    @click.option('--quantity',    type=int, default=1, show_default=True)
    def add_credits_command(business_id, quantity):
        """Grant extra invoice credits to a business (manual top-up)."""
        from invoicer.invoicing.credits import add_credits
        from invoicer.invoicing.errors import InvoicingError

        try:
            balance = add_credits(db.session, business_id, quantity)
            db.session.commit()
        except InvoicingError as exc:
            db.session.rollback()
            raise click.ClickException(exc.message)
        click.echo(f'✅  Business {business_id} now has {balance} credit(s).')

    @app.cli.command('set-plan')
    @click.option('--business-id', type=int, required=True)
    @click.option('--plan', required=True,
                  type=click.Choice(['free_user', 'professional', 'enterprise']))
    def set_plan(business_id, plan):
        """Change the subscription plan of a business."""
        from invoicer.businesses.models import Business, PlanEnum

        business = db.session.get(Business, business_id)
        if business is None:
            raise click.ClickException(f'Business {business_id} not found.')
        business.plan = PlanEnum(plan)
        db.session.commit()
        click.echo(f'✅  Business {business_id} is now on {plan}.')

    @app.cli.command('seed-demo')
    def seed_demo():
        """Populate database with a demo owner, businesses and invoices."""
        from invoicer.auth.models import User, RoleEnum
        from invoicer.businesses.models import Business, PlanEnum
        from invoicer.invoicing.admission import request_creation
        from invoicer.invoicing.policy import Denial
        from decimal import Decimal

        click.echo("🌱 Seeding demo data...")
        db.create_all()

        owner = User.query.filter_by(username='demo').first()
        if not owner:
            owner = User(name='Demo Owner', username='demo', role=RoleEnum.owner)
            owner.set_password('demo123')
            db.session.add(owner)
            db.session.commit()
        click.echo("✅ Owner created (demo/demo123).")

        if not Business.query.filter_by(owner_id=owner.id).first():
            db.session.add(Business(name='Demo Studio', owner_id=owner.id,
                                    plan=PlanEnum.professional, extra_invoice_credits=2))
            db.session.commit()

        business = Business.query.filter_by(owner_id=owner.id).first()
        for i in range(1, 4):
            result = request_creation(business.id, {
                'client_name':  f'Client {i}',
                'total_amount': Decimal('100.00') * i,
            }, author_id=owner.id)
            if isinstance(result, Denial):
                click.echo(f"⚠️  Invoice {i} denied: {result.reason.value}")
                break
        click.echo("✅ Demo seed complete.")


def _create_user(name, username, password, admin):
    from invoicer.auth.models import User, RoleEnum

    if User.query.filter_by(username=username).first():
        click.echo(f'⚠️  User "{username}" already exists.')
        return

    user = User(name=name, username=username,
                role=RoleEnum.admin if admin else RoleEnum.owner)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    click.echo(f'✅  User "{username}" created successfully.')
