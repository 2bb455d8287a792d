import os
import logging

from flask import Flask, flash, jsonify, redirect, request, url_for
from flask_cors import CORS
from werkzeug.middleware.proxy_fix import ProxyFix

from config import Config
from errors import BackOfficeError
from extensions import db, login_manager, mail, migrate
from timeutils import to_local_time


def create_app(config_object=None):
    app = Flask(__name__, template_folder='templates', static_folder='static')
    app.config.from_object(config_object or Config)

    logging.basicConfig(level=getattr(logging, str(app.config.get('LOG_LEVEL', 'DEBUG')).upper(), logging.DEBUG))

    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)  # needed for url_for to generate with https
    CORS(app, resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}}, supports_credentials=True)

    # Initialize the extensions
    db.init_app(app)
    login_manager.init_app(app)
    login_manager.login_view = 'auth.login'
    login_manager.login_message_category = 'warning'
    mail.init_app(app)
    migrate.init_app(app, db)

    from routes import auth_bp
    from front_desk_routes import front_desk_bp
    from housekeeping_routes import housekeeping_bp
    from payment_routes import payments_bp
    from refund_routes import refund_bp
    from tentative_routes import tentative_bp
    from api_routes import api_bp
    from commands import register_commands

    app.register_blueprint(auth_bp)
    app.register_blueprint(front_desk_bp)
    app.register_blueprint(housekeeping_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(refund_bp)
    app.register_blueprint(tentative_bp)
    app.register_blueprint(api_bp)
    register_commands(app)

    app.add_template_filter(to_local_time, 'to_local_time')

    @app.template_filter('money')
    def money(value):
        return f'{float(value or 0):,.2f}'

    @app.errorhandler(BackOfficeError)
    def handle_backoffice_error(error):
        db.session.rollback()
        logging.getLogger(__name__).warning("[ERROR] %s %s: %s", request.method, request.path, error.message)
        if request.path.startswith('/api/') or request.is_json:
            return jsonify(error.to_dict()), error.status_code
        flash(error.message, 'danger')
        return redirect(request.referrer or url_for('front_desk.dashboard'))

    with app.app_context():
        import models  # noqa: F401
        db.create_all()
        if app.config.get('SEED_DATA'):
            from init_data import create_initial_data
            create_initial_data()

    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, debug=False)
