import logging

from flask import Flask, g, session

from fleetdesk.config import Config
from fleetdesk.extensions import init_mongo, get_db
from fleetdesk.utils.auth import SESSION_EMPLOYEE_ID, is_session_valid
from fleetdesk.utils.forms import oid
from fleetdesk.utils.layout import register_template_helpers


def _configure_logging(app) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    app.logger.setLevel(level)


def create_app(config_object=None, mongo_client=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    _configure_logging(app)
    init_mongo(app, client=mongo_client)
    register_template_helpers(app)

    # every request: if there is a session, load g.user (the employee)
    @app.before_request
    def load_current_employee():
        g.user = None

        employee_id = session.get(SESSION_EMPLOYEE_ID)
        if not employee_id:
            return

        if not is_session_valid():
            session.clear()
            return

        uid = oid(employee_id)
        if not uid:
            # broken session
            session.clear()
            return

        employee = get_db().employees.find_one({"_id": uid})
        if not employee:
            session.clear()
            return

        # inactive employees keep g.user so the gate can send them to /unauthorized
        g.user = employee

    # Blueprints
    from fleetdesk.blueprints.main import main_bp
    from fleetdesk.blueprints.auth import auth_bp
    from fleetdesk.blueprints.fleet import fleet_bp
    from fleetdesk.blueprints.inspections import inspections_bp
    from fleetdesk.blueprints.maintenance import maintenance_bp
    from fleetdesk.blueprints.parts import parts_bp
    from fleetdesk.blueprints.suppliers import suppliers_bp
    from fleetdesk.blueprints.purchase_orders import purchase_orders_bp
    from fleetdesk.blueprints.statistics import statistics_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(fleet_bp)
    app.register_blueprint(inspections_bp)
    app.register_blueprint(maintenance_bp)
    app.register_blueprint(parts_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(statistics_bp)

    return app
