import logging
from collections.abc import Mapping
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from flask import Blueprint, Flask, current_app, jsonify, request
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import Config
from errors import (
    DatabaseError,
    DuplicateKeyError,
    ForeignKeyViolationError,
    ResourceNotFoundError,
    ValidationError,
)
from manager import ClaimsManager
from models import db
from store import EntityStore

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)


class ClaimsJSONProvider(DefaultJSONProvider):
    """Amounts go out as plain numbers, dates as ISO-8601."""

    @staticmethod
    def default(o):
        if isinstance(o, Decimal):
            # NUMERIC(12, 2) values fit a double exactly at two decimals
            return float(o)
        if isinstance(o, (date, datetime)):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        return DefaultJSONProvider.default(o)


def create_app(config_object=None):
    app = Flask(__name__)
    app.json = ClaimsJSONProvider(app)
    if config_object is None or isinstance(config_object, Mapping):
        app.config.from_object(Config)
        app.config.update(config_object or {})
    else:
        app.config.from_object(config_object)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    CORS(app, origins=app.config.get('CORS_ORIGINS', '*'))
    db.init_app(app)
    # one store handle for the whole process; db.session scopes it per request
    app.extensions['claims_manager'] = ClaimsManager(EntityStore(db.session))

    register_error_handlers(app)
    app.register_blueprint(api)
    return app


def register_error_handlers(app):
    @app.errorhandler(Exception)
    def handle_error(error):
        if isinstance(error, HTTPException):
            return error
        if isinstance(error, ValidationError):
            app.logger.debug(f"Rejected input: {error}")
            return jsonify({"error": "Validation error", "message": str(error), "fields": error.errors}), 400
        elif isinstance(error, ResourceNotFoundError):
            return jsonify({"error": "Resource not found", "message": str(error), "field": error.field}), 404
        elif isinstance(error, DuplicateKeyError):
            return jsonify({"error": "Duplicate key", "message": str(error), "field": error.field}), 409
        elif isinstance(error, ForeignKeyViolationError):
            return jsonify({"error": "Foreign key violation", "message": str(error), "field": error.field}), 409
        elif isinstance(error, DatabaseError):
            return jsonify({"error": "Database error", "message": str(error)}), 500
        else:
            app.logger.exception("Unhandled error")
            return jsonify({"error": "Internal server error", "message": str(error)}), 500


def claims_manager() -> ClaimsManager:
    return current_app.extensions['claims_manager']


def _json_body(required=True):
    data = request.get_json(silent=True)
    if data is None and not required:
        return {}
    if not isinstance(data, dict) or (required and not data):
        raise ValidationError("No input data provided")
    return data


@api.route('/healthcheck', methods=['GET'])
def healthcheck():
    return jsonify({'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat()}), 200


@api.route('/policyholders', methods=['POST'])
def create_policy_holder():
    ph = claims_manager().create_policy_holder(_json_body())
    return jsonify(ph.to_dict()), 201


@api.route('/policyholders', methods=['GET'])
def get_policy_holders():
    return jsonify([ph.to_dict() for ph in claims_manager().get_policy_holders()]), 200


@api.route('/policyholders/<int:policy_holder_id>', methods=['GET'])
def get_policy_holder(policy_holder_id):
    ph = claims_manager().get_policy_holder(policy_holder_id)
    return jsonify(ph.to_dict() if ph else None), 200


@api.route('/policyholders/<int:policy_holder_id>', methods=['PUT'])
def update_policy_holder(policy_holder_id):
    data = dict(_json_body(required=False), id=policy_holder_id)
    ph = claims_manager().update_policy_holder(data)
    return jsonify(ph.to_dict() if ph else None), 200


@api.route('/policyholders/<int:policy_holder_id>/claims', methods=['GET'])
def get_claims_by_policy_holder(policy_holder_id):
    claims = claims_manager().get_claims_by_policy_holder(policy_holder_id)
    return jsonify([claim.to_dict() for claim in claims]), 200


@api.route('/claims', methods=['POST'])
def create_insurance_claim():
    claim = claims_manager().create_insurance_claim(_json_body())
    return jsonify(claim.to_dict()), 201


@api.route('/claims', methods=['GET'])
def get_insurance_claims():
    claims = claims_manager().get_insurance_claims()
    return jsonify([claim.to_dict(include_policy_holder=True) for claim in claims]), 200


@api.route('/claims/<int:claim_id>', methods=['GET'])
def get_insurance_claim(claim_id):
    claim = claims_manager().get_insurance_claim(claim_id)
    return jsonify(claim.to_dict(include_policy_holder=True) if claim else None), 200


@api.route('/claims/<int:claim_id>', methods=['PUT'])
def update_insurance_claim(claim_id):
    data = dict(_json_body(required=False), id=claim_id)
    claim = claims_manager().update_insurance_claim(data)
    return jsonify(claim.to_dict() if claim else None), 200


if __name__ == '__main__':
    app = create_app()
    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    with app.app_context():
        db.create_all()
    logger.info(f"Claims API listening on port {app.config['SERVER_PORT']}")
    app.run(host='0.0.0.0', port=app.config['SERVER_PORT'], threaded=True)
