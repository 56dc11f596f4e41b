from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_pymongo import PyMongo
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from datetime import datetime, date, timedelta
import atexit
import logging
import os
import jwt
from bson import ObjectId
from functools import wraps

from canemap_backend.blueprints.field_reports import init_field_reports_blueprint
from canemap_backend.blueprints.records import init_records_blueprint
from canemap_backend.config.environment import MONGO_URI, SECRET_KEY, USERS_COLLECTION
from canemap_backend.models import DatabaseInitializer
from canemap_backend.services.artifact_store import GCSArtifactStore
from canemap_backend.services.document_store import MongoDocumentStore
from canemap_backend.services.firebase_service import FirebaseService
from canemap_backend.services.notification_sink import NotificationSink
from canemap_backend.services.records_engine import RecordsEngine
from canemap_backend.utils.errors import RecordsError

logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
logger = logging.getLogger(__name__)


# Helper function to convert ObjectId and datetime values for JSON
def serialize_doc(doc):
    if not doc:
        return doc

    if isinstance(doc, dict):
        doc = doc.copy()

    if '_id' in doc:
        doc['id'] = str(doc['_id'])
        del doc['_id']

    for key, value in list(doc.items()):
        doc[key] = _serialize_value(value)
    return doc


def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item) for item in value]
    return value


def make_token_required(store, secret_key):
    """JWT decorator resolving the bearer token to the user document"""

    def token_required(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            token = request.headers.get('Authorization')
            if not token:
                return jsonify({'success': False, 'message': 'Token is missing'}), 401

            try:
                if token.startswith('Bearer '):
                    token = token[7:]
                data = jwt.decode(token, secret_key, algorithms=['HS256'])

                if 'user_id' not in data:
                    return jsonify({'success': False, 'message': 'Invalid token format'}), 401

                try:
                    current_user = store.get_one(USERS_COLLECTION, data['user_id'])
                    if not current_user:
                        return jsonify({'success': False, 'message': 'User not found'}), 401
                except RecordsError as db_error:
                    logger.error(f"Database error in token validation: {db_error.message}")
                    return jsonify({'success': False, 'message': 'Database connection error'}), 500

            except jwt.ExpiredSignatureError:
                return jsonify({'success': False, 'message': 'Token has expired'}), 401
            except jwt.InvalidTokenError:
                return jsonify({'success': False, 'message': 'Invalid token'}), 401

            return f(current_user, *args, **kwargs)
        return decorated

    return token_required


def create_token(user_id, secret_key, expires_in=timedelta(hours=24)):
    return jwt.encode(
        {'user_id': str(user_id), 'exp': datetime.utcnow() + expires_in},
        secret_key,
        algorithm='HS256',
    )


def initialize_database(mongo_db):
    print("\n" + "=" * 60)
    print("Initializing CaneMap Records Database...")
    print("=" * 60)
    db_results = DatabaseInitializer(mongo_db).initialize_collections()

    if db_results['created']:
        print(f"✅ Created {len(db_results['created'])} new collections")
    if db_results['existing']:
        print(f"✅ Verified {len(db_results['existing'])} existing collections")
    if db_results['errors']:
        print(f"⚠️  {len(db_results['errors'])} errors during initialization")
    print("=" * 60 + "\n")
    return db_results


def create_app(config=None, store=None, engine=None):
    """
    Build the Flask app.

    Args:
        config: optional dict applied over the environment defaults
        store: document store to use instead of MongoDB
        engine: fully built RecordsEngine (tests inject one with fakes)
    """
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = SECRET_KEY
    app.config['MONGO_URI'] = MONGO_URI
    app.config['JWT_EXPIRATION_DELTA'] = timedelta(hours=24)
    app.config['INIT_DB'] = os.environ.get('INIT_DB', 'true').lower() == 'true'
    app.config['RATELIMIT_ENABLED'] = os.environ.get('RATELIMIT_ENABLED', 'true').lower() == 'true'
    if config:
        app.config.update(config)

    # Initialize extensions
    CORS(app, origins=['*'])

    limiter = Limiter(
        app=app,
        key_func=get_remote_address,
        default_limits=["50000 per day", "5000 per hour"],
        storage_uri="memory://",
    )
    app.limiter = limiter

    if engine is not None:
        store = engine.store
    if store is None:
        mongo = PyMongo(app)
        store = MongoDocumentStore(mongo.db)
        if app.config['INIT_DB']:
            with app.app_context():
                initialize_database(mongo.db)

    if engine is None:
        notifier = NotificationSink(store, FirebaseService())
        engine = RecordsEngine(store, GCSArtifactStore(), notifier)

    app.extensions['records_engine'] = engine
    atexit.register(engine.close_all)

    token_required = make_token_required(store, app.config['SECRET_KEY'])

    # Initialize and register blueprints
    records_blueprint = init_records_blueprint(engine, token_required, serialize_doc, limiter)
    field_reports_blueprint = init_field_reports_blueprint(
        store, engine.notifier, token_required, serialize_doc, reviewer_role=engine.reviewer_role
    )

    app.register_blueprint(records_blueprint)
    print("✓ Records blueprint registered at /api/records")
    app.register_blueprint(field_reports_blueprint)
    print("✓ Field reports blueprint registered at /api/field-reports")

    # Health check endpoint
    @app.route('/health', methods=['GET'])
    def health_check():
        return jsonify({
            'success': True,
            'message': 'CaneMap Records Backend is running',
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'version': '1.0.0'
        })

    # Error handlers
    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'success': False,
            'message': 'Endpoint not found',
            'error': 'The requested resource was not found on this server.'
        }), 404

    @app.errorhandler(429)
    def rate_limited(error):
        return jsonify({
            'success': False,
            'message': 'Too many requests',
            'error': str(error.description)
        }), 429

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({
            'success': False,
            'message': 'Internal server error',
            'error': 'An unexpected error occurred. Please try again later.'
        }), 500

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            'success': False,
            'message': 'Bad request',
            'error': 'The request could not be understood by the server.'
        }), 400

    return app


if __name__ == '__main__':
    create_app().run(debug=True, host='0.0.0.0', port=int(os.environ.get('PORT', '5000')))
