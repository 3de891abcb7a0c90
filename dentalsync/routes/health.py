"""
Health endpoints for load balancers and the worker fleet
"""
from datetime import datetime
from flask import Blueprint, jsonify, current_app
from dentalsync.extensions import db
from dentalsync.services.publisher import change_publisher
from dentalsync.services.status_rules import get_rule_table
import logging

logger = logging.getLogger(__name__)

health_bp = Blueprint('health', __name__, url_prefix='/health')


def _check_database():
    try:
        db.session.execute(db.text('SELECT 1'))
        return 'connected'
    except Exception as e:
        db.session.rollback()
        logger.warning(f"Readiness: database unavailable: {e}")
        return f'error: {str(e)}'


def _check_broker():
    """Celery broker reachability; only matters when events are queued."""
    if not current_app.config.get('RECONCILE_ASYNC'):
        return 'not used'
    broker_url = current_app.config.get('CELERY_BROKER_URL', '')
    if not broker_url.startswith('redis'):
        return 'not checked'
    try:
        import redis
        redis.Redis.from_url(broker_url, socket_connect_timeout=2).ping()
        return 'connected'
    except Exception as e:
        logger.warning(f"Readiness: broker unavailable: {e}")
        return f'error: {str(e)}'


@health_bp.route('', methods=['GET'])
@health_bp.route('/ping', methods=['GET'])
def health_check():
    """Process is up; no external dependencies touched"""
    return jsonify({
        'status': 'healthy',
        'service': 'dentalsync',
        'rules_version': get_rule_table().version,
        'timestamp': datetime.utcnow().isoformat()
    }), 200


@health_bp.route('/ready', methods=['GET'])
def readiness_check():
    """Database and, in queued mode, the reconciliation broker"""
    database = _check_database()
    broker = _check_broker()
    ready = database == 'connected' and not broker.startswith('error')

    return jsonify({
        'status': 'ready' if ready else 'not_ready',
        'database': database,
        'broker': broker,
        'change_relay': change_publisher.relay is not None,
        'timestamp': datetime.utcnow().isoformat()
    }), 200 if ready else 503


@health_bp.route('/live', methods=['GET'])
def liveness_check():
    return jsonify({'status': 'alive'}), 200
