from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from dentalsync.extensions import db
from dentalsync.errors import NotFound
from dentalsync.services.clinical_actions import update_appointment_status
from dentalsync.utils.decorators import require_role, current_user_id

appointment_bp = Blueprint('appointment', __name__, url_prefix='/api/appointments')


@appointment_bp.route('/<int:appointment_id>/status', methods=['POST'])
@jwt_required()
@require_role('dentist', 'assistant')
def change_appointment_status(appointment_id):
    """
    Update appointment status and cascade to its treatments.

    Request body: {"status": "confirmed" | "in_progress" | "completed" | "cancelled" | "no_show"}
    """
    data = request.get_json(silent=True) or {}
    status = data.get('status')
    if not status:
        return jsonify({
            'success': False,
            'error': 'status is required'
        }), 400

    try:
        result = update_appointment_status(appointment_id, status, user_id=current_user_id())
    except NotFound as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except ValueError as e:
        db.session.rollback()
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify({
        'success': True,
        'data': result,
        'message': f"Appointment status updated to {result['appointment']['status']}"
    }), 200
