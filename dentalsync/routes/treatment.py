"""
Treatment API Routes
"""
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from dentalsync.extensions import db
from dentalsync.errors import NotFound
from dentalsync.services.clinical_actions import link_appointment_to_treatment, update_treatment_status
from dentalsync.utils.decorators import require_role, current_user_id
import logging

logger = logging.getLogger(__name__)

treatment_bp = Blueprint('treatment', __name__, url_prefix='/api/treatments')


@treatment_bp.route('/<int:treatment_id>/status', methods=['POST'])
@jwt_required()
@require_role('dentist', 'assistant')
def change_treatment_status(treatment_id):
    """
    Move a treatment to a new status.

    Request body: {"status": "pending" | "in_progress" | "completed" | "cancelled"}
    Completing a treatment reconciles the affected tooth.
    """
    data = request.get_json(silent=True) or {}
    status = data.get('status')
    if not status:
        return jsonify({
            'success': False,
            'error': 'status is required'
        }), 400

    try:
        result = update_treatment_status(treatment_id, status, user_id=current_user_id())
    except NotFound as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except ValueError as e:
        db.session.rollback()
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify({
        'success': True,
        'data': result
    }), 200


@treatment_bp.route('/link-appointment', methods=['POST'])
@jwt_required()
@require_role('dentist', 'assistant')
def link_appointment():
    """
    Create a treatment under an appointment.

    Request body:
    {
        "appointment_id": 12,
        "treatment_type": "Composite filling",
        "tooth_number": "16",          (optional)
        "tooth_diagnosis_id": 4,       (optional)
        "total_visits": 1,             (optional)
        "description": "..."           (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    appointment_id = data.get('appointment_id') or data.get('appointmentId')
    treatment_type = data.get('treatment_type') or data.get('treatmentType')
    if not appointment_id or not treatment_type:
        return jsonify({
            'success': False,
            'error': 'appointment_id and treatment_type are required'
        }), 400

    diagnosis_id = data.get('tooth_diagnosis_id') or data.get('toothDiagnosisId')

    try:
        result = link_appointment_to_treatment(
            appointment_id=int(appointment_id),
            treatment_type=treatment_type,
            tooth_number=data.get('tooth_number') or data.get('toothNumber'),
            tooth_diagnosis_id=int(diagnosis_id) if diagnosis_id else None,
            total_visits=data.get('total_visits') or data.get('totalVisits') or 1,
            description=data.get('description'),
            user_id=current_user_id(),
        )
    except NotFound as e:
        return jsonify({'success': False, 'error': str(e)}), 404
    except (TypeError, ValueError) as e:
        db.session.rollback()
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify({
        'success': True,
        'data': result,
        'message': 'Treatment linked to appointment'
    }), 201
