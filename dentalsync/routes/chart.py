"""
Patient Chart API Routes
Tooth chart, diagnosis/treatment overviews and diagnosis recording
"""
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from dentalsync.extensions import db
from dentalsync.errors import NotFound
from dentalsync.models import Patient
from dentalsync.services import overview
from dentalsync.services.clinical_actions import save_tooth_diagnosis
from dentalsync.utils.decorators import require_role, current_user_id
import logging

logger = logging.getLogger(__name__)

chart_bp = Blueprint('chart', __name__, url_prefix='/api/patients')

WRITE_ROLES = ('dentist', 'assistant')


def _patient_missing(patient_id):
    if db.session.get(Patient, patient_id) is None:
        return jsonify({
            'success': False,
            'error': 'Patient not found'
        }), 404
    return None


def _read_view(patient_id, loader, what):
    missing = _patient_missing(patient_id)
    if missing:
        return missing
    try:
        return jsonify({
            'success': True,
            'data': loader(patient_id)
        }), 200
    except Exception as e:
        logger.error(f"Error loading {what} for patient {patient_id}: {e}", exc_info=True)
        db.session.rollback()
        error_msg = f'Failed to load {what}' if not current_app.debug else str(e)
        return jsonify({
            'success': False,
            'error': error_msg
        }), 500


@chart_bp.route('/<patient_id>/tooth-chart', methods=['GET'])
@jwt_required()
def get_tooth_chart(patient_id):
    """Latest diagnosis per tooth, keyed by tooth number"""
    return _read_view(patient_id, overview.get_latest_tooth_chart, 'tooth chart')


@chart_bp.route('/<patient_id>/diagnosis-overview', methods=['GET'])
@jwt_required()
def get_diagnosis_overview(patient_id):
    return _read_view(patient_id, overview.get_diagnosis_overview, 'diagnosis overview')


@chart_bp.route('/<patient_id>/treatment-overview', methods=['GET'])
@jwt_required()
def get_treatment_overview(patient_id):
    """Treatments plus treatment-like appointments that have no treatment record"""
    return _read_view(patient_id, overview.get_treatment_overview, 'treatment overview')


@chart_bp.route('/<patient_id>/diagnosis-stats', methods=['GET'])
@jwt_required()
def get_diagnosis_stats(patient_id):
    return _read_view(patient_id, overview.get_diagnosis_stats, 'diagnosis stats')


@chart_bp.route('/<patient_id>/treatment-stats', methods=['GET'])
@jwt_required()
def get_treatment_stats(patient_id):
    return _read_view(patient_id, overview.get_treatment_stats, 'treatment stats')


@chart_bp.route('/<patient_id>/tooth-diagnoses', methods=['POST'])
@jwt_required()
@require_role(*WRITE_ROLES)
def create_or_update_tooth_diagnosis(patient_id):
    """
    Record a tooth diagnosis (upsert per patient, consultation and tooth).

    Request body:
    {
        "tooth_number": "16",
        "consultation_id": 3,                  (optional)
        "primary_diagnosis": "Deep caries",    (optional)
        "status": "caries",                    (optional, derived from the diagnosis when omitted)
        "recommended_treatment": "Filling",    (optional)
        "treatment_priority": "high",          (optional)
        "symptoms": ["sensitivity"],           (optional)
        "follow_up_required": false            (optional)
    }
    The colour is always derived from the status.
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({
            'success': False,
            'error': 'Request body must be JSON'
        }), 400

    try:
        result = save_tooth_diagnosis(patient_id, data, user_id=current_user_id())
    except NotFound as e:
        return jsonify({
            'success': False,
            'error': str(e)
        }), 404
    except ValueError as e:
        db.session.rollback()
        return jsonify({
            'success': False,
            'error': str(e)
        }), 400

    return jsonify({
        'success': True,
        'data': result['diagnosis'],
        'message': 'Tooth diagnosis created' if result['created'] else 'Tooth diagnosis updated'
    }), 201 if result['created'] else 200
