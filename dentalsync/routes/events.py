"""
Clinical Event API Routes
Inbound clinical events and the per-patient chart change stream (SSE)
"""
import json
from flask import Blueprint, Response, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from dentalsync.extensions import db
from dentalsync.models import Patient
from dentalsync.services.clinical_actions import dispatch_event
from dentalsync.services.events import ClinicalEvent
from dentalsync.services.overview import get_latest_tooth_chart
from dentalsync.services.publisher import change_publisher
from dentalsync.utils.decorators import require_role
import logging

logger = logging.getLogger(__name__)

events_bp = Blueprint('events', __name__, url_prefix='/api')


@events_bp.route('/clinical-events', methods=['POST'])
@jwt_required()
@require_role('dentist', 'assistant')
def receive_clinical_event():
    """
    Accept a completed treatment or appointment and reconcile the chart.

    Request body:
    {
        "patientId": "P001",
        "eventKind": "treatment_completed" | "appointment_completed",
        "treatmentType" | "appointmentType": "Root canal treatment",
        "toothNumber": "11",          (optional)
        "toothDiagnosisId": 7,        (optional)
        "consultationId": 3,          (optional)
        "appointmentId": 12           (optional)
    }

    Returns 200 with the reconciliation outcome when processed inline,
    202 when queued for a worker.
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({
            'success': False,
            'error': 'Request body must be JSON'
        }), 400

    try:
        event = ClinicalEvent.from_dict(data)
    except ValueError as e:
        return jsonify({
            'success': False,
            'error': f'Invalid clinical event: {e}'
        }), 400

    result = dispatch_event(event)
    if result['mode'] == 'failed':
        return jsonify({
            'success': False,
            'error': 'Reconciliation could not be started',
            'data': result
        }), 503

    return jsonify({
        'success': True,
        'data': result
    }), 202 if result['mode'] == 'queued' else 200


def _sse(event, data, event_id=None):
    lines = []
    if event_id:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    lines.append(f"data: {json.dumps(data, default=str)}")
    return "\n".join(lines) + "\n\n"


@events_bp.route('/patients/<patient_id>/changes', methods=['GET'])
@jwt_required()
def stream_changes(patient_id):
    """
    Server-sent events for a patient's chart.

    The stream opens with a `snapshot` event carrying the current chart, so a
    reconnecting client never relies on missed notifications. It then emits
    `change` events; `resync` means notifications were dropped and the client
    must re-fetch the chart. Idle periods carry comment heartbeats.
    """
    if db.session.get(Patient, patient_id) is None:
        return jsonify({
            'success': False,
            'error': 'Patient not found'
        }), 404

    heartbeat = current_app.config.get('SSE_HEARTBEAT_SECONDS', 15)

    # Subscribe before reading the snapshot so nothing committed in between is lost
    subscription = change_publisher.subscribe(patient_id)
    try:
        chart = get_latest_tooth_chart(patient_id)
    except Exception:
        change_publisher.unsubscribe(subscription)
        raise

    def generate():
        try:
            yield _sse('snapshot', {'patientId': patient_id, 'chart': chart})
            while True:
                if subscription.needs_resync:
                    subscription.acknowledge_resync()
                    logger.info("Subscriber %s for patient %s told to resync", subscription.id, patient_id)
                    yield _sse('resync', {'patientId': patient_id})
                    continue

                notification = subscription.get(timeout=heartbeat)
                if notification is None:
                    yield ": heartbeat\n\n"
                    continue

                event_id = notification.sequence.isoformat() if notification.sequence else None
                yield _sse('change', notification.to_dict(), event_id=event_id)
        finally:
            change_publisher.unsubscribe(subscription)

    return Response(generate(), mimetype='text/event-stream', headers={
        'Cache-Control': 'no-cache',
        'X-Accel-Buffering': 'no',
    })
