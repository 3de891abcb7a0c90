from .health import health_bp
from .chart import chart_bp
from .treatment import treatment_bp
from .appointment import appointment_bp
from .events import events_bp

__all__ = ['health_bp', 'chart_bp', 'treatment_bp', 'appointment_bp', 'events_bp']
