"""
Development server entry point
Run the Flask application with: python run.py
"""
from dentalsync import create_app
import os

# Create Flask app instance
app = create_app()

if __name__ == '__main__':
    # Get host and port from environment or use defaults
    host = os.getenv('FLASK_HOST', '0.0.0.0')
    port = int(os.getenv('FLASK_PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    print(f"""
    ========================================
    Starting Dental Chart Sync Server
    ========================================
    Host: {host}
    Port: {port}
    Debug: {debug}
    Environment: {os.getenv('FLASK_ENV', 'development')}
    Reconcile async: {app.config['RECONCILE_ASYNC']}
    Change relay: {app.config.get('CHANGE_RELAY_URL') or 'in-process only'}
    ========================================
    """)

    # Threaded so change streams do not block other requests
    app.run(
        host=host,
        port=port,
        debug=debug,
        threaded=True
    )
