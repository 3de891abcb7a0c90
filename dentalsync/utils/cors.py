"""
CORS Configuration
Chart views are served to browser clients on other origins; the change
stream needs Cache-Control and Last-Event-ID passed through.
"""
import os

CORS_CONFIG = {
    "origins": os.getenv('CORS_ORIGINS', '*').split(','),
    "methods": ["GET", "POST", "OPTIONS"],
    "allow_headers": [
        "Content-Type",
        "Authorization",
        "Cache-Control",
        "Last-Event-ID",
    ],
    "expose_headers": [
        "Content-Type",
    ],
    "supports_credentials": True,
    "max_age": 86400,  # 24 hours
}


def init_cors(app):
    """
    Initialize CORS for the Flask application
    """
    from flask_cors import CORS

    CORS(app,
         resources={r"/api/*": {"origins": CORS_CONFIG["origins"]}},
         methods=CORS_CONFIG["methods"],
         allow_headers=CORS_CONFIG["allow_headers"],
         expose_headers=CORS_CONFIG["expose_headers"],
         supports_credentials=CORS_CONFIG["supports_credentials"],
         max_age=CORS_CONFIG["max_age"])

    app.logger.info("CORS enabled for origins: %s", ", ".join(CORS_CONFIG["origins"]))
