import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS

from config import Config

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
)

app = Flask(__name__)
app.config.from_object(Config)

# Enable CORS for API endpoints
CORS(app, resources={r"/api/*": {"origins": "*"}})

# Ensure upload directory exists
os.makedirs(Config.UPLOAD_FOLDER, exist_ok=True)

# Register blueprints
from api.discovery import discovery_bp
from api.workflow import workflow_bp
from api.questionnaire import questionnaire_bp
from api.strategy import strategy_bp
from api.generate import generate_bp

app.register_blueprint(discovery_bp)
app.register_blueprint(workflow_bp)
app.register_blueprint(questionnaire_bp)
app.register_blueprint(strategy_bp)
app.register_blueprint(generate_bp)


@app.route('/api')
def api_info():
    """API information endpoint."""
    return jsonify({
        'message': 'Discovery Response API',
        'version': '1.0.0',
        'endpoints': {
            '/api/discovery/<case_id>/upload': 'POST - Upload a discovery document for a category',
            '/api/discovery/<case_id>/documents': 'GET - List uploaded discovery documents',
            '/api/workflow/<case_id>': 'GET - Open the case workflow',
            '/api/workflow/<case_id>/next': 'POST - Advance to the next stage',
            '/api/questionnaire/<case_id>/questions': 'GET - Client-facing questions',
            '/api/questionnaire/<case_id>/send': 'POST - Send the questionnaire to the client',
            '/api/strategy/<case_id>': 'GET - Narratives and objection options',
            '/api/generate/<case_id>': 'GET - Assembled response text',
            '/api/generate/<case_id>/docx': 'GET - Download the response as Word',
            '/health': 'GET - Health check'
        }
    })


@app.route('/health')
def health():
    """Health check endpoint for deployment monitoring."""
    return jsonify({'status': 'healthy'}), 200


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=Config.DEV_DEBUG)
