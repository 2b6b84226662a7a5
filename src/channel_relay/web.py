"""Flask web API for Channel Relay."""

import logging
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO, emit

from .config import config
from .errors import (
    AcquisitionError,
    AlreadyRunning,
    NotFound,
    NotReady,
    ProcessFailure,
    RelayError,
    ValidationError,
)

# Initialize Flask app
app = Flask(__name__)
app.config['SECRET_KEY'] = config.SECRET_KEY
CORS(app)
socketio = SocketIO(app, cors_allowed_origins="*", async_mode="threading")

logger = logging.getLogger(__name__)

# Global reference to the channel service (set by app.py)
_service = None

ERROR_STATUS = {
    ValidationError: 400,
    NotFound: 404,
    AlreadyRunning: 409,
    NotReady: 409,
    AcquisitionError: 500,
    ProcessFailure: 500,
}

def set_service(service):
    """Set the service the routes act on and subscribe to its notifications."""
    global _service
    _service = service
    if service is not None:
        service.supervisor.add_listener(notify_relay_state)
        service.add_listener(notify_download_status)

def get_service():
    if _service is None:
        raise RuntimeError("Channel service is not configured")
    return _service

def notify_relay_state(channel_id: int, state: str):
    """Push a relay transition to connected clients."""
    socketio.emit('channel_update', {'id': channel_id, 'state': state})

def notify_download_status(channel_id: int, download_status: str):
    """Push a finished import to connected clients."""
    socketio.emit('channel_update', {'id': channel_id, 'download_status': download_status})

@app.errorhandler(RelayError)
def handle_relay_error(error):
    status = ERROR_STATUS.get(type(error), 500)
    logger.warning(f"{request.method} {request.path} -> {status}: {error}")
    return jsonify({'error': str(error)}), status

def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data

@app.route('/')
def index():
    """Health check."""
    return 'Channel Relay API is running'

# Channels
@app.route('/api/channels')
def list_channels():
    """Get all channels, newest first."""
    return jsonify([c.to_dict() for c in get_service().list_channels()])

@app.route('/api/channels', methods=['POST'])
def create_channel():
    """Create a channel."""
    data = _json_body()
    channel = get_service().create_channel(
        name=data.get('name'),
        rtmp_url=data.get('rtmp_url'),
        rtmp_key=data.get('rtmp_key'),
        looping_enabled=data.get('looping_enabled', True),
        schedule_start_time=data.get('schedule_start_time'),
        schedule_stop_time=data.get('schedule_stop_time'),
    )
    return jsonify(channel.to_dict()), 201

@app.route('/api/channels/<int:channel_id>')
def get_channel(channel_id):
    return jsonify(get_service().get_channel(channel_id).to_dict())

@app.route('/api/channels/<int:channel_id>', methods=['PUT'])
def update_channel(channel_id):
    """Update a channel; only supplied fields change."""
    channel = get_service().update_channel(channel_id, _json_body())
    return jsonify(channel.to_dict())

@app.route('/api/channels/<int:channel_id>', methods=['DELETE'])
def delete_channel(channel_id):
    """Delete a channel, stopping its relay first."""
    get_service().delete_channel(channel_id)
    return jsonify({'message': 'Channel deleted'})

# Media
@app.route('/api/channels/<int:channel_id>/import-video', methods=['POST'])
def import_video(channel_id):
    """Start downloading a video for a channel."""
    filename = get_service().import_video(channel_id, _json_body().get('url'))
    return jsonify({'message': 'Download started', 'filename': filename})

# Stream control
@app.route('/api/channels/<int:channel_id>/start', methods=['POST'])
def start_stream(channel_id):
    get_service().start_stream(channel_id)
    return jsonify({'message': 'Stream started'})

@app.route('/api/channels/<int:channel_id>/stop', methods=['POST'])
def stop_stream(channel_id):
    get_service().stop_stream(channel_id)
    return jsonify({'message': 'Stream stopped'})

@app.route('/api/channels/<int:channel_id>/logs')
def get_logs(channel_id):
    """Recent relay log lines for a channel."""
    return jsonify(get_service().get_logs(channel_id))

# WebSocket events
@socketio.on('connect')
def handle_connect():
    """Handle client connection."""
    logger.info("Client connected")
    emit('connected', {'message': 'Connected to Channel Relay'})

@socketio.on('disconnect')
def handle_disconnect():
    logger.info("Client disconnected")
