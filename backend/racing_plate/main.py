import time

from flask import Blueprint, current_app, jsonify, send_from_directory

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Racing Plate game server!'})


@main.route('/api/health')
def health():
    return jsonify({'status': 'OK', 'time': time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime())})


@main.route('/media/<path:filename>')
def media_file(filename):
    # send_from_directory refuses paths that escape MEDIA_ROOT
    return send_from_directory(current_app.config['MEDIA_ROOT'], filename)
