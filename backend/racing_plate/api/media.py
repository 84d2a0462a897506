from flask import Blueprint, current_app, jsonify, request

from racing_plate.services.auth.tokens import token_optional
from racing_plate.services.media import uploads

media = Blueprint('media', __name__)


@media.route('/upload', methods=['POST'])
@token_optional
def upload(auth):
    files = request.files.getlist('files') or request.files.getlist('file')
    stored = uploads.save_uploads(
        files,
        current_app.config['MEDIA_ROOT'],
        user_id=auth.user_id if auth else None,
        tier=auth.subscription if auth else None,
        max_files=int(current_app.config.get('MAX_UPLOAD_FILES', 10)),
    )
    if len(stored) == 1 and 'files' not in request.files:
        return jsonify({'message': 'File uploaded successfully', 'file': stored[0].to_dict()}), 201
    return jsonify({'message': 'Files uploaded successfully', 'files': [s.to_dict() for s in stored]}), 201


@media.route('/list', methods=['GET'])
@token_optional
def list_media(auth):
    user_id = auth.user_id if auth else None
    names = uploads.list_files(current_app.config['MEDIA_ROOT'], user_id)
    return jsonify({'files': [{'filename': n, 'url': uploads.public_url(user_id, n)} for n in names]})
