"""
流管理 API

启动、查看、终止和删除流，并提供 HLS 输出文件。
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import Response, jsonify, request, send_file

from ..errors import (
    LocatorNotFound,
    ResolutionFailure,
    StreamCapacityError,
    StreamingError,
    TranscodeSpawnError,
)
from ..fileserver import FileServerError
from .locator import StreamState

logger = logging.getLogger(__name__)


def _error(message, status):
    return jsonify({"error": message}), status


def register_routes(app, streaming_service, find_source):
    """注册流 API 路由

    Args:
        app: Flask 应用
        streaming_service: 视频流服务
        find_source: callable(src_id) -> VideoFileSource 或 None
    """

    @app.errorhandler(LocatorNotFound)
    def handle_locator_not_found(e):
        return _error(str(e), 404)

    @app.errorhandler(StreamCapacityError)
    def handle_capacity(e):
        return _error(str(e), 503)

    @app.errorhandler(TranscodeSpawnError)
    def handle_spawn_error(e):
        return _error(str(e), 503)

    @app.errorhandler(ResolutionFailure)
    def handle_resolution_failure(e):
        return _error(str(e), 409)

    @app.errorhandler(FileServerError)
    def handle_file_server_error(e):
        return _error(str(e), 409)

    @app.errorhandler(StreamingError)
    def handle_streaming_error(e):
        logger.error(f"Streaming error: {e}")
        return _error(str(e), 400)

    @app.route('/api/streams/locators', methods=['GET'])
    def get_stream_locators():
        locators = streaming_service.get_all_stream_locators()
        return jsonify({
            "success": True,
            "locators": [loc.to_dict() for loc in locators],
            "activeStreams": streaming_service.get_active_stream_count(),
        })

    @app.route('/api/streams/locators/<int:locator_id>', methods=['GET'])
    def get_stream_locator(locator_id):
        locator = streaming_service.get_stream_locator(locator_id)
        if locator is None:
            return _error("Stream locator not found", 404)
        return jsonify(locator.to_dict())

    @app.route('/api/streams/locators/<int:locator_id>', methods=['DELETE'])
    def delete_stream_locator(locator_id):
        streaming_service.delete_stream_locator(locator_id)
        return jsonify({"success": True, "message": f"Stream locator {locator_id} deleted"})

    @app.route('/api/streams/sources/<src_id>', methods=['POST'])
    def stream_source(src_id):
        """开始播放视频来源

        Returns:
            定位器 JSON 及播放列表 URL；流尚未就绪时返回 202
        """
        source = find_source(src_id)
        if source is None:
            return _error(f"Video file source not found: {src_id}", 404)

        locator = streaming_service.stream_source(source)
        result = locator.to_dict()
        result["playlistUrl"] = f"/api/streams/locators/{locator.locator_id}/playlist.m3u8"
        status = 200 if locator.state == StreamState.READY else 202
        return jsonify(result), status

    @app.route('/api/streams/locators/<int:locator_id>/restream', methods=['POST'])
    def restream(locator_id):
        locator = streaming_service.restream(locator_id)
        return jsonify(locator.to_dict()), 202

    @app.route('/api/streams/count', methods=['GET'])
    def get_stream_count():
        return jsonify({"count": streaming_service.get_active_stream_count()})

    @app.route('/api/streams/locators/<int:locator_id>/kill', methods=['POST'])
    def kill_stream(locator_id):
        killed = streaming_service.kill_stream(locator_id)
        return jsonify({"success": killed, "count": streaming_service.get_active_stream_count()})

    @app.route('/api/streams/kill-all', methods=['POST'])
    def kill_all_streams():
        killed = streaming_service.kill_all_streams()
        return jsonify({"success": True, "killed": killed})

    @app.route('/api/streams/expired', methods=['DELETE'])
    def delete_expired_streams():
        """删除 ``hours`` 小时前结束的流（查询参数，默认 24）"""
        try:
            hours = float(request.args.get('hours', 24))
        except ValueError:
            return _error("hours must be a number", 400)
        older_than = datetime.now(timezone.utc) - timedelta(hours=hours)
        deleted = streaming_service.delete_expired_streams(older_than)
        return jsonify({"success": True, "deleted": deleted})

    @app.route('/api/streams/locators/<int:locator_id>/playlist.m3u8', methods=['GET'])
    def get_playlist(locator_id):
        playlist = streaming_service.read_playlist(locator_id)
        if playlist is None:
            return "Playlist not ready", 404
        return Response(playlist, mimetype='application/vnd.apple.mpegurl')

    @app.route('/api/streams/locators/<int:locator_id>/<segment_name>.ts', methods=['GET'])
    def get_segment(locator_id, segment_name):
        segment_path = streaming_service.get_segment_path(locator_id, f"{segment_name}.ts")
        if segment_path is None:
            return "Segment not found", 404
        return send_file(segment_path, mimetype='video/mp2t')
