"""HTTP server exposing live channels and their HLS output."""

from __future__ import annotations

import logging
from pathlib import Path
from uuid import uuid4

from quart import Quart, abort, jsonify, request, send_from_directory

from .errors import ProbeError, TransitionInProgress
from .manager import ChannelManager
from .models import ChannelInfo, SessionConfig
from .probe import probe_info

logger = logging.getLogger(__name__)

MIMETYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
}


def channel_payload(info: ChannelInfo) -> dict:
    return {
        "channel_id": info.channel_id,
        "status": info.status.value,
        "hls_url": info.master_url,
        "label": info.label,
        "current_source": info.current_source,
        "draining_source": info.draining_source,
        "pending_source": info.pending_source,
        "error": info.error,
        "last_sequence": {str(height): sequence for height, sequence in info.last_sequence.items()},
    }


def create_app(base_output_dir: Path = Path("output")) -> Quart:
    """Build the Quart application around a fresh channel manager."""
    app = Quart(__name__)
    manager = ChannelManager(base_output_dir=base_output_dir)
    app.config["CHANNEL_MANAGER"] = manager

    @app.after_serving
    async def shutdown_channels():
        await manager.shutdown()

    @app.route("/api")
    async def api_info():
        """API endpoint with API info."""
        return jsonify({
            "service": "live2hls",
            "version": "0.1.0",
            "endpoints": {
                "channels": "/channels",
                "emit": "/channels/<channel_id>/emit",
                "probe": "/channels/<channel_id>/probe?source=<source>",
                "hls": "/hls/<channel_id>/<path:filename>",
            }
        })

    @app.route("/channels", methods=["GET"])
    async def list_channels():
        """List all channels."""
        return jsonify({"channels": [channel_payload(info) for info in manager.list_channels()]})

    @app.route("/channels", methods=["POST"])
    async def add_channel():
        """Create a new channel, optionally emitting a first source."""
        data = await request.get_json(silent=True) or {}
        channel_id = str(uuid4())

        try:
            config = SessionConfig(
                output_dir=manager.default_output_dir(channel_id),
                base_url=data.get("base_url"),
                resolution_mask=int(data.get("resolution_mask", 4)),
                segment_time=int(data.get("segment_time", 5)),
                window_size=int(data.get("window_size", 5)),
                segment_wrap=int(data.get("segment_wrap", 40)),
                label=data.get("label"),
            )
            await manager.add_channel(config, channel_id=channel_id)
        except (TypeError, ValueError) as exc:
            logger.warning("Rejected channel request: %s", exc)
            return jsonify({"error": str(exc)}), 400

        logger.info("Created channel %s", channel_id)
        if data.get("source"):
            await manager.emit(channel_id, data["source"])
            logger.info("Channel %s emitting %s", channel_id, data["source"])

        return jsonify({
            "channel_id": channel_id,
            "hls_url": f"/hls/{channel_id}/master.m3u8",
            "status": manager.get_channel_info(channel_id).status.value,
        }), 201

    @app.route("/channels/<channel_id>", methods=["GET"])
    async def get_channel(channel_id: str):
        """Get information about a specific channel."""
        info = manager.get_channel_info(channel_id)
        if not info:
            return jsonify({"error": "Channel not found"}), 404
        return jsonify(channel_payload(info))

    @app.route("/channels/<channel_id>", methods=["DELETE"])
    async def remove_channel(channel_id: str):
        """Stop a channel and delete its output."""
        removed = await manager.remove_channel(channel_id)
        if not removed:
            return jsonify({"error": "Channel not found"}), 404
        logger.info("Removed channel %s via API", channel_id)
        return jsonify({"message": "Channel removed"}), 200

    @app.route("/channels/<channel_id>/emit", methods=["POST"])
    async def emit(channel_id: str):
        """Switch a channel to a new source."""
        data = await request.get_json(silent=True) or {}
        source = data.get("source")
        if not source:
            return jsonify({"error": "source is required"}), 400

        try:
            await manager.emit(channel_id, source)
        except KeyError:
            return jsonify({"error": "Channel not found"}), 404
        except TransitionInProgress as exc:
            logger.info("Channel %s busy, rejected %s", channel_id, source)
            return jsonify({"error": str(exc)}), 409

        logger.info("Channel %s emitting %s", channel_id, source)
        return jsonify(channel_payload(manager.get_channel_info(channel_id))), 202

    @app.route("/channels/<channel_id>/probe", methods=["GET"])
    async def probe(channel_id: str):
        """Describe a source before emitting it."""
        if manager.get_channel_info(channel_id) is None:
            return jsonify({"error": "Channel not found"}), 404
        source = request.args.get("source")
        if not source:
            return jsonify({"error": "source is required"}), 400
        try:
            return jsonify(await probe_info(source))
        except ProbeError as exc:
            return jsonify({"error": str(exc)}), 422

    @app.route("/hls/<channel_id>/<path:filename>")
    async def serve_hls(channel_id: str, filename: str):
        """Serve HLS files (playlists and segments)."""
        output_path = manager.get_output_path(channel_id)

        if not output_path or not output_path.exists():
            abort(404, "Channel not found")

        requested_path = (output_path / filename).resolve()
        output_root = output_path.resolve()

        try:
            requested_path.relative_to(output_root)
        except ValueError:
            abort(404, "File not found")

        if not requested_path.exists() or not requested_path.is_file():
            abort(404, "File not found")

        relative = requested_path.relative_to(output_root)
        response = await send_from_directory(
            output_root,
            str(relative),
            mimetype=MIMETYPES.get(requested_path.suffix, "application/octet-stream"),
        )
        if requested_path.suffix == ".m3u8":
            response.headers["Cache-Control"] = "no-cache"
        return response

    return app
