import logging
import threading

from flask import Flask, jsonify, request
from flask_socketio import SocketIO, emit

from liveness import config
from liveness.adapters import (
    FrameBuffer,
    MediaPipeLandmarkDetector,
    SocketIOObserver,
    decode_jpeg_to_bgr,
)
from liveness.config import session_config_from_env
from liveness.errors import ConfigError
from liveness.scheduler import AsyncioScheduler, LoopThread
from liveness.session import start_session

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["SECRET_KEY"] = config.SECRET_KEY

# threading mode: no eventlet/gevent needed; sessions run on loop_thread
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode="threading"
)

loop_thread = LoopThread()

# per-client sessions: sid -> {"handle", "frames"}
SESSIONS = {}
SESSIONS_LOCK = threading.Lock()

# one FaceMesh per process, shared by every session
_detector = None
_detector_lock = threading.Lock()


def get_detector():
    global _detector
    with _detector_lock:
        if _detector is None:
            _detector = MediaPipeLandmarkDetector(
                min_detection_confidence=config.MIN_DETECTION_CONFIDENCE,
                min_tracking_confidence=config.MIN_TRACKING_CONFIDENCE,
            )
        return _detector


def _drop_session(sid, cancel=True):
    with SESSIONS_LOCK:
        sess = SESSIONS.pop(sid, None)
    if sess and cancel:
        loop_thread.call(sess["handle"].cancel)
    return sess


def _make_on_complete(sid):
    def on_complete(outcome):
        logger.info("client %s finished: %s", sid, outcome.as_dict())
        with SESSIONS_LOCK:
            SESSIONS.pop(sid, None)
    return on_complete


@app.get("/health")
def health():
    with SESSIONS_LOCK:
        active = len(SESSIONS)
    return jsonify({"ok": True, "port": config.PORT, "sessions": active})


@socketio.on("connect")
def ws_connect():
    emit("server_update", {
        "status": "IN_PROGRESS",
        "progress": 0,
        "instruction": "Connected. Click Start to begin the liveness check"
    })


@socketio.on("liveness_start")
def ws_start():
    sid = request.sid
    _drop_session(sid)

    frames = FrameBuffer()
    detector = get_detector()

    def begin():
        return start_session(
            detector,
            frames,
            on_complete=_make_on_complete(sid),
            observer=SocketIOObserver(socketio, sid),
            config=session_config_from_env(),
            scheduler=AsyncioScheduler(loop_thread.loop),
            name=f"session[{sid}]",
        )

    try:
        handle = loop_thread.call(begin)
    except ConfigError as e:
        logger.error("refusing to start session: %s", e)
        emit("server_update", {
            "status": "FAILED",
            "instruction": "Liveness check is misconfigured",
            "reason": "config",
        })
        return

    with SESSIONS_LOCK:
        # initialization can fail before we get here
        if handle.outcome is None:
            SESSIONS[sid] = {"handle": handle, "frames": frames}


@socketio.on("liveness_frame")
def ws_frame(jpeg_bytes):
    with SESSIONS_LOCK:
        sess = SESSIONS.get(request.sid)
    if not sess:
        return

    frame = decode_jpeg_to_bgr(jpeg_bytes, mirror=config.MIRROR_FRAMES)
    if frame is None:
        return
    sess["frames"].push(frame)


@socketio.on("liveness_cancel")
def ws_cancel():
    _drop_session(request.sid)


@socketio.on("disconnect")
def ws_disconnect(reason=None):
    _drop_session(request.sid)


if __name__ == "__main__":
    try:
        socketio.run(app, host=config.FLASK_HOST, port=config.PORT, debug=False)
    finally:
        loop_thread.stop()
        if _detector is not None:
            _detector.close()
