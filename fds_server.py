import os
import re
import shutil
import signal
import logging
import tempfile
import threading
from pathlib import Path

from flask import (
    Flask,
    Response,
    request,
    send_from_directory,
    abort,
    jsonify,
)
from werkzeug.serving import make_server
from werkzeug.utils import secure_filename

from fds_common import (
    LETTERS,
    SEGMENT_LENGTH,
    NetworkError,
    StorageError,
    FdsError,
    parse_private_blocks,
    private_ip,
)

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8100

SEGMENT_RE = re.compile(rf"[{LETTERS}]{{{SEGMENT_LENGTH}}}")

class Terminated(FdsError):
    """Raised out of the listener when a termination signal arrives."""

    def __init__(self, signum: int):
        super().__init__(f"terminated by {signal.Signals(signum).name}")
        self.signum = signum

# ----------------------------
# Helpers
# ----------------------------

def ensure_within_dir(base_dir: Path, target: Path) -> None:
    """Abort if target is not within base_dir (prevents path traversal)."""
    base_dir = base_dir.resolve()
    target = target.resolve()
    if base_dir not in target.parents:
        abort(400, "Invalid path")

def safe_component(name: str) -> str:
    """
    Keep name as is when it is a single plain path component, so uploads
    over HTTP keep the same name a shared-filesystem copy would.
    Anything else goes through secure_filename.
    """
    if name and not name.startswith(".") and not any(c in name for c in "/\\\0"):
        return name
    return secure_filename(name)

def is_filesystem_root(path: str) -> bool:
    absolute = os.path.abspath(path)
    return absolute == os.path.dirname(absolute)

# ----------------------------
# Flask app
# ----------------------------

def create_app(root_dir: Path, allow_put: bool = False, max_mb: int = 250) -> Flask:
    app = Flask(__name__)
    app.config["ROOT_DIR"] = str(root_dir)

    # Only PUT bodies are subject to this
    app.config["MAX_CONTENT_LENGTH"] = max_mb * 1024 * 1024

    @app.route("/dir", methods=["GET"], endpoint="root_dir")
    def root_dir_view():
        return Response(app.config["ROOT_DIR"], mimetype="text/plain")

    @app.route("/files/<path:filename>", methods=["GET"], endpoint="get_file")
    def get_file(filename):
        # safe_join inside send_from_directory 404s on traversal and directories
        return send_from_directory(app.config["ROOT_DIR"], filename)

    if allow_put:
        @app.route("/files/<segment>/<name>", methods=["PUT"], endpoint="put_file")
        def put_file(segment, name):
            if not SEGMENT_RE.fullmatch(segment):
                abort(400, "Invalid segment")
            safe_name = safe_component(name)
            if not safe_name:
                abort(400, "Invalid filename")

            base = Path(app.config["ROOT_DIR"])
            dest = base / segment / safe_name
            ensure_within_dir(base, dest)
            if dest.exists():
                abort(409, "Already exists")

            dest.parent.mkdir(mode=0o755, parents=True, exist_ok=True)

            # Each request writes its own hidden .part file; the hard link
            # publishes it only while dest is still free.
            out = tempfile.NamedTemporaryFile(dir=dest.parent, prefix=".", suffix=".part", delete=False)
            tmp = Path(out.name)
            try:
                with out:
                    os.chmod(out.name, 0o644)
                    for chunk in iter(lambda: request.stream.read(1024 * 1024), b""):
                        out.write(chunk)
                try:
                    os.link(tmp, dest)
                except FileExistsError:
                    abort(409, "Already exists")
            finally:
                tmp.unlink(missing_ok=True)

            size_bytes = dest.stat().st_size
            logger.info("Stored %s/%s (%d bytes)", segment, safe_name, size_bytes)
            return jsonify(
                {
                    "ok": True,
                    "segment": segment,
                    "saved_as": safe_name,
                    "size_bytes": size_bytes,
                }
            ), 201

    return app

# ----------------------------
# Server node
# ----------------------------

class TempServer:
    """Serves a private temporary directory and removes it on the way out."""

    def __init__(
        self,
        root_dir: str,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        ttl: float = 0,
        blocks=None,
        allow_put: bool = False,
        max_mb: int = 250,
    ):
        self.root_dir = str(root_dir)
        self.host = host
        self.port = port
        # Never consulted: the root lives until shutdown or a signal.
        self.ttl = ttl
        self.blocks = blocks if blocks is not None else parse_private_blocks()
        self.allow_put = allow_put
        self.app = create_app(Path(self.root_dir), allow_put=allow_put, max_mb=max_mb)
        self.ready = threading.Event()

        self._httpd = None
        self._remove_lock = threading.Lock()
        self._cleanup_threads: list[threading.Thread] = []
        self._previous_handlers: dict[int, object] = {}

    def remove_all(self) -> None:
        """Delete the root tree. Safe to call any number of times."""
        if not self.root_dir or is_filesystem_root(self.root_dir):
            logger.warning("Refusing to remove %r", self.root_dir)
            return
        with self._remove_lock:
            try:
                shutil.rmtree(self.root_dir)
            except FileNotFoundError:
                logger.debug("%s already removed", self.root_dir)
                return
            except OSError as e:
                raise StorageError(f"cannot remove {self.root_dir}: {e}") from e
        logger.info("Removed %s", self.root_dir)

    def _remove_in_background(self) -> None:
        try:
            self.remove_all()
        except StorageError as e:
            logger.error("Cleanup failed: %s", e)

    def _on_signal(self, signum, frame) -> None:
        logger.info("Received %s", signal.Signals(signum).name)
        t = threading.Thread(target=self._remove_in_background, name="fds-cleanup")
        t.start()
        self._cleanup_threads.append(t)
        raise Terminated(signum)

    def _install_signal_handlers(self) -> None:
        # signal.signal only works from the main thread
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in main thread, skipping signal handlers")
            return
        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, self._on_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def start(self) -> None:
        """
        Bind, serve until the listener stops, then remove the root.
        Raises NetworkError when the address cannot be bound and
        Terminated when SIGINT/SIGTERM ends the listener.
        """
        self._install_signal_handlers()
        try:
            try:
                self._httpd = make_server(self.host, self.port, self.app, threaded=True)
            except (OSError, SystemExit) as e:
                # newer werkzeug reports bind errors on stderr and exits
                raise NetworkError(f"cannot listen on {self.host}:{self.port}") from e
            self.port = self._httpd.port
            self.print_banner()
            self.ready.set()
            self._httpd.serve_forever()
        finally:
            self.ready.clear()
            self._restore_signal_handlers()
            try:
                self.remove_all()
            except StorageError as e:
                logger.error("Cleanup failed: %s", e)

    def shutdown(self) -> None:
        """Stop a listener running in another thread."""
        if self._httpd is not None:
            self._httpd.shutdown()

    def join_cleanup(self, timeout: float | None = None) -> None:
        for t in self._cleanup_threads:
            t.join(timeout)

    def print_banner(self) -> None:
        ip = private_ip(self.blocks)
        base = f"http://{ip}:{self.port}"
        logger.info("Serving %s on %s", self.root_dir, base)

        print("\n=== Serve mode ===")
        print(f"Root:     {self.root_dir}")
        print(f"Control:  {base}/dir")
        print(f"Download: {base}/files/<segment>/<filename>")
        print("\nUpload from this host:")
        print(f"  fds --port {self.port} ./path/to/file.zip")
        if self.allow_put:
            print("\nUpload over HTTP:")
            print(f"  fds --http --host {ip} --port {self.port} ./path/to/file.zip")
            print(f'  curl -T "./path/to/file.zip" "{base}/files/<40 letters>/file.zip"')
        print()

def new_temp_server(**kwargs) -> TempServer:
    try:
        root_dir = tempfile.mkdtemp(prefix="fds-")
    except OSError as e:
        raise StorageError(f"cannot create temporary directory: {e}") from e
    return TempServer(root_dir, **kwargs)
