import logging
from pathlib import Path
from urllib.parse import quote

import requests

from fds_common import (
    NetworkError,
    StorageError,
    parse_private_blocks,
    private_ip,
    random_names,
)
from fds_server import DEFAULT_HOST, DEFAULT_PORT

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

def copy_file(src: Path, dst: Path) -> int:
    """Copy src to dst in chunks. Returns the number of bytes written."""
    written = 0
    try:
        with open(src, "rb") as fin, open(dst, "wb") as fout:
            for chunk in iter(lambda: fin.read(CHUNK_SIZE), b""):
                fout.write(chunk)
                written += len(chunk)
    except OSError as e:
        raise StorageError(f"copy {src} -> {dst}: {e}") from e
    return written

class Client:
    """Drops a single file into a running server's root directory."""

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, blocks=None, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.blocks = blocks if blocks is not None else parse_private_blocks()
        self.timeout = timeout
        self._names = random_names()

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def public_url(self, segment: str, name: str) -> str:
        return f"http://{private_ip(self.blocks)}:{self.port}/files/{segment}/{quote(name)}"

    def dir(self) -> str:
        """Ask the server for its root directory."""
        url = f"{self.base_url}/dir"
        try:
            resp = requests.get(url, timeout=self.timeout, stream=True)
        except requests.RequestException as e:
            raise NetworkError(f"GET {url}: {e}") from e

        with resp:
            if resp.status_code != 200:
                raise NetworkError(f"GET {url}: HTTP {resp.status_code}")
            try:
                body = resp.content
            except requests.RequestException as e:
                raise StorageError(f"reading response of {url}: {e}") from e
        return body.decode("utf-8")

    def put(self, local_path, via_http: bool = False) -> str:
        """
        Copy local_path under a fresh random segment of the server root and
        print the URL it can be fetched from.

        Nothing is cleaned up on failure; a half-written segment may remain.
        """
        if via_http:
            return self._put_http(Path(local_path))

        src = Path(local_path)
        root = self.dir()
        segment = next(self._names)
        target_dir = Path(root) / segment
        try:
            target_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"mkdir {target_dir}: {e}") from e

        size = copy_file(src, target_dir / src.name)
        logger.debug("Copied %d bytes to %s", size, target_dir / src.name)

        url = self.public_url(segment, src.name)
        print(url)
        return url

    def _put_http(self, src: Path) -> str:
        segment = next(self._names)
        url = f"{self.base_url}/files/{segment}/{quote(src.name)}"
        try:
            f = open(src, "rb")
        except OSError as e:
            raise StorageError(f"open {src}: {e}") from e

        with f:
            try:
                resp = requests.put(url, data=f, timeout=self.timeout)
            except requests.RequestException as e:
                raise NetworkError(f"PUT {url}: {e}") from e

        if resp.status_code != 201:
            raise NetworkError(f"PUT {url}: HTTP {resp.status_code} {resp.text.strip()}")

        try:
            saved_as = resp.json()["saved_as"]
        except (ValueError, KeyError, TypeError) as e:
            raise NetworkError(f"PUT {url}: unexpected reply {resp.text[:200]!r}") from e
        url = self.public_url(segment, saved_as)
        print(url)
        return url
