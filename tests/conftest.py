"""Shared fixtures for the fds tests."""
import threading

import pytest

from fds_server import TempServer, create_app


@pytest.fixture
def root_dir(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    return root


@pytest.fixture
def app(root_dir):
    app = create_app(root_dir, allow_put=True)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def http(app):
    """Flask test client for the file routes."""
    return app.test_client()


@pytest.fixture
def running_server(root_dir):
    """A real threaded server on a free loopback port."""
    srv = TempServer(str(root_dir), host="127.0.0.1", port=0, allow_put=True)
    t = threading.Thread(target=srv.start, daemon=True)
    t.start()
    assert srv.ready.wait(5), "server did not come up"
    yield srv
    srv.shutdown()
    t.join(5)
