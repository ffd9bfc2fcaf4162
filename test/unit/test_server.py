import json
import os
from unittest.mock import patch

import pytest

from scanfleet import server


@pytest.fixture
def clean_env():
    names = ["DO_API_TOKEN", "MAIN_SERVER_IP", "PORT", "REDIS_URL"]
    saved = {n: os.environ.pop(n) for n in names if n in os.environ}
    yield
    os.environ.update(saved)


class TestBuildConfig:

    def test_cli_overrides(self, clean_env):
        args = server.build_parser().parse_args(
            ["-H", "127.0.0.1", "-p", "9001", "--callback-address", "198.51.100.3", "-d"])
        cfg = server.build_config(args)
        assert cfg.api.host == "127.0.0.1"
        assert cfg.api.port == 9001
        assert cfg.fleet.callback_address == "198.51.100.3"
        assert cfg.core.debug is True

    def test_config_file_then_env(self, clean_env, tmp_path):
        path = tmp_path / "scanfleet.json"
        path.write_text(json.dumps({"_do_token": "from-file", "_max_nodes": 3}))
        with patch.dict(os.environ, {"DO_API_TOKEN": "from-env"}):
            args = server.build_parser().parse_args(["-c", str(path)])
            cfg = server.build_config(args)
        assert cfg.provider.api_token == "from-env"
        assert cfg.fleet.max_nodes == 3


class TestMain:

    def test_invalid_config_exits(self, clean_env):
        with patch.object(server.uvicorn, "run") as run:
            with pytest.raises(SystemExit):
                server.main([])
        run.assert_not_called()

    def test_runs_uvicorn(self, clean_env):
        with patch.dict(os.environ, {"DO_API_TOKEN": "tok",
                                     "MAIN_SERVER_IP": "198.51.100.9"}), \
                patch.object(server.uvicorn, "run") as run:
            server.main(["-p", "8123"])
        _, kwargs = run.call_args
        assert kwargs["port"] == 8123
        assert kwargs["log_level"] == "info"
