"""
Command line entrypoint.

INVARIANT:
    run_app() always returns an exit code: 0 on success, 1 when an order
    fails or a runtime error occurs, 2 for invalid input or configuration.
    Order commands print the order as JSON.
"""

import json

import pytest

import main
from swapdesk import app
from swapdesk.app import EXIT_FAILURE, EXIT_OK, EXIT_USAGE, RunOptions, run_app


FAST_CONFIG = """
venues:
  - name: Raydium
    fee: 0.003
    base_price: 100.0
    quote_delay_ms: 0
    execution_delay_ms: 0
    failure_rate: {failure_rate}
  - name: Meteora
    fee: 0.002
    base_price: 100.0
    quote_delay_ms: 0
    execution_delay_ms: 0
    failure_rate: {failure_rate}
router:
  seed: 5
worker:
  max_attempts: 2
  base_delay_seconds: 0.0
store:
  db_path: {data}/orders.db
queue:
  db_path: {data}/queue.db
logging:
  file_logging: false
"""


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(app, "setup_logging", lambda **kwargs: None)


def _config_dir(tmp_path, failure_rate=0.0):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "config.yaml").write_text(
        FAST_CONFIG.format(failure_rate=failure_rate, data=(tmp_path / "data").as_posix())
    )
    return config_dir


def _run(config_dir, command, **args):
    return run_app(RunOptions(command=command, config_dir=config_dir, args=args))


def _last_json(capsys):
    return json.loads(capsys.readouterr().out)


class TestOrderCommands:

    def test_submit_execute_get_list(self, tmp_path, capsys):
        config_dir = _config_dir(tmp_path)

        code = _run(config_dir, "submit", wallet="w1", input_token="sol",
                    output_token="usdc", amount="10", execute=True)
        assert code == EXIT_OK
        order = _last_json(capsys)
        assert order["status"] == "confirmed"
        assert order["selectedVenue"] in ("Raydium", "Meteora")
        assert len(order["executionRef"]) == 64

        assert _run(config_dir, "get", order_id=order["orderId"]) == EXIT_OK
        assert _last_json(capsys)["orderId"] == order["orderId"]

        assert _run(config_dir, "list", wallet="w1", limit=10) == EXIT_OK
        assert [o["orderId"] for o in _last_json(capsys)] == [order["orderId"]]

    def test_submit_queues_by_default(self, tmp_path, capsys):
        config_dir = _config_dir(tmp_path)

        assert _run(config_dir, "submit", wallet="w1", input_token="SOL",
                    output_token="USDC", amount="1") == EXIT_OK
        order = _last_json(capsys)
        assert order["status"] == "pending"

        assert _run(config_dir, "execute", order_id=order["orderId"]) == EXIT_OK
        assert _last_json(capsys)["status"] == "confirmed"

    def test_failed_order_exit_code(self, tmp_path, capsys):
        config_dir = _config_dir(tmp_path, failure_rate=1.0)

        assert _run(config_dir, "submit", wallet="w1", input_token="SOL",
                    output_token="USDC", amount="1") == EXIT_OK
        order = _last_json(capsys)

        assert _run(config_dir, "execute", order_id=order["orderId"]) == EXIT_FAILURE
        failed = _last_json(capsys)
        assert failed["status"] == "failed"
        assert failed["error"]


class TestErrors:

    def test_invalid_input(self, tmp_path, capsys):
        code = _run(_config_dir(tmp_path), "submit", wallet="w1", input_token="SOL",
                    output_token="USDC", amount="-3")
        assert code == EXIT_USAGE
        message = _last_json(capsys)
        assert message["type"] == "error"
        assert message["field"] == "input_amount"

    def test_unknown_order(self, tmp_path, capsys):
        assert _run(_config_dir(tmp_path), "get", order_id="missing") == EXIT_FAILURE
        assert "not found" in _last_json(capsys)["message"]

    def test_invalid_config(self, tmp_path, capsys):
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text("worker:\n  concurrency: 0\n")
        assert _run(config_dir, "get", order_id="x") == EXIT_USAGE


class TestParser:

    def test_submit_arguments(self):
        args = main.build_parser().parse_args([
            "--config-dir", "cfg", "submit", "--wallet", "w1",
            "--from", "SOL", "--to", "USDC", "--amount", "10", "--execute",
        ])
        assert args.command == "submit"
        assert args.config_dir == "cfg"
        assert (args.input_token, args.output_token, args.amount) == ("SOL", "USDC", "10")
        assert args.execute is True

    def test_list_default_limit(self):
        args = main.build_parser().parse_args(["list", "--wallet", "w1"])
        assert args.limit == 50

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main.build_parser().parse_args([])
