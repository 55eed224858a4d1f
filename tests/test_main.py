import json

import pytest
from structlog.testing import capture_logs

from cl_rebalancer import main as cli


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch):
    monkeypatch.setattr(cli, "_setup_logging", lambda level: None)
    with capture_logs():
        yield


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'transactions.db'}")
    config = tmp_path / "config.json"
    config.write_text(
        json.dumps(
            {
                "poolId": "1",
                "positionId": "",
                "rebalanceThresholdPercent": 90,
                "positionBandPercentage": 5,
                "chain": "osmosis",
            }
        ),
        encoding="utf-8",
    )
    return config


def _args(*argv):
    args = cli.build_parser().parse_args(list(argv))
    if not hasattr(args, "watch"):
        args.watch = None
    return args


def test_parser_defaults():
    args = cli.build_parser().parse_args(["run"])
    assert args.watch is None
    assert args.live is False
    assert cli.build_parser().parse_args(["run", "--watch"]).watch == 0.0
    assert cli.build_parser().parse_args(["run", "--watch", "60"]).watch == 60.0


def test_negative_watch_is_rejected():
    with pytest.raises(SystemExit):
        cli.main(["run", "--watch", "-5"])


async def test_dry_run_creates_position(workspace, capsys):
    code = await cli.run_command(_args("run", "--config-file", str(workspace)))

    assert code == cli.EXIT_OK
    assert json.loads(workspace.read_text(encoding="utf-8"))["positionId"] == "1"
    printed = json.loads(capsys.readouterr().out)
    assert printed["action"] == "created"


async def test_sui_chain_flag_overrides_config(workspace, capsys):
    code = await cli.run_command(
        _args("run", "--config-file", str(workspace), "--chain", "sui")
    )

    assert code == cli.EXIT_OK
    assert json.loads(capsys.readouterr().out)["pool_id"] == "1"


async def test_status_command(workspace, capsys):
    code = await cli.run_command(_args("status", "--config-file", str(workspace)))

    assert code == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "Pool 1: USDC/OSMO" in out
    assert "No managed position." in out


async def test_withdraw_without_position_fails(workspace, capsys):
    code = await cli.run_command(_args("withdraw", "--config-file", str(workspace)))

    assert code == cli.EXIT_FAILURE
    assert "position not found" in capsys.readouterr().err


async def test_live_mode_needs_client_factory(workspace, capsys):
    code = await cli.run_command(_args("run", "--config-file", str(workspace), "--live"))

    assert code == cli.EXIT_FAILURE
    assert "CLIENT_FACTORY" in capsys.readouterr().err


async def test_missing_config_reports_fields(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'transactions.db'}")

    code = await cli.run_command(_args("run", "--config-file", str(tmp_path / "absent.json")))

    assert code == cli.EXIT_FAILURE
    assert "POOL_ID" in capsys.readouterr().err
