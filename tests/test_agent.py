import asyncio
import json
import logging

import pytest

from pos_printer.agent import PrinterAgent, main, parse_args, run_test_print

from conftest import PrinterLog, make_payload


@pytest.mark.asyncio
async def test_status_degraded_until_subscribed(agent_cfg, ledger, feed, printer_log, until):
    agent = PrinterAgent(agent_cfg, ledger, feed, printer_factory=printer_log.factory)
    status = agent.status()
    assert status["status"] == "degraded"
    assert status["reason"] == "realtime_not_subscribed"

    await agent.intake.start()
    feed.current.emit_status("SUBSCRIBED")
    await until(lambda: agent.intake.status()["subscription"] == "subscribed")
    status = agent.status()
    assert status["status"] == "degraded"
    assert status["reason"] == "printer_unavailable"

    await agent.intake.add_job("J1", make_payload())
    await until(lambda: printer_log.printed == 1)
    status = agent.status()
    assert status["status"] == "ok"
    assert status["printer_ok"] is True
    assert "reason" not in status
    await agent.shutdown()


@pytest.mark.asyncio
async def test_run_stops_on_request(agent_cfg, ledger, feed, printer_log, monkeypatch, until):
    agent = PrinterAgent(agent_cfg, ledger, feed, printer_factory=printer_log.factory)
    monkeypatch.setattr(agent.hotplug, "_is_present", lambda vendor_id, product_id: True)

    runner = asyncio.create_task(agent.run())
    await until(lambda: len(feed.subscriptions) == 1)
    agent.request_stop()

    assert await asyncio.wait_for(runner, timeout=2.0) == 0
    assert feed.current.released


@pytest.mark.asyncio
async def test_uncaught_error_exits_nonzero(agent_cfg, ledger, feed, printer_log, monkeypatch, until):
    agent_cfg["shutdown_grace_seconds"] = 0.01
    agent = PrinterAgent(agent_cfg, ledger, feed, printer_factory=printer_log.factory)
    monkeypatch.setattr(agent.hotplug, "_is_present", lambda vendor_id, product_id: True)

    runner = asyncio.create_task(agent.run())
    await until(lambda: len(feed.subscriptions) == 1)
    asyncio.get_running_loop().call_exception_handler({"message": "boom", "exception": RuntimeError("boom")})

    assert await asyncio.wait_for(runner, timeout=2.0) == 1


@pytest.mark.asyncio
async def test_loop_diagnostics_without_exception_do_not_exit(agent_cfg, ledger, feed, printer_log, monkeypatch, until):
    agent_cfg["shutdown_grace_seconds"] = 0.01
    agent = PrinterAgent(agent_cfg, ledger, feed, printer_factory=printer_log.factory)
    monkeypatch.setattr(agent.hotplug, "_is_present", lambda vendor_id, product_id: True)

    runner = asyncio.create_task(agent.run())
    await until(lambda: len(feed.subscriptions) == 1)
    asyncio.get_running_loop().call_exception_handler({"message": "Task was destroyed but it is pending!"})
    await asyncio.sleep(0.05)

    assert agent.exit_code == 0
    assert not runner.done()
    agent.request_stop()
    assert await asyncio.wait_for(runner, timeout=2.0) == 0


@pytest.mark.asyncio
async def test_test_print_success(agent_cfg, printer_log):
    assert await run_test_print(agent_cfg, factory=printer_log.factory) == 0
    assert printer_log.printed == 1
    assert printer_log.closes == 1


@pytest.mark.asyncio
async def test_test_print_failure(agent_cfg):
    log = PrinterLog(fail_opens=99)
    assert await run_test_print(agent_cfg, factory=log.factory) == 1
    assert log.open_attempts == agent_cfg["max_attempts"]


def test_parse_args():
    args = parse_args(["--health-port", "5003", "--test-print", "--debug", "--env-file", "/opt/pos/.env"])
    assert args.env_file == "/opt/pos/.env"
    assert args.health_port == 5003
    assert args.test_print is True
    assert args.debug is True
    assert parse_args([]).config is None


def test_main_rejects_invalid_config(tmp_path, monkeypatch):
    monkeypatch.delenv("GOOGLE_PROJECT_ID", raising=False)
    path = tmp_path / "config.json"
    path.write_text(json.dumps(["not", "an", "object"]))
    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    try:
        assert main(["--config", str(path)]) == 2
    finally:
        root.setLevel(saved[0])
        root.handlers = saved[1]


def test_main_requires_ledger_credentials(tmp_path, monkeypatch):
    monkeypatch.setenv("POSPRINTER_ENV_FILE", str(tmp_path / "absent.env"))
    monkeypatch.delenv("GOOGLE_PROJECT_ID", raising=False)
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_KEY", raising=False)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"supabase_url": None, "supabase_key": None}))
    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    try:
        assert main(["--config", str(path)]) == 2
    finally:
        root.setLevel(saved[0])
        root.handlers = saved[1]
