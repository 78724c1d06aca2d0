"""Unit tests for the application entry point."""

import asyncio

import pytest
import yaml

from oven_monitor.cli.main import OvenMonitorApplication, create_parser, main_async
from oven_monitor.models import MonitorConfiguration, OvenId


class TestParser:
    """Test command-line parsing."""

    def test_defaults(self):
        args = create_parser().parse_args([])

        assert args.config == "oven_monitor.yaml"
        assert args.demo is False
        assert args.no_api is False
        assert args.api_port is None

    def test_flags(self):
        args = create_parser().parse_args(["--demo", "--in-memory", "--no-api", "--api-port", "8080"])

        assert args.demo and args.in_memory and args.no_api
        assert args.api_port == 8080


class TestMainAsync:
    """Test main_async without starting long-running components."""

    @pytest.mark.asyncio
    async def test_export_config(self, tmp_path):
        output = tmp_path / "exported.yaml"

        code = await main_async(["--config", str(tmp_path / "absent.yaml"),
                                 "--api-port", "6001",
                                 "--export-config", str(output)])

        assert code == 0
        assert yaml.safe_load(output.read_text(encoding="utf-8"))["api_port"] == 6001

    @pytest.mark.asyncio
    async def test_bad_config_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("api_port: -1\n", encoding="utf-8")

        assert await main_async(["--config", str(path)]) == 1


class TestOvenMonitorApplication:
    """Test the application lifecycle in demo mode."""

    @pytest.mark.asyncio
    async def test_demo_lifecycle(self):
        app = OvenMonitorApplication(MonitorConfiguration())
        await app.initialize(in_memory_storage=True)
        await app.start(enable_api=False, demo_mode=True)

        try:
            assert app.is_running
            await asyncio.sleep(0.05)
            assert app.line_source.lines_read >= 1

            status = app.get_status()
            assert status["application"]["components"]["document_store"] is True
            assert status["application"]["components"]["api_server"] is False
            assert status["performance"]["line_source"]["port"] == "demo"

            app.request_stop()
            await asyncio.wait_for(app.wait_until_stopped(), timeout=1.0)
        finally:
            await app.stop()

        assert app.is_running is False
        assert app.document_store.is_ready is False

    @pytest.mark.asyncio
    async def test_running_session_left_open_on_stop(self):
        app = OvenMonitorApplication(MonitorConfiguration())
        await app.initialize(in_memory_storage=True)
        await app.start(enable_api=False, demo_mode=True)

        try:
            result = await app.controller.start_logging(OvenId.OVEN2, "ORD-1", "Colle Noir", 1)
            assert result.ok
        finally:
            await app.stop()

        assert app.state_store.get("activeSession-oven2") is not None
