"""Tests for the input hosts and the input service."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, call

import httpx
import pytest
from fastapi.testclient import TestClient

from deskrelay.domain.models import MouseButton
from deskrelay.input.base import InputHost, InputHostError
from deskrelay.input.http_host import HttpInputHost
from deskrelay.input.pyautogui_host import PyAutoGuiInputHost
from deskrelay.input.service import create_app


class TestHttpInputHost:
    def test_init_defaults(self) -> None:
        host = HttpInputHost()
        assert host._base_url == "http://localhost:8766"
        assert host._timeout == 10.0

    @pytest.mark.asyncio
    async def test_primitives_reach_service_host(self, recording_host) -> None:
        app = create_app(host=recording_host)
        host = HttpInputHost(base_url="http://input.test", transport=httpx.ASGITransport(app=app))
        async with host:
            await host.move_mouse(640, 400)
            await host.click(MouseButton.RIGHT)
            await host.scroll(0, 3)
            await host.type_text("hello")
            await host.press_key("a", ["ctrl"])
            await host.open_url("https://example.com")
        assert recording_host.calls == [
            ("move_mouse", 640, 400),
            ("click", "right"),
            ("scroll", 0, 3),
            ("type_text", "hello"),
            ("press_key", "a", ("ctrl",)),
            ("open_url", "https://example.com"),
        ]

    @pytest.mark.asyncio
    async def test_connect_failure(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        host = HttpInputHost(transport=httpx.MockTransport(refuse))
        with pytest.raises(InputHostError):
            await host.connect()

    @pytest.mark.asyncio
    async def test_not_connected(self) -> None:
        with pytest.raises(InputHostError):
            await HttpInputHost().click()


class TestInputService:
    def test_health_reports_connection(self, recording_host) -> None:
        with TestClient(create_app(host=recording_host)) as client:
            assert client.get("/health").json() == {"status": "ok", "connected": True}
        assert not recording_host.connected

    def test_host_error_is_503(self) -> None:
        failing = AsyncMock(spec=InputHost)
        failing.click.side_effect = InputHostError("display gone")
        with TestClient(create_app(host=failing)) as client:
            resp = client.post("/mouse/click", json={"button": "left"})
        assert resp.status_code == 503

    def test_invalid_button_rejected(self, recording_host) -> None:
        with TestClient(create_app(host=recording_host)) as client:
            resp = client.post("/mouse/click", json={"button": "thumb"})
        assert resp.status_code == 422


class TestPyAutoGuiInputHost:
    @pytest.fixture
    def host(self) -> PyAutoGuiInputHost:
        host = PyAutoGuiInputHost()
        host._gui = MagicMock()
        return host

    @pytest.mark.asyncio
    async def test_requires_connect(self) -> None:
        with pytest.raises(InputHostError):
            await PyAutoGuiInputHost().move_mouse(1, 1)

    @pytest.mark.asyncio
    async def test_scroll_direction(self, host: PyAutoGuiInputHost) -> None:
        await host.scroll(2, 3)
        host._gui.scroll.assert_called_once_with(-3)
        host._gui.hscroll.assert_called_once_with(2)

    @pytest.mark.asyncio
    async def test_press_key_holds_modifiers(self, host: PyAutoGuiInputHost) -> None:
        await host.press_key("t", ["ctrl", "shift"])
        assert host._gui.mock_calls == [
            call.keyDown("ctrl"),
            call.keyDown("shift"),
            call.press("t"),
            call.keyUp("shift"),
            call.keyUp("ctrl"),
        ]

    @pytest.mark.asyncio
    async def test_double_click(self, host: PyAutoGuiInputHost) -> None:
        await host.double_click(MouseButton.LEFT)
        assert host._gui.click.call_count == 2
