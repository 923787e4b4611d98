"""Pytest fixtures for the check-in terminal tests."""
from __future__ import annotations

import asyncio
from typing import Callable, List, Optional
from unittest.mock import AsyncMock

import httpx
import pytest

from terminal.app.backend.http_client import CheckInHttpClient
from terminal.app.config import ScannerSettings, Settings
from terminal.app.sensors.qr_camera import DetectionEngineError
from terminal.app.session_manager import ScanSessionController
from terminal.app.state import CheckInSuccess, ControllerEvent

API_URL = "http://checkin.test"


class FakeEngine:
    """In-memory detection engine that records lifecycle calls."""

    def __init__(self, *, fail_start: bool = False) -> None:
        self.fail_start = fail_start
        self.start_calls = 0
        self.stop_calls = 0
        self.running = False
        self.on_decode = None
        self.on_frame_error = None

    async def start(self, on_decode, on_frame_error) -> None:
        self.start_calls += 1
        if self.fail_start:
            raise DetectionEngineError("no camera")
        self.on_decode = on_decode
        self.on_frame_error = on_frame_error
        self.running = True

    async def stop(self) -> None:
        self.stop_calls += 1
        self.running = False

    async def emit(self, text: str) -> None:
        # callbacks stay reachable after stop to simulate a late frame
        assert self.on_decode is not None, "engine was never started"
        await self.on_decode(text)

    async def emit_frame_error(self, message: str = "No QR code found") -> None:
        assert self.on_frame_error is not None, "engine was never started"
        await self.on_frame_error(message)


class BlockingClient:
    """Check-in client whose submit waits until released."""

    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.calls: List[tuple] = []
        self.aclose = AsyncMock()

    async def submit(self, attendee_id: str, event_id: str):
        self.calls.append((attendee_id, event_id))
        self.entered.set()
        await self.release.wait()
        return self.outcome


@pytest.fixture
def settings() -> Settings:
    return Settings(
        checkin_api_url=API_URL,
        checkin_timeout_seconds=1.0,
        scanner=ScannerSettings(auto_restart=False),
    )


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_client() -> AsyncMock:
    client = AsyncMock()
    client.submit.return_value = CheckInSuccess(attendee_id="1RV20CS001", event_id="EVT42", message="Checked in")
    return client


@pytest.fixture
def make_http_client(settings: Settings) -> Callable[..., CheckInHttpClient]:
    def factory(handler: Callable[[httpx.Request], httpx.Response], target: Optional[Settings] = None) -> CheckInHttpClient:
        return CheckInHttpClient(target or settings, transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture
def controller(settings: Settings, engine: FakeEngine, fake_client: AsyncMock) -> ScanSessionController:
    return ScanSessionController(settings=settings, engine=engine, client=fake_client)


@pytest.fixture
def events() -> List[ControllerEvent]:
    return []
