"""Scan-to-check-in orchestration for the terminal."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
from collections.abc import Callable
from typing import Any, Dict, List, Optional

from .backend.http_client import CheckInHttpClient
from .config import Settings, get_settings
from .payload import ParseFailure, ParsedPayload, parse
from .sensors.qr_camera import CameraQrEngine, DetectionEngine, DetectionEngineError
from .state import (
    CheckInFailure,
    CheckInOutcome,
    CheckInSuccess,
    ControllerEvent,
    FailureKind,
    ScanSession,
    SessionState,
)

logger = logging.getLogger(__name__)

SessionObserver = Callable[[ControllerEvent], None]

INVALID_FORMAT_MESSAGE = "Invalid QR code format."
CAMERA_UNAVAILABLE_MESSAGE = "Camera unavailable"
INTERNAL_ERROR_MESSAGE = "Please try again"


class SessionFlowError(RuntimeError):
    """Raised when a scan cycle step fails in a way the user should see."""

    def __init__(
        self,
        user_message: str,
        *,
        kind: FailureKind = FailureKind.INTERNAL,
        log_message: Optional[str] = None,
    ) -> None:
        super().__init__(log_message or user_message)
        self.user_message = user_message
        self.kind = kind


class ScanSessionController:
    """
    Owns the scanner lifecycle and turns decoded text into a check-in.

    Flow of one scan cycle:

    1. start()            IDLE -> SCANNING, camera engaged
    2. decode event       SCANNING -> DECODED, camera released before parsing
    3. parse ok           DECODED -> CHECKING_IN, one call to the check-in service
    4. outcome            CHECKING_IN -> SUCCEEDED / FAILED
    5. reset()            SUCCEEDED / FAILED -> IDLE (-> SCANNING with auto restart)

    Not thread-safe; every method must run on the event loop that owns the controller.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        engine: Optional[DetectionEngine] = None,
        client: Optional[CheckInHttpClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._engine: DetectionEngine = engine or CameraQrEngine(self.settings.camera)
        self._client = client or CheckInHttpClient(self.settings)
        self._session = ScanSession()
        self._observers: List[SessionObserver] = []
        self._ui_subscribers: List[asyncio.Queue[ControllerEvent]] = []
        self._processing_task: Optional[asyncio.Task[None]] = None
        self._frame_errors = 0

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def session(self) -> ScanSession:
        return self._session

    # ============================================================
    # Observers
    # ============================================================

    def add_observer(self, observer: SessionObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: SessionObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def register_ui(self) -> asyncio.Queue[ControllerEvent]:
        queue: asyncio.Queue[ControllerEvent] = asyncio.Queue(maxsize=self.settings.performance.ui_event_queue_size)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[ControllerEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    def _broadcast(self, event: ControllerEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                logger.warning("Session observer failed: %s", e)

        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    def _advance(
        self,
        state: SessionState,
        *,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        previous = self._session.state
        self._session.state = state
        logger.info("🔁 [STATE] %s -> %s", previous.value, state.value)
        self._broadcast(ControllerEvent(type="state", state=state, data=data or {}, error=error))

    # ============================================================
    # Lifecycle
    # ============================================================

    async def start(self) -> bool:
        """Begin a scan cycle; only valid from IDLE."""
        if self._session.state != SessionState.IDLE:
            logger.info("Scan start ignored in state %s", self._session.state.value)
            return False

        self._session.cycle += 1
        self._session.last_raw_payload = None
        self._session.parsed = None
        self._session.last_outcome = None
        self._frame_errors = 0

        logger.info("🎬 [SCAN_START] cycle=%d", self._session.cycle)
        self._advance(SessionState.SCANNING, data={"cycle": self._session.cycle})
        try:
            await self._engine.start(self._handle_decode, self._handle_frame_error)
        except DetectionEngineError as exc:
            logger.error("❌ Detection engine failed to start: %s", exc)
            await self._stop_engine()
            self._finish(CheckInFailure(CAMERA_UNAVAILABLE_MESSAGE, FailureKind.CAMERA))
        except Exception as exc:
            logger.exception("❌ Unexpected detection engine error: %s", exc)
            await self._stop_engine()
            self._finish(CheckInFailure(CAMERA_UNAVAILABLE_MESSAGE, FailureKind.CAMERA))
        return True

    async def reset(self) -> bool:
        """'Scan again': leave a terminal state, optionally restarting the scanner."""
        if not self._session.is_terminal:
            logger.info("Reset ignored in state %s", self._session.state.value)
            return False

        self._session.last_outcome = None
        self._advance(SessionState.IDLE, data={"last_raw_payload": self._session.last_raw_payload})
        if self.settings.scanner.auto_restart:
            await self.start()
        return True

    async def teardown(self) -> None:
        """Release the camera and network client on every exit path."""
        logger.info("Tearing down scan session controller")
        task = self._processing_task
        self._processing_task = None
        if task is not None and not task.done():
            task.cancel()
            (result,) = await asyncio.gather(task, return_exceptions=True)
            if isinstance(result, Exception):
                logger.warning("Error cancelling processing task: %s", result)

        await self._stop_engine()
        self._session.last_outcome = None
        self._advance(SessionState.IDLE, data={"shutdown": True})

        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing check-in client: %s", e)
        logger.info("Scan session controller stopped")

    async def wait_for_outcome(self) -> ScanSession:
        """Wait for in-flight processing (if any) and return the session."""
        task = self._processing_task
        if task is not None and not task.done():
            await asyncio.shield(task)
        return self._session

    def copy_raw_payload(self) -> Optional[str]:
        """Hand the retained raw payload to the UI with a short-lived feedback event."""
        text = self._session.last_raw_payload
        self._broadcast(
            ControllerEvent(
                type="feedback",
                state=self._session.state,
                data={
                    "action": "copy",
                    "ok": text is not None,
                    "text": text,
                    "duration": self.settings.scanner.feedback_duration_seconds,
                },
            )
        )
        return text

    # ============================================================
    # Engine callbacks
    # ============================================================

    async def _handle_decode(self, text: str) -> None:
        self.handle_decode(text)

    def handle_decode(self, text: str) -> bool:
        """Accept decoded text from the engine; returns False when ignored."""
        if self._session.state != SessionState.SCANNING:
            logger.debug("Decode ignored in state %s", self._session.state.value)
            return False

        self._session.last_raw_payload = text
        self._advance(SessionState.DECODED, data={"raw": text})
        self._processing_task = asyncio.create_task(self._process_decode(text), name="checkin-process")
        return True

    async def _handle_frame_error(self, message: str) -> None:
        self._frame_errors += 1
        if self._frame_errors % 100 == 1:
            logger.debug("Frame error (%d so far): %s", self._frame_errors, message)

    # ============================================================
    # Processing
    # ============================================================

    async def _process_decode(self, text: str) -> None:
        try:
            await self._stop_engine()
            parsed = self._parse(text)
            outcome = await self._check_in(parsed)
        except asyncio.CancelledError:
            logger.info("⚠️ Processing cancelled")
            raise
        except SessionFlowError as exc:
            logger.error("❌ Scan failed: %s", exc)
            outcome = CheckInFailure(exc.user_message, exc.kind)
        except Exception as exc:
            logger.exception("❌ Unexpected processing error: %s", exc)
            outcome = CheckInFailure(INTERNAL_ERROR_MESSAGE, FailureKind.INTERNAL)
        self._finish(outcome)

    def _parse(self, text: str) -> ParsedPayload:
        result = parse(text)
        if isinstance(result, ParseFailure):
            raise SessionFlowError(
                INVALID_FORMAT_MESSAGE,
                kind=FailureKind.PARSE,
                log_message=f"Unparseable QR payload ({result.reason}): {text!r}",
            )
        self._session.parsed = result
        return result

    async def _check_in(self, parsed: ParsedPayload) -> CheckInOutcome:
        self._advance(SessionState.CHECKING_IN, data=parsed.to_dict())
        return await self._client.submit(parsed.attendee_id, parsed.event_id)

    def _finish(self, outcome: CheckInOutcome) -> None:
        self._session.last_outcome = outcome
        data = outcome.to_dict()
        data["last_raw_payload"] = self._session.last_raw_payload
        if isinstance(outcome, CheckInSuccess):
            logger.info("✅ Checked in usn=%s eid=%s: %s", outcome.attendee_id, outcome.event_id, outcome.message)
            self._advance(SessionState.SUCCEEDED, data=data)
        else:
            logger.info("❌ Check-in failed (%s): %s", outcome.kind.value, outcome.reason)
            self._advance(SessionState.FAILED, data=data, error=outcome.reason)

    async def _stop_engine(self) -> None:
        try:
            await self._engine.stop()
        except Exception as e:
            logger.warning("Error stopping detection engine: %s", e)


__all__ = ["ScanSessionController", "SessionFlowError", "SessionObserver"]
