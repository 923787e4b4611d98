"""QR detection engine backed by an OpenCV camera capture."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Optional, Protocol

import cv2
import numpy as np

from ..config import CameraSettings

logger = logging.getLogger(__name__)

DecodeCallback = Callable[[str], Awaitable[None]]
FrameErrorCallback = Callable[[str], Awaitable[None]]

NO_CODE_IN_FRAME = "No QR code found"


class DetectionEngineError(RuntimeError):
    """Raised when the detection engine cannot begin consuming frames."""


class DetectionEngine(Protocol):
    """Narrow capability the scan controller depends on."""

    async def start(self, on_decode: DecodeCallback, on_frame_error: FrameErrorCallback) -> None:
        ...

    async def stop(self) -> None:
        ...


class CameraQrEngine:
    """Samples camera frames and reports decoded QR text through async callbacks."""

    def __init__(self, camera: CameraSettings) -> None:
        self.camera = camera
        self._cap: Optional[cv2.VideoCapture] = None
        self._detector: Optional[cv2.QRCodeDetector] = None
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._on_decode: Optional[DecodeCallback] = None
        self._on_frame_error: Optional[FrameErrorCallback] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, on_decode: DecodeCallback, on_frame_error: FrameErrorCallback) -> None:
        async with self._lock:
            if self.running:
                logger.debug("QR engine already running")
                return
            loop = asyncio.get_running_loop()
            opened = await loop.run_in_executor(None, self._open_capture)
            if not opened:
                raise DetectionEngineError(f"Failed to open camera {self.camera.camera_id}")

            self._on_decode = on_decode
            self._on_frame_error = on_frame_error
            self._stop_event.clear()
            self._task = asyncio.create_task(self._scan_loop(), name="qr-scan-loop")
            logger.info("📷 QR engine started (camera_id=%d, fps=%d)", self.camera.camera_id, self.camera.fps)

    async def stop(self) -> None:
        async with self._lock:
            task = self._task
            self._task = None
            self._stop_event.set()
            try:
                if task is not None and task is not asyncio.current_task():
                    # the caller's own cancellation propagates; only the loop's outcome is collected
                    (result,) = await asyncio.gather(task, return_exceptions=True)
                    if isinstance(result, Exception):
                        logger.warning("Error during scan loop cleanup: %s", result)
            finally:
                self._release_capture()
                self._on_decode = None
                self._on_frame_error = None

    def _open_capture(self) -> bool:
        if self._cap is not None and self._cap.isOpened():
            return True
        logger.info("Opening camera (camera_id=%d)", self.camera.camera_id)
        cap = cv2.VideoCapture(self.camera.camera_id)
        if not cap.isOpened():
            logger.error("Failed to open camera %d", self.camera.camera_id)
            cap.release()
            return False
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.camera.resolution_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.camera.resolution_height)
        cap.set(cv2.CAP_PROP_FPS, self.camera.fps)
        self._cap = cap
        self._detector = cv2.QRCodeDetector()
        return True

    def _release_capture(self) -> None:
        if self._cap is not None:
            logger.info("Closing camera")
            self._cap.release()
        self._cap = None
        self._detector = None

    def _read_frame(self) -> Optional[np.ndarray]:
        if self._cap is None or not self._cap.isOpened():
            return None
        ret, frame = self._cap.read()
        if not ret or frame is None:
            return None
        return frame

    def _decode_frame(self, frame: np.ndarray) -> str:
        if self._detector is None:
            return ""
        data, _points, _ = self._detector.detectAndDecode(frame)
        return data or ""

    def _sample(self) -> tuple[Optional[str], Optional[str]]:
        """Grab and decode one frame; returns (text, frame_error)."""
        frame = self._read_frame()
        if frame is None:
            return None, "Frame not available"
        try:
            text = self._decode_frame(frame)
        except cv2.error as e:
            return None, f"Decoder error: {e}"
        if not text:
            return None, NO_CODE_IN_FRAME
        return text, None

    async def _scan_loop(self) -> None:
        interval = 1.0 / max(self.camera.fps, 1)
        loop = asyncio.get_running_loop()
        try:
            while not self._stop_event.is_set():
                text, frame_error = await loop.run_in_executor(None, self._sample)
                if self._stop_event.is_set():
                    break
                if text is not None and self._on_decode is not None:
                    logger.info("QR code detected (%d chars)", len(text))
                    await self._on_decode(text)
                elif frame_error is not None and self._on_frame_error is not None:
                    await self._on_frame_error(frame_error)
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("QR scan loop crashed")
        finally:
            logger.info("QR scan loop stopped")


__all__ = [
    "CameraQrEngine",
    "DetectionEngine",
    "DetectionEngineError",
    "DecodeCallback",
    "FrameErrorCallback",
    "NO_CODE_IN_FRAME",
]
