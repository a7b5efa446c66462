"""
Capture Session
===============
Shared lifecycle of the enrollment and liveness controllers:

  load models -> open camera -> periodic sampling -> teardown

The session owns the camera and the ticker and releases both on every exit
path.  Subclasses keep their state in an immutable value and advance it with
pure transition functions; this class only performs the I/O between them.
"""

import asyncio
import inspect
import logging
import time

from .errors import CameraError, ErrorKind, ModelLoadError
from .preprocess import prepare_capture
from .ticker import Ticker

logger = logging.getLogger(__name__)


def monotonic_ms():
    return time.monotonic() * 1000.0


async def call_maybe_async(fn, *args):
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class CaptureSession:
    """Base class; subclasses implement the hooks at the bottom."""

    terminal_phases = frozenset()

    def __init__(self, models, camera, interval, clock=None, on_change=None):
        self.models = models
        self.camera = camera
        self.clock = clock or monotonic_ms
        self.on_change = on_change
        self.last_frame = None
        self._ticker = Ticker(interval)
        self._cancelled = False
        self.state = None

    # ----- public API -----

    @property
    def cancelled(self):
        return self._cancelled

    @property
    def finished(self):
        return self.state is not None and self.state.phase in self.terminal_phases

    async def run(self):
        """Drive the session to a terminal phase and return the final state.

        A session cancelled before it got to run never touches the models or
        the camera.
        """
        if self._cancelled:
            return self.state
        try:
            self._set_state(self._on_loading())
            if not await self._load_models():
                return self.state

            self._set_state(self._on_awaiting_camera())
            if not await self._open_camera():
                return self.state

            self._set_state(self._on_started(self.clock()))
            self._ticker.start(self._safe_tick)
            await self._ticker.wait()
            return self.state
        finally:
            self._teardown()

    def cancel(self):
        """Stop sampling, release the camera and discard session state, now."""
        if self._cancelled:
            return
        self._cancelled = True
        self._ticker.stop()
        self.camera.release()
        self.last_frame = None
        self._set_state(self._on_cancel())

    # ----- lifecycle -----

    async def _load_models(self):
        if getattr(self.models, "ready", False):
            return not self._cancelled
        try:
            await asyncio.to_thread(self.models.load)
        except ModelLoadError:
            logger.exception("Model load failed")
            self._fail(ErrorKind.MODEL_LOAD)
            return False
        except Exception:
            logger.exception("Unexpected error while loading models")
            self._fail(ErrorKind.MODEL_LOAD)
            return False
        return not self._cancelled

    async def _open_camera(self):
        try:
            await asyncio.to_thread(self.camera.open)
        except CameraError as e:
            logger.warning("Camera unavailable: %s", e)
            self._fail(e.kind)
            return False
        except Exception:
            logger.exception("Unexpected camera error")
            self._fail(ErrorKind.CAMERA)
            return False
        return not self._cancelled

    def _teardown(self):
        self._ticker.stop()
        self.camera.release()

    def _fail(self, kind):
        if not self._cancelled:
            self._set_state(self._on_failure(kind))

    def _set_state(self, state):
        self.state = state
        if self.on_change is not None:
            try:
                self.on_change(state)
            except Exception:
                logger.exception("State listener failed")

    async def _safe_tick(self):
        try:
            await self._tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            # an escaping error would silently end the sampling loop
            logger.exception("Sampling tick failed")
        if self._cancelled or self.finished:
            self._ticker.stop()

    # ----- frame helpers -----

    async def _read_frame(self):
        """Latest camera frame, or None when the read failed."""
        try:
            frame = await asyncio.to_thread(self.camera.read)
        except Exception:
            logger.exception("Camera read failed")
            return None
        if frame is not None:
            self.last_frame = frame
        return frame

    async def _describe(self, frame, mirrored=False):
        """Descriptor detection on a prepared copy of frame.

        None when there is no frame, the frame cannot be prepared, or no face
        is found, so a capture attempt always ends in a retry or a result.
        """
        if frame is None:
            return None
        try:
            prepared = prepare_capture(frame, mirrored=mirrored)
        except Exception:
            logger.exception("Frame preparation failed")
            return None
        return await self._detect(prepared, True)

    async def _detect(self, frame, with_descriptor):
        """Detection, or None when there is no face or the model failed."""
        if frame is None:
            return None
        try:
            return await asyncio.to_thread(self.models.detect, frame, with_descriptor)
        except Exception:
            logger.exception("Detection failed")
            return None

    # ----- hooks -----

    def _on_loading(self):
        raise NotImplementedError

    def _on_awaiting_camera(self):
        raise NotImplementedError

    def _on_started(self, now_ms):
        raise NotImplementedError

    def _on_failure(self, kind):
        raise NotImplementedError

    def _on_cancel(self):
        raise NotImplementedError

    async def _tick(self):
        raise NotImplementedError
