"""
Face Gate demo
==============
Runs enrollment or the liveness-gated verification against the local
profile store, with an OpenCV preview window.

    python -m face_gate.app enroll --user owner-1
    python -m face_gate.app verify --user owner-1

Press 'q' to cancel.
"""

import argparse
import asyncio
import logging

import cv2

from .camera import OpenCVCamera
from .config import ServerSettings
from .enrollment import EnrollmentController, EnrollmentPhase, hold_progress
from .liveness import LivenessController, LivenessPhase
from .models import FaceModels
from .preprocess import mirror
from .service import FaceAuthService
from .store import ProfileStore

WINDOW = "Face Gate (press 'q' to cancel)"
FRAME_DELAY_S = 0.03


def _banner(frame, title, subtitle, color):
    """Darkened bottom banner with two centred lines of text."""
    h, w = frame.shape[:2]
    roi = frame[h - 80:h, 0:w]
    cv2.addWeighted(roi, 0.4, roi, 0, 0, roi)

    text_size = cv2.getTextSize(title, cv2.FONT_HERSHEY_SIMPLEX, 0.7, 2)[0]
    text_x = max(10, (w - text_size[0]) // 2)
    cv2.putText(frame, title, (text_x, h - 45),
                cv2.FONT_HERSHEY_SIMPLEX, 0.7, color, 2)
    if subtitle:
        cv2.putText(frame, subtitle, (text_x, h - 15),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.5, (200, 200, 200), 1)


def draw_enrollment_overlay(frame, state, now_ms):
    step = f"Step {min(state.step_index + 1, len(state.steps))}/{len(state.steps)}"
    if state.phase == EnrollmentPhase.POSING:
        progress = hold_progress(state, now_ms)
        h, w = frame.shape[:2]
        cv2.rectangle(frame, (10, 10), (10 + int((w - 20) * progress), 20), (0, 255, 0), cv2.FILLED)
        pose = state.pose.value if state.pose is not None else "no face"
        _banner(frame, state.message, f"{step} | pose: {pose}", (0, 255, 255))
    elif state.phase == EnrollmentPhase.SUCCESS:
        _banner(frame, state.message, None, (0, 255, 0))
    elif state.phase == EnrollmentPhase.ERROR:
        _banner(frame, state.message, None, (0, 0, 255))
    else:
        _banner(frame, state.message, step, (200, 200, 200))


def draw_liveness_overlay(frame, state, now_ms, config):
    if state.phase == LivenessPhase.CHALLENGE:
        remaining = max(0.0, (config.timeout_ms - state.elapsed_ms(now_ms)) / 1000.0)
        counters = (f"Blinks {state.blink_count}/{config.min_blinks} | "
                    f"Moves {state.head_movement_count}/{config.min_head_movements} | "
                    f"Time: {remaining:.1f}s")
        _banner(frame, state.message, counters, (0, 255, 255))
    elif state.phase == LivenessPhase.VERIFIED:
        _banner(frame, "LIVENESS VERIFIED", None, (0, 255, 0))
    elif state.phase == LivenessPhase.ERROR:
        _banner(frame, state.message, None, (0, 0, 255))
    else:
        _banner(frame, state.message, None, (200, 200, 200))


async def preview(controller, draw):
    """Show the latest sampled frame until the controller finishes or 'q' is hit."""
    task = asyncio.create_task(controller.run())
    while not task.done():
        frame = controller.last_frame
        if frame is not None and controller.state is not None:
            shown = mirror(frame)
            draw(shown, controller.state, controller.clock())
            cv2.imshow(WINDOW, shown)
        key = cv2.waitKey(1) & 0xFF
        if key == ord('q'):
            print("[INFO] Cancelled.")
            controller.cancel()
        await asyncio.sleep(FRAME_DELAY_S)
    return await task


def main(argv=None):
    parser = argparse.ArgumentParser(description="Face second factor demo")
    parser.add_argument("mode", choices=["enroll", "verify"])
    parser.add_argument("--user", required=True, help="owner id in the profile store")
    parser.add_argument("--camera", type=int, default=0)
    parser.add_argument("--detector", choices=["hog", "mtcnn"], default="hog")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    settings = ServerSettings.from_env()
    store = ProfileStore(settings.store_path)
    store.add_user(args.user)
    service = FaceAuthService(store, settings)

    models = FaceModels(detector=args.detector)
    camera = OpenCVCamera(index=args.camera)

    if args.mode == "enroll":
        controller = EnrollmentController(models, camera, service.enrollment_submitter(args.user))
        draw = draw_enrollment_overlay
    else:
        token = service.issue_face_verify_token(args.user)
        controller = LivenessController(models, camera, service.verification_submitter(), token)
        draw = lambda frame, state, now: draw_liveness_overlay(frame, state, now, controller.config)

    print(f"[INFO] Starting {args.mode} for {args.user}... Press 'q' to cancel.")
    try:
        state = asyncio.run(preview(controller, draw))
    finally:
        cv2.destroyAllWindows()

    print(f"[INFO] Finished: {state.phase.value}. {state.message}")
    if args.mode == "verify" and controller.result is not None:
        print(f"[OK] Session token issued for {controller.result.user['id']}")
    if args.mode == "enroll":
        print(f"[INFO] Face status: {service.status(args.user)}")
    return 0 if state.phase.value in ("success", "verified") else 1


if __name__ == "__main__":
    raise SystemExit(main())
