from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from functools import partial
from pathlib import Path

from poseloop.config import PipelineConfig, load_pipeline_config, with_overrides


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="poseloop real-time pose tracking")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run-webcam", help="Track pose live from a webcam with a skeleton overlay")
    _add_pipeline_args(run)
    run.add_argument("--camera-id", type=int, default=None, help="Webcam device id")
    run.add_argument(
        "--camera-name",
        default=None,
        help='Preferred webcam name (e.g., "Logitech C270"). Resolves to camera index when possible.',
    )
    run.add_argument("--facing-mode", choices=["user", "environment"], default=None, help="Preferred camera direction")
    run.add_argument("--width", type=int, default=None, help="Requested capture width")
    run.add_argument("--height", type=int, default=None, help="Requested capture height")
    run.add_argument("--no-mirror", action="store_true", help="Show the camera unmirrored")
    run.add_argument("--duration-minutes", type=float, default=None, help="Stop automatically after N minutes")

    analyze = sub.add_parser("analyze-video", help="Run the tracking pipeline over a recorded video")
    _add_pipeline_args(analyze)
    analyze.add_argument("--input-video", required=True, help="Path to recorded video file")
    analyze.add_argument("--display", action="store_true", help="Show the annotated video while processing")

    sub.add_parser("list-cameras", help="List available webcam devices")

    download = sub.add_parser("download-model", help="Fetch a pose landmarker model into the cache")
    download.add_argument("--variant", choices=["lite", "full", "heavy"], default="lite")
    download.add_argument("--output-dir", default=None, help="Directory for the .task file (default: cache)")

    return parser.parse_args(argv)


def _add_pipeline_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", default="configs/pipeline.yaml", help="Pipeline config YAML")
    p.add_argument("--delegate", choices=["GPU", "CPU"], default=None, help="Inference delegate")
    p.add_argument("--model-path", default=None, help="Local pose_landmarker .task file")
    p.add_argument("--threshold", type=float, default=None, help="Minimum visibility for drawing a landmark")


def build_config(args: argparse.Namespace) -> PipelineConfig:
    cfg = load_pipeline_config(Path(args.config))
    estimator = with_overrides(cfg.estimator, delegate=args.delegate, model_path=args.model_path)
    overlay = with_overrides(cfg.overlay, visibility_threshold=args.threshold)
    capture, loop = cfg.capture, cfg.loop
    if args.command == "run-webcam":
        capture = with_overrides(
            capture,
            camera_id=args.camera_id,
            camera_name=args.camera_name,
            facing_mode=args.facing_mode,
            width=args.width,
            height=args.height,
        )
        duration_s = args.duration_minutes * 60.0 if args.duration_minutes is not None else None
        loop = with_overrides(loop, duration_s=duration_s)
        if args.no_mirror:
            loop = replace(loop, mirror=False)
    return PipelineConfig(capture=capture, estimator=estimator, overlay=overlay, loop=loop)


def run_webcam(args: argparse.Namespace) -> int:
    from poseloop.loop import FrameLoopController, LoopState
    from poseloop.preview import PreviewWindow

    cfg = build_config(args)
    controller = FrameLoopController(config=cfg, preview=PreviewWindow(cfg.loop.window_name))
    print("Starting camera and loading the pose model. Press q in the window to stop.")
    try:
        state = controller.run()
    except KeyboardInterrupt:
        controller.stop()
        state = controller.state

    if state is LoopState.ERROR:
        print(f"Error: {controller.error_message}")
        return 1
    _print_summary(controller.summary())
    return 0


def analyze_video_cmd(args: argparse.Namespace) -> int:
    from poseloop.backends import Backends
    from poseloop.camera import VideoFileFrameSource
    from poseloop.estimators.factory import build_estimator
    from poseloop.loop import FrameLoopController, LoopState
    from poseloop.preview import PreviewWindow
    from poseloop.scheduler import FrameScheduler

    cfg = build_config(args)
    input_video = Path(args.input_video)
    backends = Backends(
        name="video-file",
        frame_source_factory=partial(VideoFileFrameSource, input_video),
        estimator_factory=partial(build_estimator, "mediapipe"),
    )
    preview = PreviewWindow(cfg.loop.window_name) if args.display else None
    controller = FrameLoopController(
        config=cfg,
        backends=backends,
        scheduler=FrameScheduler(),
        preview=preview,
    )
    state = controller.run()
    if state is LoopState.ERROR:
        print(f"Error: {controller.error_message}")
        return 1
    print(f"Analyzed: {input_video}")
    _print_summary(controller.summary())
    return 0


def list_cameras() -> int:
    from poseloop.camera import list_cameras as discover

    cameras = discover()
    if not cameras:
        print("No cameras found.")
        return 1

    print("Available cameras:")
    for cam in cameras:
        print(f"  [{cam.idx}] {cam.name}")
    return 0


def download_model(args: argparse.Namespace) -> int:
    from poseloop.estimators.model_assets import DEFAULT_MODEL_DIR, download_model as fetch, model_filename

    out_dir = Path(args.output_dir) if args.output_dir else DEFAULT_MODEL_DIR
    out_path = fetch(args.variant, out_dir / model_filename(args.variant))
    print(f"Saved pose model to {out_path}")
    return 0


def _print_summary(summary: dict) -> None:
    print("Session summary:")
    print(f"  frames processed: {summary['processed_frames']}")
    print(f"  detection rate: {summary['detection_rate']:.3f}")
    print(f"  smoothed fps: {summary['fps_smoothed']:.1f}")
    print(f"  avg latency (ms): {summary['latency_ms_avg']:.2f}")
    print(f"  p95 latency (ms): {summary['latency_ms_p95']:.2f}")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "run-webcam":
        return run_webcam(args)
    if args.command == "analyze-video":
        return analyze_video_cmd(args)
    if args.command == "list-cameras":
        return list_cameras()
    if args.command == "download-model":
        return download_model(args)
    raise ValueError(f"Unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
