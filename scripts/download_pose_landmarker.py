#!/usr/bin/env python3
from __future__ import annotations

import sys
from pathlib import Path

from poseloop.estimators.model_assets import download_model, model_filename

OUT_DIR = Path("models/mediapipe")


def main() -> int:
    variant = sys.argv[1] if len(sys.argv) > 1 else "lite"
    out_path = OUT_DIR / model_filename(variant)
    print(f"Downloading pose model to {out_path} ...")
    download_model(variant, out_path)
    print("Done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
