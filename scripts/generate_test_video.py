#!/usr/bin/env python3
"""Generate a synthetic video plus an offset external audio track for sync testing.

The video carries 20 seconds of seeded pink noise over a color bar pattern.
The external track is the same noise, delayed by ``--offset`` seconds (or
trimmed at the head for a negative offset), so ``clipsync sync`` should
report roughly that offset.
"""

import argparse
import subprocess
from pathlib import Path

DURATION = 20
NOISE = f"anoisesrc=c=pink:seed=42:d={DURATION}:r=48000:a=0.5"


def generate_pair(out_dir: Path, offset: float) -> tuple[Path, Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    video = out_dir / "synthetic.mp4"
    audio = out_dir / "synthetic_mic.wav"

    subprocess.run([
        "ffmpeg", "-y",
        "-f", "lavfi", "-i", f"testsrc=s=320x240:r=30:d={DURATION}",
        "-f", "lavfi", "-i", NOISE,
        "-c:v", "libx264", "-c:a", "aac",
        "-shortest",
        str(video),
    ], check=True)

    if offset >= 0:
        ms = int(round(offset * 1000))
        shift = f"adelay={ms}|{ms}"
    else:
        shift = f"atrim=start={-offset},asetpts=PTS-STARTPTS"
    subprocess.run([
        "ffmpeg", "-y",
        "-f", "lavfi", "-i", NOISE,
        "-af", shift,
        str(audio),
    ], check=True)

    print(f"Generated: {video}")
    print(f"Generated: {audio} (offset {offset:+.3f}s)")
    return video, audio


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("out_dir", nargs="?", type=Path, default=Path("tests/fixtures"))
    parser.add_argument("--offset", type=float, default=1.5, help="Delay of the external track in seconds")
    args = parser.parse_args()
    generate_pair(args.out_dir, args.offset)
