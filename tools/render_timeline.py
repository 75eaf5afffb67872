#!/usr/bin/env python3
"""Render a timeline JSON document to audio.

Loads a :class:`timeline.models.TimelineDocument`, renders the requested
window through :class:`export.pipeline.AudioExportPipeline` and writes either
a WAV mixdown (default) or the encoded container (``--encode``).  A JSON
summary is printed; WAV renders include peak, RMS and loudness figures so
they can be checked from CI without listening to them.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import soundfile

from audio.buffer import PCMBuffer
from audio.metrics import integrated_lufs, peak_dbfs, rms_dbfs
from audio.settings import AudioExportSettings
from export.pipeline import AudioExportPipeline, ExportProgress
from timeline.models import TimelineDocument

logger = logging.getLogger("render_timeline")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("timeline", type=Path, help="Timeline JSON document.")
    parser.add_argument("output", type=Path, help="Destination file.")
    parser.add_argument("--start", type=float, default=0.0, help="Window start in seconds.")
    parser.add_argument(
        "--end",
        type=float,
        default=None,
        help="Window end in seconds (defaults to the end of the last clip).",
    )
    parser.add_argument("--sample-rate", type=int, choices=(44_100, 48_000), default=48_000)
    parser.add_argument("--bitrate", type=int, default=256_000, help="Encoder bitrate in bit/s.")
    parser.add_argument("--normalize", action="store_true", help="Peak normalise the mix.")
    parser.add_argument(
        "--codec",
        action="append",
        dest="codecs",
        default=None,
        help="Preferred codec for --encode (repeatable, first available wins).",
    )
    parser.add_argument("--encode", action="store_true", help="Write an encoded file instead of WAV.")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print the JSON summary.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity.")
    return parser.parse_args(argv)


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _levels(buffer: PCMBuffer) -> Dict[str, Optional[float]]:
    def finite(value: float) -> Optional[float]:
        return None if value == float("-inf") else round(value, 3)

    return {
        "peak_dbfs": finite(peak_dbfs(buffer.samples)),
        "rms_dbfs": finite(rms_dbfs(buffer.samples)),
        "integrated_lufs": finite(integrated_lufs(buffer.samples, sample_rate=buffer.sample_rate)),
    }


async def _render(args: argparse.Namespace) -> Optional[Dict[str, object]]:
    document = TimelineDocument.load(args.timeline)
    end = args.end if args.end is not None else document.duration
    settings_payload: Dict[str, object] = {
        "sample_rate": args.sample_rate,
        "bitrate": args.bitrate,
        "normalize": args.normalize,
    }
    if args.codecs:
        settings_payload["codec_preferences"] = tuple(args.codecs)
    pipeline = AudioExportPipeline(AudioExportSettings(**settings_payload))

    phases: List[str] = []

    def on_progress(progress: ExportProgress) -> None:
        if not phases or phases[-1] != progress.phase.value:
            phases.append(progress.phase.value)
            logger.info("%s...", progress.phase.value)

    summary: Dict[str, object] = {
        "timeline": str(args.timeline),
        "output": str(args.output),
        "start": args.start,
        "end": end,
    }
    if args.encode:
        result = await pipeline.export_audio(document, args.start, end, on_progress)
        if result is None:
            return None
        args.output.write_bytes(result.data)
        summary.update(
            {
                "codec": result.codec,
                "chunks": len(result.chunks),
                "bytes": len(result.data),
                "duration": round(result.duration, 6),
            }
        )
    else:
        mixed = await pipeline.export_raw_audio(document, args.start, end, on_progress)
        if mixed is None:
            return None
        soundfile.write(str(args.output), mixed.samples, mixed.sample_rate, subtype="FLOAT")
        summary.update(
            {
                "channels": mixed.number_of_channels,
                "sample_rate": mixed.sample_rate,
                "frames": mixed.length,
                "duration": round(mixed.duration, 6),
                "levels": _levels(mixed),
            }
        )
    summary["phases"] = phases
    return summary


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    summary = asyncio.run(_render(args))
    if summary is None:
        print(json.dumps({"timeline": str(args.timeline), "rendered": False}))
        return 1
    print(json.dumps(summary, indent=2 if args.pretty else None))
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
