"""
Evidence transcoding through the ffmpeg command line.

Captured chunks are written to a scratch directory, converted to an
H.264/AAC MP4 for broad playback compatibility, and read back. The scratch
directory is removed on every path.
"""

import logging
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from config import Config
from exceptions import TranscodeError
from models import EncodedVideo
from utils import PerformanceTimer, build_alert_filename, rename_extension

logger = logging.getLogger(__name__)

# Raw elementary streams need an explicit demuxer and frame rate
RAW_INPUT_FORMATS = {"mjpeg", "h264"}


class Transcoder:
    """Stateless converter from captured chunks to a deliverable container."""

    def __init__(self, config: Config):
        self.config = config
        self.ffmpeg = config.transcode.ffmpeg_binary

    def build_command(self, source: Path, target: Path, source_format: str,
                      target_format: str, framerate: Optional[int] = None) -> List[str]:
        cmd = [self.ffmpeg, "-y", "-loglevel", "error"]
        if source_format in RAW_INPUT_FORMATS:
            cmd += ["-f", source_format, "-framerate", str(framerate or self.config.camera.fps)]
        cmd += [
            "-i", str(source),
            "-c:v", self.config.transcode.video_codec,
            "-pix_fmt", "yuv420p",
            "-vf", "scale=trunc(iw/2)*2:trunc(ih/2)*2",
            "-c:a", self.config.transcode.audio_codec,
            "-movflags", "+faststart",
            "-f", target_format,
            str(target),
        ]
        return cmd

    def transcode(self, chunks: Sequence[bytes], source_format: str,
                  target_format: Optional[str] = None, filename: Optional[str] = None,
                  framerate: Optional[int] = None) -> EncodedVideo:
        """Convert a complete chunk sequence. Raises TranscodeError on any failure."""
        target_format = target_format or self.config.transcode.target_format
        if not chunks:
            raise TranscodeError("Nothing to transcode: capture produced no chunks")

        out_name = (rename_extension(filename, target_format) if filename
                    else build_alert_filename(target_format))

        with tempfile.TemporaryDirectory(prefix="intruder_") as scratch:
            source = Path(scratch) / f"source.{source_format}"
            target = Path(scratch) / f"target.{target_format}"
            with open(source, 'wb') as f:
                for chunk in chunks:
                    f.write(chunk)

            cmd = self.build_command(source, target, source_format, target_format, framerate)
            try:
                with PerformanceTimer(f"Transcode {source_format} -> {target_format}"):
                    subprocess.run(cmd, check=True, capture_output=True,
                                   timeout=self.config.transcode.timeout)
            except FileNotFoundError as e:
                raise TranscodeError(f"ffmpeg binary not found: {self.ffmpeg}") from e
            except subprocess.TimeoutExpired as e:
                raise TranscodeError(f"ffmpeg timed out after {self.config.transcode.timeout:.0f}s") from e
            except subprocess.CalledProcessError as e:
                stderr = (e.stderr or b"").decode('utf-8', errors='replace').strip()
                raise TranscodeError(f"ffmpeg exited with {e.returncode}: {stderr}") from e

            if not target.exists() or target.stat().st_size == 0:
                raise TranscodeError("ffmpeg produced no output")
            data = target.read_bytes()

        logger.info(f"Transcoded {sum(len(c) for c in chunks):,} bytes of {source_format} "
                    f"into {len(data):,} bytes of {target_format} ({out_name})")
        return EncodedVideo(
            data=data,
            filename=out_name,
            mime_type=f"video/{target_format}",
            source_format=source_format,
            target_format=target_format,
        )
