"""Export worker: runs ffmpeg on a composition plan and reports progress."""

import asyncio
from pathlib import Path
from typing import Callable, List, Optional

from loguru import logger

from clipex.workers.composition import CompositionPlan
from clipex.workers.filtergraph import format_number as num
from clipex.workers.subtitles import parse_timestamp

ProgressCallback = Callable[[float], None]


class ExportError(Exception):
    """Raised when the encoder fails or cannot be started."""
    pass


class ExportTimeoutError(ExportError):
    """Raised when an encode exceeds its time limit."""
    pass


class ExportWorker:
    """Encodes composition plans to H.264/AAC MP4 files."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        preset: str = "veryfast",
        timeout_floor: float = 600,
        timeout_per_second: float = 6.0,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.preset = preset
        self.timeout_floor = timeout_floor
        self.timeout_per_second = timeout_per_second

    def timeout_for(self, duration: float) -> float:
        """Encode time limit: a floor plus a per-second-of-output allowance."""
        return max(self.timeout_floor, duration * self.timeout_per_second)

    def build_command(self, plan: CompositionPlan, output_path: Path) -> List[str]:
        """Assemble the ffmpeg argument list for a plan."""
        graph = plan.graph
        cmd = [self.ffmpeg_path, "-y"]
        for graph_input in graph.inputs:
            cmd.extend(graph_input.to_args())

        cmd.extend(["-filter_complex", graph.serialize()])
        cmd.extend(["-map", f"[{graph.video_output}]"])
        if graph.audio_output:
            cmd.extend(["-map", f"[{graph.audio_output}]", "-c:a", "aac", "-b:a", "192k"])

        cmd.extend([
            "-c:v", "libx264",
            "-preset", self.preset,
            "-pix_fmt", "yuv420p",
            "-r", num(plan.canvas.fps),
            "-t", num(plan.duration),
            "-movflags", "+faststart",
            "-progress", "pipe:1",
            "-nostats",
            str(output_path),
        ])
        return cmd

    async def export(
        self,
        plan: CompositionPlan,
        output_path: Path,
        progress_callback: Optional[ProgressCallback] = None,
        on_start: Optional[Callable[[], None]] = None,
    ) -> Path:
        """Run the encoder and wait for it to finish.

        Args:
            plan: Compiled composition
            output_path: Destination MP4 file
            progress_callback: Called with percent done (0-100) as ffmpeg reports time
            on_start: Called once the encoder process is running

        Returns:
            The output path

        Raises:
            ExportTimeoutError: If the encode exceeds its time limit
            ExportError: If ffmpeg cannot start or exits non-zero
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(plan, output_path)
        timeout_seconds = self.timeout_for(plan.duration)

        logger.info(
            f"Encoding {plan.duration:.2f}s at {plan.canvas.resolution} "
            f"({len(plan.inputs)} inputs) -> {output_path}"
        )
        logger.debug(f"FFmpeg filter program: {plan.program}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExportError(f"Failed to start FFmpeg ({self.ffmpeg_path}): {e}") from e

        if on_start:
            on_start()

        stderr_lines: List[str] = []

        async def read_stderr():
            assert proc.stderr is not None
            async for raw in proc.stderr:
                line = raw.decode("utf-8", errors="replace").strip()
                if line:
                    stderr_lines.append(line)
                    del stderr_lines[:-50]  # Keep the tail only

        async def read_progress():
            # -progress pipe:1 writes key=value lines; out_time is HH:MM:SS.micro
            assert proc.stdout is not None
            async for raw in proc.stdout:
                line = raw.decode("utf-8", errors="replace").strip()
                if not line.startswith("out_time=") or plan.duration <= 0:
                    continue
                current = parse_timestamp(line.split("=", 1)[1])
                if progress_callback and current > 0:
                    progress_callback(min(current / plan.duration, 1.0) * 100)

        try:
            await asyncio.wait_for(
                asyncio.gather(read_stderr(), read_progress(), proc.wait()),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            self._discard(output_path)
            raise ExportTimeoutError(
                f"FFmpeg encode timed out after {timeout_seconds:g}s "
                f"for {plan.duration:.0f}s video"
            ) from None
        except BaseException:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            self._discard(output_path)
            raise

        if proc.returncode != 0:
            self._discard(output_path)
            stderr_text = "\n".join(stderr_lines[-20:])
            raise ExportError(
                f"FFmpeg encode failed (exit {proc.returncode}): {stderr_text[-1000:]}"
            )

        if not output_path.exists():
            raise ExportError(f"FFmpeg finished but produced no output at {output_path}")

        logger.info(f"Encoded {output_path} ({output_path.stat().st_size} bytes)")
        return output_path

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove partial output {path}: {e}")
