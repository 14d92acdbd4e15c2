from __future__ import annotations

import asyncio
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Sequence, Tuple

from config import settings

logger = logging.getLogger("windhub.converter")

GRIB2JSON_ARGS = ("--data", "--names", "--compact")


class ConversionError(RuntimeError):
    """Raised when a raw GRIB2 payload cannot be converted to servable JSON."""


class Grib2JsonConverter:
    """Runs the grib2json CLI on a downloaded GRIB2 file and returns its JSON output."""

    def __init__(self, command: str | Sequence[str] | None = None, *, timeout: float | None = None) -> None:
        raw_command = command if command is not None else settings.converter_command
        if isinstance(raw_command, str):
            self._command = shlex.split(raw_command)
        else:
            self._command = list(raw_command)
        if not self._command:
            raise ValueError("converter command must not be empty")
        self._timeout = timeout if timeout is not None else settings.converter_timeout_seconds

    @property
    def command(self) -> list[str]:
        return list(self._command)

    async def convert(self, raw_path: Path) -> bytes:
        args = [*self._command, *GRIB2JSON_ARGS, str(raw_path)]
        try:
            exit_code, stdout, stderr = await self._exec(args)
        except asyncio.TimeoutError as exc:
            raise ConversionError(f"converter timed out after {self._timeout:.0f}s") from exc
        except OSError as exc:
            raise ConversionError(f"converter could not be started ({self._command[0]}): {exc}") from exc
        if exit_code != 0:
            message = stderr.decode(errors="replace").strip() or stdout.decode(errors="replace").strip()
            raise ConversionError(f"converter exited with {exit_code}: {message or 'no output'}")
        if not stdout.strip():
            raise ConversionError("converter produced no output")
        logger.info("converted %s (%d bytes)", raw_path.name, len(stdout))
        return stdout

    async def _exec(self, args: list[str]) -> Tuple[int, bytes, bytes]:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except NotImplementedError:
            loop = asyncio.get_running_loop()

            def _run_blocking() -> Tuple[int, bytes, bytes]:
                completed = subprocess.run(
                    args,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    timeout=self._timeout,
                    check=False,
                )
                return completed.returncode, completed.stdout, completed.stderr

            try:
                return await loop.run_in_executor(None, _run_blocking)
            except subprocess.TimeoutExpired as exc:
                raise asyncio.TimeoutError() from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise
        return process.returncode or 0, stdout, stderr


grib2json_converter = Grib2JsonConverter()

__all__ = ["ConversionError", "GRIB2JSON_ARGS", "Grib2JsonConverter", "grib2json_converter"]
