"""Production implementations of dependency injection protocols.

This module provides real implementations that wrap actual external dependencies
(filesystem, subprocess, environment, etc.). These are used in production code.

For testing, use mocks or test doubles instead of these implementations.
"""

import os
import platform
import shutil
import subprocess
import sys
import tempfile
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List, TextIO, Union

from nixdeploy.core.protocols import ProcessResult


class ConsoleLogger:
    """Production logger that writes to stderr.

    stdout is reserved for machine-readable output (the deploy id), so every
    level goes to stderr. Debug messages are only shown in verbose mode.
    """

    def __init__(self, verbose: bool = False, stream: Optional[TextIO] = None):
        self.verbose = verbose
        self.stream = stream

    def _write(self, message: str) -> None:
        print(message, file=self.stream or sys.stderr)

    def info(self, message: str) -> None:
        """Print info message with the stage marker."""
        self._write(f"--- {message}")

    def warning(self, message: str) -> None:
        """Print warning message."""
        self._write(f"Warning: {message}")

    def error(self, message: str) -> None:
        """Print error message."""
        self._write(f"Error: {message}")

    def debug(self, message: str) -> None:
        """Print debug message (verbose only)."""
        if self.verbose:
            self._write(f"Debug: {message}")


class RealFileSystemService:
    """Production filesystem service using real pathlib and shutil operations."""

    def read_file(self, path: Union[str, Path]) -> str:
        """Read entire file as string."""
        with open(path, 'r') as f:
            return f.read()

    def write_file(self, path: Union[str, Path], content: str, mode: Optional[int] = None) -> None:
        """Write string content to file.

        When mode is given the file is created with that mode, so secret
        material is never world-readable, not even briefly.
        """
        flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC
        fd = os.open(path, flags, mode if mode is not None else 0o666)
        with os.fdopen(fd, 'w') as f:
            f.write(content)
        if mode is not None:
            os.chmod(path, mode)

    def make_temp_dir(self, prefix: str = "nixdeploy-") -> str:
        """Create a private (0700) temporary directory."""
        return tempfile.mkdtemp(prefix=prefix)

    def rmtree(self, path: Union[str, Path]) -> None:
        """Recursively remove directory tree."""
        shutil.rmtree(path)


class SubprocessExecutor:
    """Production process executor using real subprocess.run."""

    def run(
        self,
        cmd: List[str],
        input: Optional[str] = None,
        extra_env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None
    ) -> ProcessResult:
        """Run command and capture its output.

        A missing executable is reported like a shell would (exit 127)
        rather than raised, so callers handle one failure shape.
        """
        env = None
        if extra_env:
            env = dict(os.environ)
            env.update(extra_env)

        try:
            completed = subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                text=True,
                env=env,
                cwd=cwd
            )
        except FileNotFoundError as e:
            return ProcessResult(returncode=127, stdout="", stderr=str(e))

        return ProcessResult(
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or ""
        )


class SystemEnvironmentProvider:
    """Production environment provider using real os and platform modules."""

    def get_environ(self) -> Dict[str, str]:
        """Get copy of environment variables."""
        return dict(os.environ)

    def get_system_type(self) -> str:
        """Get system type ('Darwin', 'Linux', etc.)."""
        return platform.system()

    def get_machine(self) -> str:
        """Get machine architecture."""
        return platform.machine()


class YamlConfigLoader:
    """Production config loader using real YAML parser."""

    def __init__(self, filesystem: 'RealFileSystemService'):
        """Initialize with filesystem service for reading files."""
        self.fs = filesystem

    def load_yaml(self, path: str) -> Dict[str, Any]:
        """Load YAML file and return parsed dictionary."""
        content = self.fs.read_file(path)
        return yaml.safe_load(content) or {}
