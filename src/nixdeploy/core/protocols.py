"""Protocol definitions for dependency injection.

This module defines Protocol-based abstractions for all external dependencies
of a deploy: local processes, the local filesystem, the environment, logging
and configuration loading. Protocols use structural typing, so any class
implementing these methods satisfies the Protocol without explicit inheritance.

Benefits:
- Easy to mock in tests (just implement the methods)
- No inheritance required
- Clear interface contracts between the deploy stages and the outside world
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Dict, Any, Optional, List, Union


@dataclass
class ProcessResult:
    """Outcome of a finished local process."""
    returncode: int
    stdout: str = ""
    stderr: str = ""


class Logger(Protocol):
    """Abstraction for logging operations.

    Stage code never prints; everything user-visible goes through here.
    """

    def info(self, message: str) -> None:
        """Log informational message."""
        ...

    def warning(self, message: str) -> None:
        """Log warning message."""
        ...

    def error(self, message: str) -> None:
        """Log error message."""
        ...

    def debug(self, message: str) -> None:
        """Log debug message."""
        ...


class FileSystemService(Protocol):
    """Abstraction for local filesystem operations.

    Used for the per-session scratch directory (control socket, identity key).
    """

    def read_file(self, path: Union[str, Path]) -> str:
        """Read entire file as string."""
        ...

    def write_file(self, path: Union[str, Path], content: str, mode: Optional[int] = None) -> None:
        """Write string content to file, optionally applying a permission mode."""
        ...

    def make_temp_dir(self, prefix: str = "nixdeploy-") -> str:
        """Create a private temporary directory and return its path."""
        ...

    def rmtree(self, path: Union[str, Path]) -> None:
        """Recursively remove directory tree."""
        ...


class ProcessExecutor(Protocol):
    """Abstraction for local process execution.

    Wraps subprocess.run to enable testing without spawning real processes.
    """

    def run(
        self,
        cmd: List[str],
        input: Optional[str] = None,
        extra_env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None
    ) -> ProcessResult:
        """Run command to completion, capturing stdout and stderr."""
        ...


class EnvironmentProvider(Protocol):
    """Abstraction for environment access.

    Wraps os.environ and the platform module so strategy selection can be
    tested for any deployer architecture.
    """

    def get_environ(self) -> Dict[str, str]:
        """Get copy of environment variables."""
        ...

    def get_system_type(self) -> str:
        """Get system type ('Darwin', 'Linux', etc.)."""
        ...

    def get_machine(self) -> str:
        """Get machine architecture ('x86_64', 'arm64', 'aarch64', etc.)."""
        ...


class ConfigLoader(Protocol):
    """Abstraction for configuration file loading.

    Wraps YAML loading to enable testing with mock configurations
    without requiring actual config files.
    """

    def load_yaml(self, path: str) -> Dict[str, Any]:
        """Load YAML file and return parsed dictionary."""
        ...
