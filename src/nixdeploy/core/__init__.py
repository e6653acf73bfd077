"""Core dependency injection infrastructure for nixdeploy.

This module provides Protocol-based abstractions that keep every deploy stage
testable. All external dependencies (local processes, filesystem, environment,
logging, config files) are abstracted via Protocols with production
implementations.

Design:
- Protocol-based abstractions (typing.Protocol) for structural typing
- Production implementations for real-world use
- Easy mocking for unit tests
"""

from nixdeploy.core.protocols import (
    Logger,
    FileSystemService,
    ProcessExecutor,
    ProcessResult,
    EnvironmentProvider,
    ConfigLoader,
)

from nixdeploy.core.implementations import (
    ConsoleLogger,
    RealFileSystemService,
    SubprocessExecutor,
    SystemEnvironmentProvider,
    YamlConfigLoader,
)

__all__ = [
    # Protocols
    "Logger",
    "FileSystemService",
    "ProcessExecutor",
    "ProcessResult",
    "EnvironmentProvider",
    "ConfigLoader",
    # Implementations
    "ConsoleLogger",
    "RealFileSystemService",
    "SubprocessExecutor",
    "SystemEnvironmentProvider",
    "YamlConfigLoader",
]
