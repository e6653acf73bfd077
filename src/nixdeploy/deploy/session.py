"""
SSHSession - One multiplexed SSH channel per deploy.

All remote commands, file uploads and closure copies of a deploy go through
a single OpenSSH control master, so repeated commands skip the handshake.
The master is stopped and the local scratch directory removed when the
session closes, whatever the outcome of the deploy.

Usage:
    with SSHSession(target, process, fs, logger) as session:
        session.run(["nix-env", "--version"], privileged=True)
"""

import shlex
from dataclasses import dataclass
from importlib import resources
from typing import Dict, List, Optional, Sequence

from nixdeploy.core.protocols import (
    FileSystemService,
    Logger,
    ProcessExecutor,
    ProcessResult,
)
from .base import HostKeyPolicy, TargetAddress
from .exceptions import RemoteCommandError, RemoteConnectionError, TransferError

# ssh reserves this exit status for its own failures
SSH_ERROR_EXIT = 255

CONTROL_PERSIST_SECONDS = 60
PRIVILEGE_SHIM = "maybe-sudo.sh"


@dataclass
class CommandResult:
    """Outcome of one remote command."""
    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class SSHSession:
    """
    Owns the SSH control master and every remote side effect of a deploy.

    The remote scratch directory and the privilege shim are created lazily,
    on first use, and reused for the rest of the session.
    """

    def __init__(
        self,
        target: TargetAddress,
        process_executor: ProcessExecutor,
        filesystem: FileSystemService,
        logger: Logger,
        host_key_policy: HostKeyPolicy = HostKeyPolicy.INSECURE,
        ssh_private_key: Optional[str] = None,
        verbose: bool = False
    ):
        """
        Initialize SSH session (no connection is made until open()).

        Args:
            target: Host to connect to
            process_executor: Runs the local ssh/scp binaries
            filesystem: Manages the local scratch directory
            logger: Logging abstraction
            host_key_policy: How to treat the target's host key
            ssh_private_key: Private key material to authenticate with
            verbose: Pass -v to ssh
        """
        self.target = target
        self.process = process_executor
        self.fs = filesystem
        self.log = logger
        self.host_key_policy = host_key_policy
        self.ssh_private_key = ssh_private_key
        self.verbose = verbose

        self.local_work_dir: Optional[str] = None
        self.ssh_opts: List[str] = []
        self.scp_opts: List[str] = []
        self._remote_work_dir: Optional[str] = None
        self._shim_path: Optional[str] = None
        self._connect_attempted = False
        self._closed = False

    def __enter__(self) -> "SSHSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    @property
    def destination(self) -> str:
        return self.target.destination

    @property
    def scp_destination(self) -> str:
        # scp needs IPv6 literals bracketed to tell them from the path
        if ':' in self.target.host:
            return f"{self.target.user}@[{self.target.host}]"
        return self.target.destination

    def _build_options(self) -> None:
        control_path = f"{self.local_work_dir}/ssh_control"
        common = [
            "-o", "ControlMaster=auto",
            "-o", f"ControlPersist={CONTROL_PERSIST_SECONDS}",
            "-o", f"ControlPath={control_path}",
            *self.host_key_policy.ssh_options(),
            # interactive authentication is not possible
            "-o", "BatchMode=yes",
        ]

        if self.ssh_private_key:
            key_file = f"{self.local_work_dir}/ssh_key"
            key = self.ssh_private_key
            if not key.endswith("\n"):
                key += "\n"
            self.fs.write_file(key_file, key, mode=0o600)
            common += ["-o", f"IdentityFile={key_file}"]

        self.ssh_opts = list(common)
        if self.verbose:
            self.ssh_opts.append("-v")
        self.ssh_opts += ["-p", str(self.target.port)]
        self.scp_opts = common + ["-P", str(self.target.port)]

    def open(self) -> "SSHSession":
        """
        Create the local scratch directory and bring up the control master.

        Raises:
            RemoteConnectionError: If the host cannot be reached or refuses
                authentication
        """
        if self._closed:
            raise RemoteConnectionError(f"Session to {self.target} already closed")

        self.local_work_dir = self.fs.make_temp_dir(prefix="nixdeploy-")
        try:
            self._build_options()
            self.log.info(f"opening ssh connection to {self.target}")
            self._connect_attempted = True
            result = self._ssh("true")
            if result.returncode != 0:
                raise RemoteConnectionError(
                    f"Could not connect to {self.target}",
                    context=(result.stderr or "").strip() or f"ssh exited with {result.returncode}"
                )
        except BaseException:
            self.close()
            raise
        return self

    def _ssh(self, remote_command: str, input: Optional[str] = None) -> ProcessResult:
        cmd = ["ssh", *self.ssh_opts, self.destination, remote_command]
        return self.process.run(cmd, input=input)

    def exec(
        self,
        argv: Sequence[str],
        privileged: bool = False,
        input: Optional[str] = None
    ) -> CommandResult:
        """
        Run argv on the target and return its result without checking it.

        Arguments are quoted with shlex, so the remote shell rebuilds exactly
        the given argument vector (whitespace and metacharacters included).

        Args:
            argv: Remote argument vector
            privileged: Run through the privilege shim (sudo unless root)
            input: Text fed to the remote command's stdin
        """
        argv = [str(a) for a in argv]
        if privileged:
            argv = [self.install_privilege_shim()] + argv

        command_line = shlex.join(argv)
        self.log.debug(f"[{self.destination}] {command_line}")
        result = self._ssh(command_line, input=input)
        if result.stderr and self.verbose:
            self.log.debug(result.stderr.rstrip())
        return CommandResult(
            argv=argv,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr
        )

    def run(
        self,
        argv: Sequence[str],
        privileged: bool = False,
        input: Optional[str] = None
    ) -> CommandResult:
        """
        Run argv on the target, failing on a non-zero exit.

        Raises:
            RemoteConnectionError: If ssh itself failed (exit 255)
            RemoteCommandError: If the remote command exited non-zero
        """
        result = self.exec(argv, privileged=privileged, input=input)
        if result.returncode == SSH_ERROR_EXIT:
            raise RemoteConnectionError(
                f"Lost connection to {self.target}",
                context=(result.stderr or "").strip() or result.command_line
            )
        if not result.ok:
            raise RemoteCommandError(result, context=f"Host: {self.target}")
        return result

    @property
    def remote_work_dir(self) -> str:
        """Ephemeral directory on the target, created on first access."""
        if self._remote_work_dir is None:
            result = self.run(["mktemp", "-d"])
            path = result.stdout.strip()
            if not path:
                raise TransferError(
                    f"mktemp on {self.target} returned no directory",
                    context=result.stderr.strip() or None
                )
            self._remote_work_dir = path
        return self._remote_work_dir

    def upload(self, local_path: str, remote_path: str) -> None:
        """
        Copy a local file to the target with scp over the shared channel.

        Raises:
            TransferError: If scp fails
        """
        cmd = ["scp", *self.scp_opts, local_path, f"{self.scp_destination}:{remote_path}"]
        self.log.debug(f"uploading {local_path} -> {remote_path}")
        result = self.process.run(cmd)
        if result.returncode != 0:
            raise TransferError(
                f"Failed to upload {local_path} to {self.target}:{remote_path}",
                context=(result.stderr or "").strip() or None
            )

    def upload_helper(self, name: str, remote_path: str) -> None:
        """Upload one of the bundled helper scripts."""
        helper = resources.files("nixdeploy.deploy") / "scripts" / name
        with resources.as_file(helper) as local_path:
            self.upload(str(local_path), remote_path)

    def write_remote(self, content: str, remote_path: str) -> None:
        """
        Stream content into a remote file (created with mode 0600).

        Raises:
            TransferError: If the remote write fails
        """
        script = f"umask 077 && cat > {shlex.quote(remote_path)}"
        result = self.exec(["sh", "-c", script], input=content)
        if not result.ok:
            raise TransferError(
                f"Failed to write {remote_path} on {self.target}",
                context=(result.stderr or "").strip() or None
            )

    def install_privilege_shim(self) -> str:
        """
        Upload the privilege shim once and return its remote path.

        The shim execs its arguments directly when already root and through
        sudo otherwise (passwordless sudo is assumed).
        """
        if self._shim_path is None:
            path = f"{self.remote_work_dir}/{PRIVILEGE_SHIM}"
            self.upload_helper(PRIVILEGE_SHIM, path)
            self.run(["chmod", "+x", path])
            self._shim_path = path
        return self._shim_path

    def transport_env(self) -> Dict[str, str]:
        """Environment that makes nix-copy-closure reuse this channel."""
        return {"NIX_SSHOPTS": " ".join(self.ssh_opts)}

    def close(self) -> None:
        """
        Tear the session down. Safe to call more than once; only the first
        call does anything.

        Note:
            Never raises. Problems are logged as warnings, since close() runs
            while another error may already be propagating.
        """
        if self._closed:
            return
        self._closed = True

        if self._remote_work_dir is not None:
            try:
                result = self.exec(["rm", "-rf", self._remote_work_dir])
                if not result.ok:
                    self.log.warning(
                        f"Could not remove remote scratch directory {self._remote_work_dir}: "
                        f"{result.stderr.strip()}"
                    )
            except Exception as e:
                self.log.warning(f"Could not remove remote scratch directory: {e}")

        if self._connect_attempted:
            self.log.info("closing persistent ssh-connection")
            try:
                self.process.run(["ssh", *self.ssh_opts, "-O", "stop", self.destination])
            except Exception as e:
                self.log.warning(f"Could not stop ssh control master: {e}")

        if self.local_work_dir is not None:
            try:
                self.fs.rmtree(self.local_work_dir)
            except OSError as e:
                self.log.warning(f"Could not remove {self.local_work_dir}: {e}")
