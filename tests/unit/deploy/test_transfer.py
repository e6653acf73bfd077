"""Unit tests for ArtifactTransfer."""

from unittest.mock import Mock

import pytest

from nixdeploy.core.protocols import ProcessResult
from nixdeploy.deploy.base import BuildStrategy, TargetAddress
from nixdeploy.deploy.exceptions import BuildError, RemoteCommandError, TransferError
from nixdeploy.deploy.session import CommandResult, SSHSession
from nixdeploy.deploy.transfer import DEFAULT_BUILD_OPTIONS, ArtifactTransfer, last_store_path

from conftest import ScriptedProcess

DRV = "/nix/store/aaaa-nixos-system-web1.drv"
OUT = "/nix/store/bbbb-nixos-system-web1"
NIX_SSHOPTS = {"NIX_SSHOPTS": "-o ControlPath=/tmp/nixdeploy-test/ssh_control -p 22"}


def create_mock_session(run_result=None, run_error=None):
    """Mock SSHSession with a fixed destination and transport env."""
    session = Mock(spec=SSHSession)
    session.destination = "root@web1"
    session.target = TargetAddress(host="web1")
    session.transport_env.return_value = dict(NIX_SSHOPTS)
    if run_error is not None:
        session.run.side_effect = run_error
    else:
        session.run.return_value = run_result or CommandResult(argv=[], returncode=0, stdout="", stderr="")
    return session


class TestBuildOnDeployer:
    """Test local realize → closure push."""

    def test_realizes_locally_then_pushes_output(self, logger):
        process = ScriptedProcess({
            "local:nix-store --realize": ProcessResult(0, OUT + "\n", "")
        })
        session = create_mock_session()

        result = ArtifactTransfer(session, process, logger).transfer(
            BuildStrategy.BUILD_ON_DEPLOYER, DRV, OUT, ["--option", "cores", "4"]
        )

        assert result == OUT
        assert [c.cmd for c in process.calls] == [
            ["nix-store", "--realize", DRV, "--option", "cores", "4"],
            ["nix-copy-closure", "--to", "root@web1", OUT, "--gzip", "--use-substitutes"],
        ]
        assert process.calls[1].extra_env == NIX_SSHOPTS
        session.run.assert_not_called()

    def test_local_build_failure_raises_build_error(self, logger):
        process = ScriptedProcess({
            "local:nix-store --realize": ProcessResult(1, "", "error: builder failed")
        })

        with pytest.raises(BuildError) as exc_info:
            ArtifactTransfer(create_mock_session(), process, logger).transfer(
                BuildStrategy.BUILD_ON_DEPLOYER, DRV, OUT
            )

        assert "builder failed" in str(exc_info.value)
        assert process.count("nix-copy-closure") == 0

    def test_push_failure_raises_transfer_error(self, logger):
        process = ScriptedProcess({
            "local:nix-store --realize": ProcessResult(0, OUT + "\n", ""),
            "local:nix-copy-closure": ProcessResult(1, "", "connection reset"),
        })

        with pytest.raises(TransferError):
            ArtifactTransfer(create_mock_session(), process, logger).transfer(
                BuildStrategy.BUILD_ON_DEPLOYER, DRV, OUT
            )

    def test_default_build_options(self, logger):
        process = ScriptedProcess({
            "local:nix-store --realize": ProcessResult(0, OUT + "\n", "")
        })

        ArtifactTransfer(create_mock_session(), process, logger).transfer(
            BuildStrategy.BUILD_ON_DEPLOYER, DRV, OUT
        )

        assert process.calls[0].cmd[3:] == list(DEFAULT_BUILD_OPTIONS)


class TestBuildOnTarget:
    """Test derivation push → remote realize."""

    def test_pushes_plan_then_realizes_remotely(self, logger):
        realized = "/nix/store/zzzz-nixos-system-web1"
        process = ScriptedProcess()
        session = create_mock_session(
            CommandResult(argv=[], returncode=0, stdout=realized + "\n", stderr="")
        )

        result = ArtifactTransfer(session, process, logger).transfer(
            BuildStrategy.BUILD_ON_TARGET, DRV, OUT, ["--option", "cores", "4"]
        )

        assert result == realized
        assert process.calls[0].cmd == [
            "nix-copy-closure", "--to", "root@web1", DRV, "--gzip", "--use-substitutes"
        ]
        session.run.assert_called_once_with(
            ["nix-store", "--realize", DRV, "--option", "cores", "4"],
            privileged=True
        )
        assert process.count("local:nix-store") == 0

    def test_falls_back_to_expected_output_path(self, logger):
        session = create_mock_session(CommandResult(argv=[], returncode=0, stdout="", stderr=""))

        result = ArtifactTransfer(session, ScriptedProcess(), logger).transfer(
            BuildStrategy.BUILD_ON_TARGET, DRV, OUT
        )

        assert result == OUT

    def test_remote_build_failure_raises_build_error(self, logger):
        failed = CommandResult(argv=["nix-store"], returncode=1, stdout="", stderr="out of disk")
        session = create_mock_session(run_error=RemoteCommandError(failed))

        with pytest.raises(BuildError) as exc_info:
            ArtifactTransfer(session, ScriptedProcess(), logger).transfer(
                BuildStrategy.BUILD_ON_TARGET, DRV, OUT
            )

        assert "out of disk" in str(exc_info.value)

    def test_plan_push_failure_stops_before_build(self, logger):
        process = ScriptedProcess({
            "local:nix-copy-closure": ProcessResult(1, "", "host unreachable")
        })
        session = create_mock_session()

        with pytest.raises(TransferError):
            ArtifactTransfer(session, process, logger).transfer(
                BuildStrategy.BUILD_ON_TARGET, DRV, OUT
            )

        session.run.assert_not_called()


class TestLastStorePath:
    def test_picks_last_non_empty_line(self):
        assert last_store_path("warning: x\n/nix/store/a\n\n") == "/nix/store/a"

    def test_empty_output(self):
        assert last_store_path("\n  \n") is None
