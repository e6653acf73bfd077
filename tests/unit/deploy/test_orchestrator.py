"""
Tests for NixosDeployer.

These run the real SSHSession and stage classes against ScriptedProcess, so
they check the full command sequence of a deploy end to end.
"""

import shlex
from unittest.mock import Mock

import pytest

from nixdeploy.core.protocols import EnvironmentProvider, ProcessResult
from nixdeploy.deploy.base import (
    ActivationAction,
    BuildStrategy,
    DeployRequest,
    SecretBundle,
    TargetAddress,
)
from nixdeploy.deploy.evaluator import EvaluationResult
from nixdeploy.deploy.exceptions import ActivationError, BuildError, RemoteConnectionError
from nixdeploy.deploy.orchestrator import NixosDeployer, assemble_build_options
from nixdeploy.deploy.session import SSHSession
from nixdeploy.deploy.transfer import DEFAULT_BUILD_OPTIONS

from conftest import LOCAL_WORK_DIR, REMOTE_WORK_DIR, ScriptedProcess

DRV = "/nix/store/aaaa-nixos-system-web1.drv"
OUT = "/nix/store/bbbb-nixos-system-web1"
SHIM = f"{REMOTE_WORK_DIR}/maybe-sudo.sh"


def create_mock_env(machine="x86_64", system="Linux"):
    env = Mock(spec=EnvironmentProvider)
    env.get_machine.return_value = machine
    env.get_system_type.return_value = system
    return env


def make_request(**kwargs):
    defaults = dict(
        build_plan=DRV,
        output_path=OUT,
        target=TargetAddress(host="web1.example.com"),
        local_system="x86_64-linux",
        target_system="x86_64-linux",
    )
    defaults.update(kwargs)
    return DeployRequest(**defaults)


def local_build(cmd):
    return ProcessResult(0, OUT + "\n", "")


def make_deployer(process, filesystem, logger):
    return NixosDeployer(process, filesystem, create_mock_env(), logger)


class TestDeploySameSystem:
    """Same-arch deploy with default settings."""

    def test_builds_locally_and_switches(self, filesystem, logger):
        process = ScriptedProcess({"local:nix-store --realize": local_build})

        result = make_deployer(process, filesystem, logger).deploy(make_request())

        assert result.success is True
        assert result.deploy_id == OUT
        assert result.strategy is BuildStrategy.BUILD_ON_DEPLOYER
        assert result.cleanup.success is True

        assert process.count("local:nix-store --realize") == 1
        copy = process.calls[process.index_of("local:nix-copy-closure")].cmd
        assert copy[:4] == ["nix-copy-closure", "--to", "root@web1.example.com", OUT]
        assert process.count("remote:nix-store --realize") == 0

        switch = process.index_of("remote:switch-to-configuration")
        assert shlex.split(process.calls[switch].text) == [
            SHIM, f"{OUT}/bin/switch-to-configuration", "switch"
        ]

    def test_stage_order(self, filesystem, logger):
        process = ScriptedProcess({"local:nix-store --realize": local_build})

        make_deployer(process, filesystem, logger).deploy(make_request())

        order = [
            process.index_of("remote:true"),
            process.index_of("remote:unpack-keys.sh /"),
            process.index_of("local:nix-store --realize"),
            process.index_of("local:nix-copy-closure"),
            process.index_of("remote:--set"),
            process.index_of("remote:switch-to-configuration"),
            process.index_of("remote:--delete-generations"),
            process.index_of("remote:nix-store --gc"),
            process.index_of("local:-O stop"),
        ]
        assert -1 not in order
        assert order == sorted(order)

    def test_default_retention_keeps_one_generation(self, filesystem, logger):
        process = ScriptedProcess({"local:nix-store --realize": local_build})

        make_deployer(process, filesystem, logger).deploy(make_request())

        prune = process.calls[process.index_of("remote:--delete-generations")]
        assert shlex.split(prune.text)[-2:] == ["--delete-generations", "+1"]

    def test_session_closed_exactly_once(self, filesystem, logger):
        process = ScriptedProcess({"local:nix-store --realize": local_build})

        make_deployer(process, filesystem, logger).deploy(make_request())

        assert process.count("local:-O stop") == 1
        filesystem.rmtree.assert_called_once_with(LOCAL_WORK_DIR)
        assert process.count(f"remote:rm -rf {REMOTE_WORK_DIR}") == 1

    def test_cleanup_failure_does_not_fail_deploy(self, filesystem, logger):
        process = ScriptedProcess({
            "local:nix-store --realize": local_build,
            "remote:nix-store --gc": ProcessResult(1, "", "gc lock"),
        })

        result = make_deployer(process, filesystem, logger).deploy(make_request())

        assert result.success is True
        assert result.cleanup.success is False


class TestDeployCrossSystem:
    """Deployer and target differ."""

    def test_cross_arch_builds_on_target(self, filesystem, logger):
        """aarch64 target from x86_64 deployer, build_on_target unset."""
        process = ScriptedProcess({
            "remote:nix-store --realize": ProcessResult(0, OUT + "\n", "")
        })
        request = make_request(target_system="aarch64-linux", build_on_target=False)

        result = make_deployer(process, filesystem, logger).deploy(request)

        assert result.strategy is BuildStrategy.BUILD_ON_TARGET
        assert process.count("local:nix-store --realize") == 0
        copy = process.calls[process.index_of("local:nix-copy-closure")].cmd
        assert copy[3] == DRV

        realize = process.calls[process.index_of("remote:nix-store --realize")]
        argv = shlex.split(realize.text)
        assert argv[:4] == [SHIM, "nix-store", "--realize", DRV]
        assert argv[4:] == list(DEFAULT_BUILD_OPTIONS)

    def test_detects_local_system_when_not_given(self, filesystem, logger):
        process = ScriptedProcess()
        env = create_mock_env(machine="arm64", system="Darwin")
        request = make_request(local_system=None, target_system="x86_64-linux")

        result = NixosDeployer(process, filesystem, env, logger).deploy(request)

        assert result.strategy is BuildStrategy.BUILD_ON_TARGET
        assert result.metadata["local_system"] == "aarch64-darwin"


class TestDeployFailures:
    """Fatal stage failures."""

    def test_switch_failure_is_partial_and_skips_cleanup(self, filesystem, logger):
        process = ScriptedProcess({
            "local:nix-store --realize": local_build,
            "remote:switch-to-configuration": ProcessResult(1, "", "failed to start nginx"),
        })

        with pytest.raises(ActivationError) as exc_info:
            make_deployer(process, filesystem, logger).deploy(make_request())

        assert exc_info.value.partially_applied is True
        assert process.count("remote:--delete-generations") == 0
        assert process.count("remote:nix-store --gc") == 0
        assert process.count("local:-O stop") == 1

    def test_connection_lost_during_switch_is_partial(self, filesystem, logger):
        """sshd or the network restarting mid-switch still counts as applied."""
        # Arrange
        process = ScriptedProcess({
            "local:nix-store --realize": local_build,
            "remote:switch-to-configuration": ProcessResult(255, "", "Connection to web1 closed by remote host."),
        })

        # Act
        with pytest.raises(ActivationError) as exc_info:
            make_deployer(process, filesystem, logger).deploy(make_request())

        # Assert
        assert exc_info.value.partially_applied is True
        assert "closed by remote host" in str(exc_info.value)
        assert process.index_of("remote:--set") < process.index_of("remote:switch-to-configuration")
        assert process.count("remote:--delete-generations") == 0
        assert process.count("local:-O stop") == 1

    def test_profile_failure_is_not_partial(self, filesystem, logger):
        process = ScriptedProcess({
            "local:nix-store --realize": local_build,
            "remote:--set": ProcessResult(1, "", "read-only file system"),
        })

        with pytest.raises(ActivationError) as exc_info:
            make_deployer(process, filesystem, logger).deploy(make_request())

        assert exc_info.value.partially_applied is False
        assert process.count("remote:switch-to-configuration") == 0

    def test_build_failure_leaves_profile_untouched(self, filesystem, logger):
        process = ScriptedProcess({
            "local:nix-store --realize": ProcessResult(1, "", "builder failed")
        })

        with pytest.raises(BuildError):
            make_deployer(process, filesystem, logger).deploy(make_request())

        assert process.count("remote:nix-env") == 0
        assert process.count("local:-O stop") == 1

    def test_unreachable_host(self, filesystem, logger):
        process = ScriptedProcess({"remote:true": ProcessResult(255, "", "No route to host")})

        with pytest.raises(RemoteConnectionError):
            make_deployer(process, filesystem, logger).deploy(make_request())

        assert process.count("local:nix-store") == 0
        assert process.count("local:-O stop") == 1

    def test_interrupt_still_closes_session(self, filesystem, logger):
        def interrupt(cmd):
            raise KeyboardInterrupt

        process = ScriptedProcess({"local:nix-store --realize": interrupt})

        with pytest.raises(KeyboardInterrupt):
            make_deployer(process, filesystem, logger).deploy(make_request())

        assert process.count("local:-O stop") == 1
        filesystem.rmtree.assert_called_once_with(LOCAL_WORK_DIR)


class TestDeployOptions:
    """Request fields flowing into remote commands."""

    def test_secrets_unpacked_before_build(self, filesystem, logger):
        process = ScriptedProcess({"local:nix-store --realize": local_build})
        request = make_request(secrets=SecretBundle({"api.key": "secret123"}))

        make_deployer(process, filesystem, logger).deploy(request)

        write = next(c for c in process.calls if c.is_remote and "cat >" in c.text)
        assert write.input == '{"api.key": "secret123"}'
        assert process.count("remote:unpack-keys.sh /") == 1
        assert process.index_of("remote:unpack-keys.sh /") < process.index_of("local:nix-store --realize")

    def test_action_and_gc_flags(self, filesystem, logger):
        process = ScriptedProcess({"local:nix-store --realize": local_build})
        request = make_request(action=ActivationAction.BOOT, perform_gc=False, retention_policy="30d")

        make_deployer(process, filesystem, logger).deploy(request)

        switch = process.calls[process.index_of("remote:switch-to-configuration")]
        assert shlex.split(switch.text)[-1] == "boot"
        assert process.count("remote:nix-store --gc") == 0
        assert process.count("remote:--delete-generations 30d") == 1

    def test_session_factory_receives_request_settings(self, filesystem, logger):
        process = ScriptedProcess({"local:nix-store --realize": local_build})
        factory = Mock(side_effect=SSHSession)
        request = make_request(ssh_private_key="KEY", verbose=True)

        NixosDeployer(process, filesystem, create_mock_env(), logger, session_factory=factory).deploy(request)

        kwargs = factory.call_args.kwargs
        assert kwargs["ssh_private_key"] == "KEY"
        assert kwargs["verbose"] is True


class TestAssembleBuildOptions:
    def test_defaults_then_trust_then_extra(self):
        evaluation = EvaluationResult(
            drv_path=DRV,
            out_path=OUT,
            current_system="x86_64-linux",
            substituters=["https://cache.example.org"],
            trusted_public_keys=["cache.example.org-1:abc="],
        )
        request = make_request(extra_build_options=("--cores", "4"))

        options = assemble_build_options(request, evaluation)

        assert options == [
            *DEFAULT_BUILD_OPTIONS,
            "--option", "substituters", "https://cache.example.org",
            "--option", "trusted-public-keys", "cache.example.org-1:abc=",
            "--cores", "4",
        ]

    def test_without_evaluation(self):
        assert assemble_build_options(make_request()) == list(DEFAULT_BUILD_OPTIONS)
