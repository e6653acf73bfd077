"""Activation: point the system profile at the new output and switch to it."""

from nixdeploy.core.protocols import Logger
from .base import ActivationAction
from .exceptions import ActivationError, RemoteCommandError, RemoteConnectionError
from .session import SSHSession


class Activator:
    """Repoints a profile and runs the output's activation entrypoint."""

    def __init__(self, session: SSHSession, logger: Logger):
        self.session = session
        self.log = logger

    def activate(self, output_path: str, profile: str, action: ActivationAction) -> None:
        """
        Set profile to output_path, then run switch-to-configuration.

        Setting the profile alone changes nothing that is running. Only the
        switch does, and if it fails the profile has already moved; no
        rollback is attempted. Losing the connection during the switch
        (sshd or the network restarting) is reported the same way.

        Raises:
            ActivationError: partially_applied is False if the profile could
                not be set, True if the switch itself failed
        """
        self.log.info("activating configuration")
        try:
            self.session.run(["nix-env", "--profile", profile, "--set", output_path], privileged=True)
        except RemoteCommandError as e:
            raise ActivationError(
                f"Could not set {profile} to {output_path}",
                partially_applied=False,
                context=(e.result.stderr or "").strip() or None
            ) from e

        switch = f"{output_path}/bin/switch-to-configuration"
        verb = ActivationAction(action).value
        try:
            self.session.run([switch, verb], privileged=True)
        except RemoteCommandError as e:
            raise ActivationError(
                f"switch-to-configuration {verb} failed on "
                f"{self.session.target}; {profile} already points at {output_path}",
                partially_applied=True,
                context=(e.result.stderr or "").strip()[-2000:] or None
            ) from e
        except RemoteConnectionError as e:
            raise ActivationError(
                f"Lost connection to {self.session.target} during switch-to-configuration {verb}; "
                f"{profile} already points at {output_path}",
                partially_applied=True,
                context=e.context
            ) from e
