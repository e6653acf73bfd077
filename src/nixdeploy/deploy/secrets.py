"""Secret provisioning: stage the key bundle on the target before activation."""

from nixdeploy.core.protocols import Logger
from .base import SecretBundle
from .exceptions import RemoteCommandError, UnpackError
from .session import SSHSession

UNPACK_HELPER = "unpack-keys.sh"
PACKED_KEYS_FILE = "packed-keys.json"


class SecretProvisioner:
    """
    Uploads the packed key bundle and unpacks it on the target.

    The new configuration's activation scripts may read these keys, so
    provision() must complete before anything is activated.
    """

    def __init__(self, session: SSHSession, logger: Logger):
        self.session = session
        self.log = logger

    def provision(self, bundle: SecretBundle) -> str:
        """
        Ship the bundle and run the unpack helper through the privilege shim.

        An empty bundle is still unpacked, which leaves an empty keys
        directory on the target.

        Returns:
            Remote path of the uploaded bundle

        Raises:
            TransferError: If a helper or the bundle could not be uploaded
            UnpackError: If the unpack helper failed on the target
        """
        self.log.info(f"uploading {len(bundle)} key(s)")

        work_dir = self.session.remote_work_dir
        shim_path = self.session.install_privilege_shim()
        unpack_path = f"{work_dir}/{UNPACK_HELPER}"
        bundle_path = f"{work_dir}/{PACKED_KEYS_FILE}"

        self.session.upload_helper(UNPACK_HELPER, unpack_path)
        self.session.write_remote(bundle.to_json(), bundle_path)
        self.session.run(["chmod", "+x", shim_path, unpack_path])

        self.log.info("unpacking keys")
        try:
            self.session.run([unpack_path, bundle_path], privileged=True)
        except RemoteCommandError as e:
            raise UnpackError(
                f"Unpacking keys failed on {self.session.target}",
                context=(e.result.stderr or "").strip() or None
            ) from e

        return bundle_path
