"""
Evaluator - Instantiate a NixOS configuration into deploy inputs.

Wraps nix-instantiate: the configuration is instantiated (writing the
derivation to the local store), then evaluated again to read back the
derivation path, output path, binary caches and the deployer's system.
Running it twice with the same inputs yields the same result.
"""

import json
import os
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from nixdeploy.core.protocols import Logger, ProcessExecutor
from .exceptions import EvaluationError

INSTANTIATE_EXPR = """
{ system, configuration, hermetic ? false, ... }:
let
  os =
    if hermetic
      then import configuration
      else import <nixpkgs/nixos> { inherit system configuration; };
in {
  inherit (builtins) currentSystem;
  substituters =
    builtins.concatStringsSep " " os.config.nix.settings.substituters;
  trusted-public-keys =
    builtins.concatStringsSep " " os.config.nix.settings.trusted-public-keys;
  drv_path = os.system.drvPath;
  out_path = os.system;
}
"""


@dataclass
class EvaluationInputs:
    """
    Inputs to one evaluation.

    Attributes:
        config: Path to the NixOS configuration (or a hermetic entry point)
        config_pwd: Working directory for the evaluation
        target_system: Nix system to evaluate for (e.g. "aarch64-linux")
        nix_path: NIX_PATH override, if any
        hermetic: Import config directly instead of through <nixpkgs/nixos>
        extra_args: Extra nix-instantiate arguments, in order
    """
    config: str
    config_pwd: str = "."
    target_system: str = "x86_64-linux"
    nix_path: Optional[str] = None
    hermetic: bool = False
    extra_args: Tuple[str, ...] = ()


@dataclass
class EvaluationResult:
    """What the evaluator reports about a configuration."""
    drv_path: str
    out_path: str
    current_system: str
    substituters: List[str] = field(default_factory=list)
    trusted_public_keys: List[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, payload: str) -> "EvaluationResult":
        """
        Parse evaluator output.

        Raises:
            EvaluationError: If the payload is not the expected JSON object
        """
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise EvaluationError("Evaluator output is not valid JSON", context=str(e))
        if not isinstance(data, dict):
            raise EvaluationError("Evaluator output must be a JSON object")

        missing = [k for k in ("drv_path", "out_path", "currentSystem") if not data.get(k)]
        if missing:
            raise EvaluationError(f"Evaluator output is missing: {', '.join(missing)}")

        return cls(
            drv_path=data["drv_path"],
            out_path=data["out_path"],
            current_system=data["currentSystem"],
            substituters=(data.get("substituters") or "").split(),
            trusted_public_keys=(data.get("trusted-public-keys") or "").split(),
        )

    def to_json(self) -> str:
        return json.dumps({
            "drv_path": self.drv_path,
            "out_path": self.out_path,
            "currentSystem": self.current_system,
            "substituters": " ".join(self.substituters),
            "trusted-public-keys": " ".join(self.trusted_public_keys),
        }, indent=2)

    def trust_build_options(self) -> List[str]:
        """nix-store options that trust the configuration's binary caches."""
        options = []
        if self.substituters:
            options += ["--option", "substituters", " ".join(self.substituters)]
        if self.trusted_public_keys:
            options += ["--option", "trusted-public-keys", " ".join(self.trusted_public_keys)]
        return options


class NixInstantiateEvaluator:
    """Runs nix-instantiate on the deployer."""

    def __init__(self, process_executor: ProcessExecutor, logger: Logger):
        self.process = process_executor
        self.log = logger

    def build_command(self, inputs: EvaluationInputs) -> List[str]:
        # relative to config_pwd, where nix-instantiate runs
        config_path = os.path.realpath(os.path.join(inputs.config_pwd, inputs.config))
        return [
            "nix-instantiate", "--show-trace",
            "--expr", INSTANTIATE_EXPR,
            "--argstr", "configuration", config_path,
            "--argstr", "system", inputs.target_system,
            "--arg", "hermetic", "true" if inputs.hermetic else "false",
            *inputs.extra_args,
        ]

    def _run(self, cmd: Sequence[str], inputs: EvaluationInputs, stage: str) -> str:
        extra_env = {"NIX_PATH": inputs.nix_path} if inputs.nix_path and inputs.nix_path != "-" else None
        self.log.debug(f"running ({stage}): {' '.join(cmd[:2])} ... {' '.join(cmd[-3:])}")
        result = self.process.run(
            list(cmd),
            extra_env=extra_env,
            cwd=os.path.realpath(inputs.config_pwd)
        )
        if result.returncode != 0:
            raise EvaluationError(
                f"nix-instantiate ({stage}) failed for {inputs.config}",
                context=(result.stderr or "").strip()[-2000:] or None
            )
        return result.stdout

    def evaluate(self, inputs: EvaluationInputs) -> EvaluationResult:
        """
        Instantiate and evaluate a configuration.

        Raises:
            EvaluationError: If nix-instantiate fails or its output is invalid
        """
        self.log.info(f"evaluating {inputs.config} for {inputs.target_system}")
        base = self.build_command(inputs)

        # --eval does not write derivations to the store, so instantiate first
        self._run(base + ["-A", "out_path"], inputs, "instantiating")
        payload = self._run(base + ["--eval", "--strict", "--json"], inputs, "evaluating")
        return EvaluationResult.from_json(payload)
