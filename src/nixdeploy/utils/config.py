"""Deploy profile configuration (YAML) with CLI overrides"""
from typing import Any, Dict, Optional

import yaml

from nixdeploy.core.protocols import ConfigLoader
from nixdeploy.deploy.base import DEFAULT_PROFILE, DEFAULT_RETENTION_POLICY
from nixdeploy.deploy.exceptions import ConfigurationError

DEFAULT_SETTINGS: Dict[str, Any] = {
    'target': None,
    'port': None,
    'build_on_target': False,
    'action': 'switch',
    'delete_older_than': DEFAULT_RETENTION_POLICY,
    'gc': True,
    'profile': DEFAULT_PROFILE,
    'target_system': None,
    'host_key_policy': 'insecure',
    'ssh_private_key_file': None,
    'build_options': [],
    'verbose': False,
}

_BOOL_KEYS = ('build_on_target', 'gc', 'verbose')


def load_deploy_config(config_path: str, config_loader: ConfigLoader) -> Dict[str, Any]:
    """Load and validate a deploy profile.

    Example file:

        target: root@web1.example.com
        port: 22
        action: switch
        delete_older_than: "+5"
        gc: true
        build_options: ["--cores", "4"]

    Args:
        config_path: Path to YAML file
        config_loader: YAML loading abstraction

    Returns:
        Settings found in the file (only keys present in the file)

    Raises:
        ConfigurationError: If the file is unreadable, not a mapping, or has
            unknown keys / wrongly typed values
    """
    try:
        config = config_loader.load_yaml(config_path)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_path}", context=str(e))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Cannot parse config file {config_path}", context=str(e))

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    unknown = sorted(set(config) - set(DEFAULT_SETTINGS))
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in {config_path}: {', '.join(unknown)}",
            context=f"Known keys: {', '.join(DEFAULT_SETTINGS)}"
        )

    for key in _BOOL_KEYS:
        if key in config and not isinstance(config[key], bool):
            raise ConfigurationError(f"'{key}' in {config_path} must be true or false")

    if 'build_options' in config:
        options = config['build_options']
        if not isinstance(options, list) or not all(isinstance(o, (str, int)) for o in options):
            raise ConfigurationError(f"'build_options' in {config_path} must be a list of strings")
        config['build_options'] = [str(o) for o in options]

    policy = config.get('delete_older_than')
    if policy is not None and not isinstance(policy, str):
        # YAML reads an unquoted +5 as the integer 5
        raise ConfigurationError(
            f"'delete_older_than' in {config_path} must be a quoted string",
            context=f"Got {policy!r}; write e.g. delete_older_than: \"+5\""
        )

    return config


def resolve_settings(
    file_settings: Optional[Dict[str, Any]] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Merge defaults < config file < CLI overrides.

    Override values of None mean "not given on the command line" and do not
    replace lower layers. build_options accumulate: file options first, then
    command-line options.
    """
    settings = dict(DEFAULT_SETTINGS)
    settings['build_options'] = []

    for layer in (file_settings or {}, overrides or {}):
        for key, value in layer.items():
            if value is None:
                continue
            if key == 'build_options':
                settings['build_options'] = settings['build_options'] + list(value)
            else:
                settings[key] = value

    return settings
