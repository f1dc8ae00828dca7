import os
import tempfile
from pathlib import Path
import toml
from typing import Dict, Any


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    env_config = os.environ.get("SIGNSTAGE_CONFIG")
    if env_config:
        return Path(env_config)
    return Path.home() / ".signstage" / "config.toml"


def load_config() -> Dict[str, Any]:
    """Load configuration from TOML file."""
    config_path = get_config_path()
    if not config_path.exists():
        return {}

    try:
        return toml.load(config_path)
    except Exception as e:
        raise ValueError(f"Failed to load config: {e}")


def get_provisioning_profiles_dir() -> Path:
    """Get the directory provisioning profiles are installed into."""
    # Check environment variable first
    env_dir = os.environ.get("SIGNSTAGE_PROVISIONING_PROFILES_DIR")
    if env_dir:
        return Path(env_dir)

    paths_config = load_config().get("paths", {})
    profiles_dir = paths_config.get("provisioning_profiles_dir")
    if profiles_dir:
        return Path(profiles_dir).expanduser()

    # Where Xcode looks for installed profiles
    return Path.home() / "Library" / "MobileDevice" / "Provisioning Profiles"


def get_temp_dir() -> Path:
    """Get the directory for keychains and temporary certificate files."""
    env_dir = os.environ.get("SIGNSTAGE_TEMP_DIR")
    if env_dir:
        return Path(env_dir)

    paths_config = load_config().get("paths", {})
    temp_dir = paths_config.get("temp_dir")
    if temp_dir:
        return Path(temp_dir).expanduser()

    return Path(tempfile.gettempdir())
