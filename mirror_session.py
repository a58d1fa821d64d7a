"""
Session and configuration objects for the mirror planner.

A MirrorSession is built once per run from validated input and never
changes afterwards. MirrorSettings replaces the ambient shell state
(environment variables, hardcoded paths) with an explicit value that is
threaded through every component.
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

PHASE_DOWNLOAD = "download"
PHASE_UPLOAD = "upload"

DEFAULT_CONFIG_FILE = os.path.join(os.path.expanduser("~"), ".ocp-mirror.conf")
ENV_PREFIX = "OCP_MIRROR_"

IMAGESET_FILENAME = "mirror.ImageSetConfiguration.yaml"
WORKDIR_LAYOUT = ("tools", "rpms", "mirror")
INSTALLED_BINARIES = ("oc", "kubectl", "oc-mirror")
REGISTRY_ARCHIVE = "mirror-registry-amd64.tar.gz"
RESERVED_ENV_KEYS = ("CONFIG", "API_HOST")


@dataclass(frozen=True, order=True)
class Version:
    """An OpenShift 4.x.y release version, ordered numerically"""

    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @property
    def stream(self) -> str:
        return f"{self.major}.{self.minor}"

    @property
    def channel(self) -> str:
        return f"stable-{self.stream}"


@dataclass(frozen=True)
class MirrorSession:
    phase: str
    workdir: Path
    bastion_host: str
    username: str
    password: str = field(repr=False)
    version: Optional[Version] = None
    upgrade_version: Optional[Version] = None
    pull_secret_path: Optional[Path] = None
    registry_port: int = 8443

    def __post_init__(self):
        if self.version and self.upgrade_version and self.version > self.upgrade_version:
            raise ValueError(f"{self.version} is greater than {self.upgrade_version}")

    @property
    def upgrade_planned(self) -> bool:
        return bool(self.version and self.upgrade_version and self.version != self.upgrade_version)

    @property
    def tools_dir(self) -> Path:
        return self.workdir / "tools"

    @property
    def rpms_dir(self) -> Path:
        return self.workdir / "rpms"

    @property
    def mirror_dir(self) -> Path:
        return self.workdir / "mirror"

    @property
    def cache_dir(self) -> Path:
        return self.workdir / "cache"

    @property
    def imageset_path(self) -> Path:
        return self.workdir / IMAGESET_FILENAME

    @property
    def registry_archive(self) -> Path:
        return self.tools_dir / REGISTRY_ARCHIVE

    @property
    def registry_endpoint(self) -> str:
        return f"{self.bastion_host}:{self.registry_port}"

    def with_pull_secret(self, path: Path) -> "MirrorSession":
        return replace(self, pull_secret_path=path)


@dataclass
class MirrorSettings:
    """Operator-tunable settings with defaults matching the shell tooling"""

    retry_times: int = 20
    retry_delay: int = 5
    download_retries: int = 3
    download_retry_delay: int = 5
    min_free_kb: int = 1024 * 1024 * 1024
    ping_timeout: int = 2
    registry_port: int = 8443
    log_dir: str = "/var/log"
    runtime_dir: str = ""
    install_dir: str = "/usr/local/bin"
    repo_file: str = "/etc/yum.repos.d/local-mirror.repo"
    ca_anchor_dir: str = "/etc/pki/ca-trust/source/anchors"
    client_base_url: str = "https://mirror.openshift.com/pub/openshift-v4/x86_64/clients/ocp"
    registry_base_url: str = "https://mirror.openshift.com/pub/cgw/mirror-registry/latest"
    verify_release: bool = False
    release_graph_url: str = "https://api.openshift.com/api/upgrades_info/v1/graph"
    cache_dir: str = os.path.join(os.path.expanduser("~"), ".cache", "ocp-mirror")

    @classmethod
    def load(cls, config_file: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> "MirrorSettings":
        """Build settings from defaults, then the config file, then the environment"""
        settings = cls()
        settings.apply(read_config_file(config_file or DEFAULT_CONFIG_FILE))

        environ = os.environ if environ is None else environ
        env_values = {
            key[len(ENV_PREFIX):]: value
            for key, value in environ.items()
            if key.startswith(ENV_PREFIX) and key[len(ENV_PREFIX):] not in RESERVED_ENV_KEYS
        }
        settings.apply(env_values)
        return settings

    def apply(self, values: Dict[str, str]):
        """Apply KEY=value overrides, converting to each field's type"""
        known = {f.name: f for f in fields(self)}
        for key, raw in values.items():
            name = key.lower()
            if name not in known:
                logger.warning(f"Ignoring unknown setting: {key}")
                continue
            current = getattr(self, name)
            if isinstance(current, bool):
                value = str(raw).strip().lower() in ("1", "true", "yes", "y", "on")
            elif isinstance(current, int):
                try:
                    value = int(raw)
                except ValueError:
                    raise ValueError(f"Setting {key} must be an integer, got '{raw}'")
                if value < 0:
                    raise ValueError(f"Setting {key} must not be negative, got {value}")
            else:
                value = str(raw)
            setattr(self, name, value)

    def resolve_runtime_dir(self, environ: Optional[Dict[str, str]] = None) -> Path:
        """Runtime base for the pull secret: configured, XDG_RUNTIME_DIR, or /run/user/<uid>"""
        if self.runtime_dir:
            return Path(self.runtime_dir)
        environ = os.environ if environ is None else environ
        xdg = environ.get("XDG_RUNTIME_DIR", "")
        if xdg:
            return Path(xdg)
        return Path(f"/run/user/{os.getuid()}")


def read_config_file(path: str) -> Dict[str, str]:
    """Read a KEY=value config file, skipping blanks and comments"""
    values = {}
    if not os.path.exists(path):
        logger.debug(f"No configuration file found at {path}")
        return values

    logger.info(f"Loading configuration from {path}")
    with open(path, "r") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            values[key.strip()] = value.strip().strip('"').strip("'")
    return values


def create_sample_config(path: str) -> str:
    """Write a commented sample configuration file and return its path"""
    defaults = MirrorSettings()
    content = f"""# OpenShift mirror planner configuration
# Uncomment and set values as needed.
# Any key can also be set as an environment variable prefixed with {ENV_PREFIX}

# oc mirror retry policy
#RETRY_TIMES={defaults.retry_times}
#RETRY_DELAY={defaults.retry_delay}

# Tool download retry policy (exponential backoff from the delay)
#DOWNLOAD_RETRIES={defaults.download_retries}
#DOWNLOAD_RETRY_DELAY={defaults.download_retry_delay}

# Minimum free space in the working directory (KB)
#MIN_FREE_KB={defaults.min_free_kb}

# Locations
#LOG_DIR={defaults.log_dir}
#RUNTIME_DIR=
#INSTALL_DIR={defaults.install_dir}
#REPO_FILE={defaults.repo_file}

# Check that the requested release is published in its channel
#VERIFY_RELEASE=false
"""
    with open(path, "w") as f:
        f.write(content)
    logger.info(f"Sample configuration created at {path}")
    return path
