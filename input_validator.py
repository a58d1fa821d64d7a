"""
Validation of operator-supplied versions, paths, hostnames and credentials.

Every failure raises a typed error with the specific rule that was
violated; nothing is silently defaulted.
"""

import logging
import re
import subprocess
from enum import Enum
from pathlib import Path
from typing import Union

from mirror_errors import (
    InputError,
    InvalidVersionFormat,
    InvertedOrder,
    MissingPathError,
    MissingToolError,
    UnreachableHost,
)
from mirror_session import Version

logger = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r"^4\.([0-9]{1,2})\.([0-9]{1,2})$")
HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")


class PairOrder(str, Enum):
    ORDERED = "ordered"
    SAME = "same"


def validate_version(value: str) -> Version:
    """Parse a 4.<0-99>.<0-99> version string"""
    text = (value or "").strip()
    match = VERSION_PATTERN.match(text)
    if not match:
        raise InvalidVersionFormat(
            f"Invalid format '{text}'. Must be 4.<0-99>.<0-99> (e.g., 4.19.5)"
        )
    version = Version(4, int(match.group(1)), int(match.group(2)))
    logger.info(f"✓ OpenShift version validated: {version}")
    return version


def validate_upgrade_pair(base: Version, upgrade: Version) -> PairOrder:
    """Compare base and upgrade versions numerically"""
    if base == upgrade:
        logger.info(f"No upgrade is planned, {base} is equal {upgrade}.")
        return PairOrder.SAME
    if base < upgrade:
        logger.info(f"Mirroring images of {base} and {upgrade} for upgrade task.")
        return PairOrder.ORDERED
    raise InvertedOrder(f"{base} is greater than {upgrade}")


def validate_directory(path: Union[str, Path]) -> Path:
    """Return path as a Path, raising MissingPathError unless it is an existing directory"""
    text = str(path).strip() if path is not None else ""
    if not text:
        raise MissingPathError("Working directory was not provided.")
    directory = Path(text).expanduser()
    if not directory.is_dir():
        raise MissingPathError(f"Directory does not exist: {directory}")
    return directory


def validate_hostname(value: str) -> str:
    """Check value against RFC 1123 hostname rules"""
    host = (value or "").strip().rstrip(".")
    if not host or len(host) > 253:
        raise InputError(f"Invalid hostname '{value}'")
    if not all(HOSTNAME_LABEL.match(label) for label in host.split(".")):
        raise InputError(f"Invalid hostname '{value}'")
    return host


def validate_hostname_reachable(host: str, timeout: int = 2) -> str:
    """Send a single ping to host, waiting at most timeout seconds"""
    try:
        result = subprocess.run(
            ["ping", "-c", "1", "-W", str(timeout), host],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout + 5,
        )
    except FileNotFoundError:
        raise MissingToolError(["ping"])
    except subprocess.TimeoutExpired:
        raise UnreachableHost(f"Host {host} is not reachable (probe timed out)")

    if result.returncode != 0:
        raise UnreachableHost(f"Host {host} is not reachable")
    logger.info(f"✓ Host {host} is reachable")
    return host


def validate_credentials(username: str, password: str):
    """Reject empty registry credentials"""
    if not (username or "").strip():
        raise InputError("Registry username must not be empty")
    if not password:
        raise InputError("Registry password must not be empty")
