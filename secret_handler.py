"""
Pull-secret ingestion.

The payload is only checked for being well-formed JSON; its contents are
left for podman and oc-mirror to interpret.
"""

import json
import logging
import os
from pathlib import Path
from typing import Union

from mirror_errors import InvalidSecret

logger = logging.getLogger(__name__)

AUTH_SUBDIR = "containers"
AUTH_FILENAME = "auth.json"


class SecretHandler:
    """Validates and stores the pull secret under the runtime directory"""

    def __init__(self, runtime_dir: Union[str, Path]):
        self.runtime_dir = Path(runtime_dir)

    @property
    def auth_dir(self) -> Path:
        return self.runtime_dir / AUTH_SUBDIR

    @property
    def auth_file(self) -> Path:
        return self.auth_dir / AUTH_FILENAME

    @staticmethod
    def validate(raw: Union[str, bytes]) -> str:
        """Return the payload as text, raising InvalidSecret if it is not JSON"""
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError:
                raise InvalidSecret("Invalid JSON format for pull-secret (not UTF-8).")
        if not raw.strip():
            raise InvalidSecret("Pull-secret is empty.")
        try:
            json.loads(raw)
        except ValueError as e:
            raise InvalidSecret(f"Invalid JSON format for pull-secret: {e}")
        return raw

    def ingest_pull_secret(self, raw: Union[str, bytes]) -> Path:
        """Validate the payload and write it with owner-only permissions"""
        text = self.validate(raw)

        self.auth_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.auth_file), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(text if text.endswith("\n") else text + "\n")
        os.chmod(self.auth_file, 0o600)

        logger.info(f"✓ Pull-secret stored in {self.auth_file}")
        return self.auth_file
