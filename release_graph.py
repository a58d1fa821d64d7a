#!/usr/bin/env python3
"""
Release Graph Client
Looks up published OpenShift releases in a channel through the public
update graph, caching responses on disk.
"""

import json
import logging
import os
import time
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_GRAPH_URL = "https://api.openshift.com/api/upgrades_info/v1/graph"


def _version_key(version: str):
    return [(0, int(part), "") if part.isdigit() else (1, 0, part) for part in version.replace("-", ".").split(".")]


class ReleaseGraphClient:
    """Fetches channel release lists from the OpenShift update graph"""

    def __init__(
        self,
        graph_url: str = DEFAULT_GRAPH_URL,
        cache_dir: Optional[str] = None,
        cache_max_age_hours: int = 24,
        retry_attempts: int = 3,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.graph_url = graph_url
        self.cache_dir = cache_dir
        self.cache_max_age = cache_max_age_hours
        self.retry_attempts = retry_attempts
        self.timeout = timeout
        self.session = session or requests.Session()

        if self.cache_dir and not os.path.exists(self.cache_dir):
            os.makedirs(self.cache_dir)

    def _get_cache_path(self, cache_key: str) -> Optional[str]:
        if not self.cache_dir:
            return None
        return os.path.join(self.cache_dir, f"{cache_key}.json")

    def _read_cache(self, cache_key: str) -> Optional[Dict]:
        cache_path = self._get_cache_path(cache_key)
        if not cache_path or not os.path.exists(cache_path):
            return None

        file_time = datetime.fromtimestamp(os.path.getmtime(cache_path))
        if datetime.now() - file_time >= timedelta(hours=self.cache_max_age):
            return None

        try:
            with open(cache_path, "r") as f:
                logger.info(f"Using cached data for {cache_key}")
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read cache: {e}")
            return None

    def _write_cache(self, cache_key: str, data: Dict):
        cache_path = self._get_cache_path(cache_key)
        if not cache_path:
            return
        try:
            with open(cache_path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.warning(f"Failed to write cache: {e}")

    def _make_request(self, params: Dict[str, str]) -> Optional[Dict]:
        """GET the graph with retry and exponential backoff"""
        for attempt in range(self.retry_attempts):
            try:
                logger.info(f"Fetching data from {self.graph_url} (attempt {attempt + 1}/{self.retry_attempts})")
                response = self.session.get(
                    self.graph_url,
                    params=params,
                    headers={"Accept": "application/json"},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                return response.json()
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.warning(f"Request failed (attempt {attempt + 1}): {e}")
                if attempt < self.retry_attempts - 1:
                    time.sleep(2 ** attempt)
                else:
                    logger.error(f"All retry attempts failed for {self.graph_url}")
        return None

    def fetch_channel_versions(self, channel: str) -> Optional[List[str]]:
        """Return the release versions published in channel, or None when unavailable"""
        cache_key = f"graph_{channel}"
        cached = self._read_cache(cache_key)
        if cached:
            return cached.get("versions", [])

        data = self._make_request({"channel": channel})
        if not data or "nodes" not in data:
            return None

        versions = sorted(
            {node.get("version", "") for node in data["nodes"] if node.get("version")},
            key=_version_key,
        )
        self._write_cache(cache_key, {
            "versions": versions,
            "fetched_at": datetime.now().isoformat(),
        })
        return versions

    def is_published(self, channel: str, version: str) -> Optional[bool]:
        """True or False if the graph answered, None if it could not be reached"""
        versions = self.fetch_channel_versions(channel)
        if versions is None:
            return None
        return version in versions
