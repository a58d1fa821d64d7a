"""
Unit tests for ReleaseGraphClient.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from release_graph import ReleaseGraphClient


def _graph(*versions):
    response = MagicMock()
    response.json.return_value = {"nodes": [{"version": v, "payload": f"quay.io/x:{v}"} for v in versions]}
    return response


@pytest.fixture
def http():
    return MagicMock()


class TestFetchChannelVersions:
    def test_sorted_numerically(self, http):
        http.get.return_value = _graph("4.19.10", "4.19.2", "4.19.9", "4.19.2")
        client = ReleaseGraphClient("https://graph.example.com", session=http)

        assert client.fetch_channel_versions("stable-4.19") == ["4.19.2", "4.19.9", "4.19.10"]
        assert http.get.call_args.kwargs["params"] == {"channel": "stable-4.19"}

    def test_prerelease_versions_sort_without_error(self, http):
        http.get.return_value = _graph("4.19.0", "4.19.0-rc.1", "4.19.1")
        client = ReleaseGraphClient("https://graph.example.com", session=http)
        assert client.fetch_channel_versions("candidate-4.19")[-1] == "4.19.1"

    def test_uses_cache(self, http, tmp_path):
        http.get.return_value = _graph("4.19.5")
        client = ReleaseGraphClient("https://graph.example.com", cache_dir=str(tmp_path), session=http)

        assert client.fetch_channel_versions("stable-4.19") == ["4.19.5"]
        assert client.fetch_channel_versions("stable-4.19") == ["4.19.5"]
        assert http.get.call_count == 1
        with open(tmp_path / "graph_stable-4.19.json") as f:
            assert json.load(f)["versions"] == ["4.19.5"]

    @patch("release_graph.time.sleep")
    def test_unreachable_graph_returns_none(self, sleep, http):
        http.get.side_effect = requests.exceptions.ConnectionError("no route")
        client = ReleaseGraphClient("https://graph.example.com", retry_attempts=3, session=http)

        assert client.fetch_channel_versions("stable-4.19") is None
        assert http.get.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1, 2]

    @patch("release_graph.time.sleep")
    def test_recovers_after_transient_failure(self, sleep, http):
        http.get.side_effect = [requests.exceptions.Timeout("slow"), _graph("4.19.5")]
        client = ReleaseGraphClient("https://graph.example.com", session=http)
        assert client.fetch_channel_versions("stable-4.19") == ["4.19.5"]


class TestIsPublished:
    def test_published(self, http):
        http.get.return_value = _graph("4.19.5", "4.19.7")
        client = ReleaseGraphClient("https://graph.example.com", session=http)
        assert client.is_published("stable-4.19", "4.19.7") is True
        assert client.is_published("stable-4.19", "4.19.6") is False

    @patch("release_graph.time.sleep")
    def test_unknown_when_unreachable(self, sleep, http):
        http.get.side_effect = requests.exceptions.ConnectionError("no route")
        client = ReleaseGraphClient("https://graph.example.com", retry_attempts=1, session=http)
        assert client.is_published("stable-4.19", "4.19.5") is None
