"""
Unit tests for the mirror plan and the ImageSetConfiguration document.
"""

import pytest
import yaml

from config_emitter import (
    ADDITIONAL_IMAGES,
    MARKETPLACE_PACKAGES,
    REDHAT_OPERATOR_PACKAGES,
    emit_plan,
)
from mirror_session import MirrorSettings


class TestPlanBounds:
    def test_no_upgrade(self, make_session):
        """Equal versions give equal bounds and a single client download."""
        plan = emit_plan(make_session("4.19.5", "4.19.5"))
        assert plan.channel == "stable-4.19"
        assert plan.min_version == "4.19.5"
        assert plan.max_version == "4.19.5"
        assert not plan.upgrade_planned
        assert [a.name for a in plan.artifacts] == [
            "oc-client", "oc-mirror", "mirror-registry", "openshift-install",
        ]

    def test_upgrade_adds_client_download(self, make_session):
        plan = emit_plan(make_session("4.19.5", "4.19.7"))
        assert plan.channel == "stable-4.19"
        assert plan.min_version == "4.19.5"
        assert plan.max_version == "4.19.7"
        assert plan.upgrade_planned
        upgrade = plan.artifact("oc-client-upgrade")
        assert upgrade.url.endswith("/4.19.7/openshift-client-linux-4.19.7.tar.gz")
        assert upgrade.filename == "openshift-client-linux-4.19.7.tar.gz"

    def test_channel_and_catalogs_follow_base_version(self, make_session):
        plan = emit_plan(make_session("4.20.1", "4.20.3"))
        assert plan.channel == "stable-4.20"
        assert plan.catalogs[0].catalog == "registry.redhat.io/redhat/redhat-operator-index:v4.20"
        assert plan.catalogs[1].catalog == "registry.redhat.io/redhat/redhat-marketplace-index:v4.20"

    def test_artifact_urls_use_settings(self, make_session):
        settings = MirrorSettings(client_base_url="http://mirror.lab/ocp/")
        plan = emit_plan(make_session("4.19.5"), settings)
        assert plan.artifact("oc-client").url == "http://mirror.lab/ocp/4.19.5/openshift-client-linux-4.19.5.tar.gz"
        assert plan.artifact("oc-mirror").url == "http://mirror.lab/ocp/latest/oc-mirror.rhel9.tar.gz"

    def test_unknown_artifact(self, make_session):
        with pytest.raises(KeyError):
            emit_plan(make_session()).artifact("nope")

    def test_session_without_version(self, upload_session):
        with pytest.raises(ValueError):
            emit_plan(upload_session)


class TestRenderedDocument:
    def test_document_structure(self, make_session):
        doc = yaml.safe_load(emit_plan(make_session("4.19.5", "4.19.7")).render())

        assert doc["kind"] == "ImageSetConfiguration"
        assert doc["apiVersion"] == "mirror.openshift.io/v2alpha1"
        platform = doc["mirror"]["platform"]
        assert platform["graph"] is True
        assert platform["channels"] == [
            {"name": "stable-4.19", "minVersion": "4.19.5", "maxVersion": "4.19.7"},
        ]

        operators = doc["mirror"]["operators"]
        assert [p["name"] for p in operators[0]["packages"]] == list(REDHAT_OPERATOR_PACKAGES)
        assert [p["name"] for p in operators[1]["packages"]] == list(MARKETPLACE_PACKAGES)
        assert [i["name"] for i in doc["mirror"]["additionalImages"]] == list(ADDITIONAL_IMAGES)

    def test_key_order_is_preserved(self, make_session):
        text = emit_plan(make_session()).render()
        assert text.index("kind:") < text.index("apiVersion:") < text.index("mirror:")
        assert text.index("minVersion") < text.index("maxVersion")

    def test_render_is_byte_identical(self, make_session):
        first = emit_plan(make_session("4.19.5", "4.19.7")).render()
        for _ in range(5):
            assert emit_plan(make_session("4.19.5", "4.19.7")).render() == first

    def test_plans_compare_equal(self, make_session):
        assert emit_plan(make_session("4.19.5")) == emit_plan(make_session("4.19.5"))

    def test_write(self, make_session, tmp_path):
        plan = emit_plan(make_session())
        path = plan.write(tmp_path / "isc.yaml")
        assert path.read_text() == plan.render()
