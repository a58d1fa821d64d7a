"""
Derives the mirror plan and the ImageSetConfiguration document from a session.

The operator and image lists below are configuration data. Their order is
the order written to the document, so the rendered YAML is reproducible.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import yaml

from mirror_session import REGISTRY_ARCHIVE, MirrorSession, MirrorSettings

logger = logging.getLogger(__name__)

IMAGESET_KIND = "ImageSetConfiguration"
IMAGESET_API_VERSION = "mirror.openshift.io/v2alpha1"

OPERATOR_INDEX = "registry.redhat.io/redhat/redhat-operator-index"
MARKETPLACE_INDEX = "registry.redhat.io/redhat/redhat-marketplace-index"

REDHAT_OPERATOR_PACKAGES = (
    "advanced-cluster-management",
    "cephcsi-operator",
    "cincinnati-operator",
    "cluster-kube-descheduler-operator",
    "cluster-logging",
    "cluster-observability-operator",
    "clusterresourceoverride",
    "fence-agents-remediation",
    "kubernetes-nmstate-operator",
    "kubevirt-hyperconverged",
    "lightspeed-operator",
    "local-storage-operator",
    "machine-deletion-remediation",
    "metallb-operator",
    "mtv-operator",
    "multicluster-engine",
    "multicluster-global-hub-operator-rh",
    "netobserv-operator",
    "nfd",
    "node-healthcheck-operator",
    "node-maintenance-operator",
    "node-observability-operator",
    "numaresources-operator",
    "ocs-client-operator",
    "odf-operator",
    "odf-dependencies",
    "recipe",
    "rook-ceph-operator",
    "mcg-operator",
    "openshift-cert-manager-operator",
    "openshift-gitops-operator",
    "openshift-pipelines-operator-rh",
    "redhat-oadp-operator",
    "self-node-remediation",
    "sriov-network-operator",
    "web-terminal",
    "devworkspace-operator",
    "ocs-operator",
    "odf-csi-addons-operator",
    "odr-cluster-operator",
    "odr-hub-operator",
    "odf-prometheus-operator",
)

MARKETPLACE_PACKAGES = (
    "k10-kasten-operator-rhmp",
)

ADDITIONAL_IMAGES = (
    "registry.redhat.io/ubi8/ubi:latest",
    "registry.redhat.io/ubi9/ubi:latest",
    "quay.io/rszmigie/net-tools:latest",
)

# Downloaded with all dependencies into the local repository
RPM_DOWNLOAD_PACKAGES = (
    "nmstate", "vim", "mkpasswd", "tmux", "bash-completion", "podman", "wget",
    "git", "butane", "skopeo", "coreos-installer", "nginx", "createrepo_c",
    "dnsmasq", "tcpdump", "chrony",
)

# Installed from the local repository on the target host
RPM_INSTALL_PACKAGES = (
    "nmstate", "vim", "mkpasswd", "tmux", "bash-completion", "podman", "wget",
    "git", "butane", "skopeo", "coreos-installer", "nginx", "createrepo_c",
)


@dataclass(frozen=True)
class ClientArtifact:
    name: str
    url: str
    filename: str


@dataclass(frozen=True)
class CatalogSelection:
    catalog: str
    packages: Tuple[str, ...]


@dataclass(frozen=True)
class MirrorPlan:
    """Read-only mirror plan derived from a MirrorSession"""

    channel: str
    min_version: str
    max_version: str
    catalogs: Tuple[CatalogSelection, ...]
    additional_images: Tuple[str, ...]
    rpm_download_packages: Tuple[str, ...]
    rpm_install_packages: Tuple[str, ...]
    artifacts: Tuple[ClientArtifact, ...]
    upgrade_planned: bool = False

    def artifact(self, name: str) -> ClientArtifact:
        """Return the artifact called name"""
        for artifact in self.artifacts:
            if artifact.name == name:
                return artifact
        raise KeyError(name)

    def to_document(self) -> Dict:
        return {
            "kind": IMAGESET_KIND,
            "apiVersion": IMAGESET_API_VERSION,
            "mirror": {
                "platform": {
                    "channels": [{
                        "name": self.channel,
                        "minVersion": self.min_version,
                        "maxVersion": self.max_version,
                    }],
                    "graph": True,
                },
                "operators": [
                    {
                        "catalog": selection.catalog,
                        "packages": [{"name": name} for name in selection.packages],
                    }
                    for selection in self.catalogs
                ],
                "additionalImages": [{"name": image} for image in self.additional_images],
            },
        }

    def render(self) -> str:
        """Render the ImageSetConfiguration as YAML"""
        return yaml.safe_dump(self.to_document(), default_flow_style=False, sort_keys=False)

    def write(self, path: Union[str, Path]) -> Path:
        """Write the rendered ImageSetConfiguration to path"""
        path = Path(path)
        path.write_text(self.render())
        logger.info(f"✓ ImageSetConfiguration file created at {path}")
        return path


def _client_artifacts(session: MirrorSession, settings: MirrorSettings) -> List[ClientArtifact]:
    base = settings.client_base_url.rstrip("/")
    version = str(session.version)

    artifacts = [ClientArtifact(
        "oc-client",
        f"{base}/{version}/openshift-client-linux-{version}.tar.gz",
        f"openshift-client-linux-{version}.tar.gz",
    )]
    if session.upgrade_planned:
        upgrade = str(session.upgrade_version)
        artifacts.append(ClientArtifact(
            "oc-client-upgrade",
            f"{base}/{upgrade}/openshift-client-linux-{upgrade}.tar.gz",
            f"openshift-client-linux-{upgrade}.tar.gz",
        ))
    artifacts.extend([
        ClientArtifact(
            "oc-mirror",
            f"{base}/latest/oc-mirror.rhel9.tar.gz",
            "oc-mirror.rhel9.tar.gz",
        ),
        ClientArtifact(
            "mirror-registry",
            f"{settings.registry_base_url.rstrip('/')}/{REGISTRY_ARCHIVE}",
            REGISTRY_ARCHIVE,
        ),
        ClientArtifact(
            "openshift-install",
            f"{base}/{version}/openshift-install-linux-{version}.tar.gz",
            f"openshift-install-linux-{version}.tar.gz",
        ),
    ])
    return artifacts


def emit_plan(session: MirrorSession, settings: Optional[MirrorSettings] = None) -> MirrorPlan:
    """Compute the mirror plan for a session with a validated version"""
    if session.version is None:
        raise ValueError("A mirror plan needs a target version")
    settings = settings or MirrorSettings()
    upgrade = session.upgrade_version or session.version
    stream = session.version.stream

    return MirrorPlan(
        channel=session.version.channel,
        min_version=str(session.version),
        max_version=str(upgrade),
        catalogs=(
            CatalogSelection(f"{OPERATOR_INDEX}:v{stream}", REDHAT_OPERATOR_PACKAGES),
            CatalogSelection(f"{MARKETPLACE_INDEX}:v{stream}", MARKETPLACE_PACKAGES),
        ),
        additional_images=ADDITIONAL_IMAGES,
        rpm_download_packages=RPM_DOWNLOAD_PACKAGES,
        rpm_install_packages=RPM_INSTALL_PACKAGES,
        artifacts=tuple(_client_artifacts(session, settings)),
        upgrade_planned=session.upgrade_planned,
    )
