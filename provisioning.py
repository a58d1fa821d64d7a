"""
Provisioning pipelines for the download and upload phases.

Builds the ordered ProvisioningStep lists the StepRunner executes. The
steps drive dnf, createrepo, tar, mirror-registry, podman and oc-mirror
through their command lines; tool tarballs are fetched with requests.
"""

import logging
import shutil
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional

import requests

from config_emitter import RPM_INSTALL_PACKAGES, ClientArtifact, MirrorPlan
from mirror_errors import CommandError, InputError, MissingPathError, TransientError
from mirror_session import INSTALLED_BINARIES, WORKDIR_LAYOUT, MirrorSession, MirrorSettings
from step_runner import CommandRunner, FailurePolicy, Idempotency, ProvisioningStep

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
DOWNLOAD_TIMEOUT = (10, 300)


def render_repo_file(rpms_dir: Path, priority: Optional[int] = None) -> str:
    """Render the yum repository file pointing at the local RPM directory"""
    lines = [
        "[local-mirror]",
        "name=Local Mirror Repository",
        f"baseurl=file://{rpms_dir}",
        "enabled=1",
        "gpgcheck=0",
    ]
    if priority is not None:
        lines.append(f"priority={priority}")
    return "\n".join(lines) + "\n"


def _is_nonempty_file(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


class Provisioner:
    """Builds provisioning steps for one session"""

    def __init__(
        self,
        session: MirrorSession,
        settings: MirrorSettings,
        runner: CommandRunner,
        http: Optional[requests.Session] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.session = session
        self.settings = settings
        self.runner = runner
        self.http = http or requests.Session()
        self.which = which

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def download_steps(self, plan: MirrorPlan) -> List[ProvisioningStep]:
        """Steps for the connected host: tools, RPMs, registry and oc mirror to the registry"""
        s = self.settings
        steps = [
            ProvisioningStep(
                "prepare working directories", self.prepare_directories,
                done=lambda: all((self.session.workdir / d).is_dir() for d in WORKDIR_LAYOUT),
            ),
            self._ensure_package_step("podman", "podman"),
            self._ensure_package_step("createrepo_c", "createrepo"),
        ]

        for artifact in plan.artifacts:
            dest = self.session.tools_dir / artifact.filename
            steps.append(ProvisioningStep(
                f"download {artifact.name}",
                partial(self.download_artifact, artifact),
                retries=s.download_retries,
                retry_delay=s.download_retry_delay,
                done=partial(_is_nonempty_file, dest),
            ))

        steps.extend([
            ProvisioningStep(
                "download RPMs with dependencies", self.download_rpms,
                retries=s.download_retries, retry_delay=s.download_retry_delay,
                requires=("dnf",),
            ),
            ProvisioningStep("create local repository", self.create_repository, requires=("createrepo",)),
        ])
        steps.extend(self._local_repo_steps(priority=999))
        steps.extend([
            ProvisioningStep(
                "install oc-mirror", self.install_oc_mirror, requires=("tar",),
            ),
            ProvisioningStep(
                "install oc and kubectl", self.install_oc_client, requires=("tar",),
            ),
            ProvisioningStep("write ImageSetConfiguration", self.write_imageset),
        ])
        steps.extend(self._registry_steps())
        steps.append(ProvisioningStep(
            "mirror images to registry", self.mirror_to_registry, requires=("oc", "oc-mirror"),
        ))
        return steps

    def upload_steps(self) -> List[ProvisioningStep]:
        """Steps for the bastion: local repo, registry, binaries and oc mirror from disk"""
        steps = self._local_repo_steps(priority=None)
        steps.extend(self._registry_steps())
        steps.extend([
            ProvisioningStep("install oc, kubectl and oc-mirror", self.install_binaries),
            ProvisioningStep(
                "mirror images from disk", self.mirror_from_disk, requires=("oc", "oc-mirror"),
            ),
        ])
        return steps

    def _ensure_package_step(self, package: str, command: str) -> ProvisioningStep:
        return ProvisioningStep(
            f"ensure {package} is installed",
            partial(self.install_packages, [package]),
            requires=("dnf",),
            done=lambda: bool(self.which(command)),
        )

    def _local_repo_steps(self, priority: Optional[int]) -> List[ProvisioningStep]:
        return [
            ProvisioningStep("disable enabled repositories", self.disable_repositories, requires=("dnf",)),
            ProvisioningStep("add local repository", partial(self.write_repo_file, priority=priority)),
            ProvisioningStep(
                "clean package cache", self.clean_package_cache,
                policy=FailurePolicy.CONTINUE, requires=("dnf",),
            ),
            ProvisioningStep(
                "install required packages", self.install_required_packages, requires=("dnf",),
            ),
        ]

    def _registry_steps(self) -> List[ProvisioningStep]:
        return [
            ProvisioningStep("extract mirror-registry", self.extract_mirror_registry, requires=("tar",)),
            ProvisioningStep(
                "install mirror registry", self.install_mirror_registry,
                idempotency=Idempotency.ONE_SHOT,
            ),
            ProvisioningStep(
                "trust registry CA", self.trust_registry_ca,
                idempotency=Idempotency.ONE_SHOT, requires=("update-ca-trust",),
            ),
            ProvisioningStep(
                "log in to registry", self.registry_login,
                retries=self.settings.download_retries,
                retry_delay=self.settings.download_retry_delay,
                requires=("podman",),
            ),
        ]

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def prepare_directories(self, plan=None):
        """Create the tools, rpms and mirror directories"""
        for name in WORKDIR_LAYOUT:
            (self.session.workdir / name).mkdir(parents=True, exist_ok=True)

    def install_packages(self, packages: List[str], plan=None):
        """Install packages with dnf"""
        logger.info(f"ℹ Installing {' '.join(packages)}...")
        self.runner.run(["dnf", "-y", "install"] + list(packages), sudo=True)

    def download_artifact(self, artifact: ClientArtifact, plan=None):
        """Download a client tarball into the tools directory"""
        self.download_file(artifact.url, self.session.tools_dir / artifact.filename)

    def download_file(self, url: str, dest: Path) -> Path:
        """Stream url to dest through a .part file"""
        part = dest.with_name(dest.name + ".part")
        logger.info(f"⬇ Downloading {url}...")
        try:
            with self.http.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
                response.raise_for_status()
                with open(part, "wb") as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except requests.exceptions.HTTPError as e:
            part.unlink(missing_ok=True)
            status = e.response.status_code if e.response is not None else None
            if status is not None and 400 <= status < 500 and status not in (408, 429):
                raise InputError(f"{url} returned HTTP {status}; check the requested version")
            raise TransientError(f"Download of {url} failed: {e}", cause=e)
        except requests.exceptions.RequestException as e:
            part.unlink(missing_ok=True)
            raise TransientError(f"Download of {url} failed: {e}", cause=e)

        part.replace(dest)
        logger.info(f"✓ Saved {dest}")
        return dest

    def download_rpms(self, plan: MirrorPlan):
        """Download the planned RPMs with all dependencies"""
        logger.info(f"⬇ Downloading RPMs with dependencies to {self.session.rpms_dir}...")
        command = [
            "dnf", "download", "--resolve", "--alldeps",
            "--destdir", str(self.session.rpms_dir),
        ] + list(plan.rpm_download_packages)
        try:
            self.runner.run(command, sudo=True)
        except CommandError as e:
            raise TransientError(f"RPM download failed: {e}", cause=e)

    def create_repository(self, plan=None):
        """Generate repository metadata for the RPM directory"""
        logger.info(f"ℹ Creating repo in {self.session.rpms_dir}...")
        self.runner.run(["createrepo", str(self.session.rpms_dir)], sudo=True)

    def disable_repositories(self, plan=None):
        """Disable every enabled dnf repository"""
        logger.info("Disabling all enabled repos...")
        self.runner.run(["dnf", "config-manager", "--disable", "*"], sudo=True)

    def write_repo_file(self, plan=None, priority: Optional[int] = None):
        """Write the local repository file through sudo tee"""
        repo_file = self.settings.repo_file
        logger.info(f"Adding local repository to {repo_file}")
        content = render_repo_file(self.session.rpms_dir, priority)
        self.runner.run(["tee", repo_file], sudo=True, input_text=content)

    def clean_package_cache(self, plan=None):
        """Drop cached dnf metadata"""
        self.runner.run(["dnf", "clean", "all"], sudo=True)

    def install_required_packages(self, plan=None):
        """Install the packages needed on the host from the local repository"""
        packages = plan.rpm_install_packages if plan is not None else RPM_INSTALL_PACKAGES
        logger.info("Installing required packages...")
        self.runner.run(["dnf", "-y", "install"] + list(packages), sudo=True)

    def _extract(self, tarball: Path):
        if not tarball.is_file():
            raise MissingPathError(f"Archive not found: {tarball}")
        logger.info(f"📦 Extracting {tarball.name}...")
        self.runner.run(["tar", "-xzf", str(tarball), "-C", str(self.session.tools_dir)])

    def _install(self, names):
        install_dir = self.settings.install_dir
        targets = []
        for name in names:
            self.runner.run(["cp", str(self.session.tools_dir / name), install_dir + "/"], sudo=True)
            targets.append(f"{install_dir}/{name}")
        self.runner.run(["chmod", "+x"] + targets, sudo=True)
        logger.info(f"✓ {', '.join(names)} installed.")

    def install_oc_mirror(self, plan: MirrorPlan):
        """Extract and install oc-mirror"""
        self._extract(self.session.tools_dir / plan.artifact("oc-mirror").filename)
        self._install(["oc-mirror"])

    def install_oc_client(self, plan: MirrorPlan):
        """Extract and install oc and kubectl"""
        self._extract(self.session.tools_dir / plan.artifact("oc-client").filename)
        self._install(["oc", "kubectl"])

    def install_binaries(self, plan=None):
        """Install the already extracted oc, kubectl and oc-mirror"""
        missing = [name for name in INSTALLED_BINARIES if not (self.session.tools_dir / name).is_file()]
        if missing:
            raise MissingPathError(
                f"Missing binaries in {self.session.tools_dir}: {', '.join(missing)}. "
                "Please ensure oc, kubectl, oc-mirror are downloaded and extracted."
            )
        self._install(list(INSTALLED_BINARIES))

    def write_imageset(self, plan: MirrorPlan):
        """Write the ImageSetConfiguration into the working directory"""
        plan.write(self.session.imageset_path)

    def extract_mirror_registry(self, plan=None):
        """Extract the mirror-registry installer"""
        self._extract(self.session.registry_archive)

    def install_mirror_registry(self, plan=None):
        """Install the Quay mirror registry on this host"""
        workdir = self.session.workdir
        logger.info("Running mirror-registry install...")
        self.runner.run(
            [
                str(self.session.tools_dir / "mirror-registry"), "install",
                "--quayHostname", self.session.bastion_host,
                "--initUser", self.session.username,
                "--initPassword", self.session.password,
                "--quayRoot", str(workdir),
                "--quayStorage", str(workdir / "quay-storage"),
                "--sqliteStorage", str(workdir / "sqliteStorage"),
            ],
            sudo=True,
            secrets=[self.session.password],
        )

    def trust_registry_ca(self, plan=None):
        """Add the registry's root CA to the system trust store"""
        root_ca = self.session.workdir / "quay-rootCA" / "rootCA.pem"
        if not root_ca.is_file():
            raise MissingPathError(f"Registry CA not found at {root_ca}")
        logger.info("Ensure Quay's CA is known locally")
        self.runner.run(["cp", str(root_ca), self.settings.ca_anchor_dir + "/"], sudo=True)
        self.runner.run(["update-ca-trust"], sudo=True)

    def registry_login(self, plan=None):
        """Log in to the mirror registry with podman"""
        logger.info("Logging in to quay registry with podman...")
        try:
            self.runner.run(
                [
                    "podman", "login", self.session.registry_endpoint,
                    "--username", self.session.username,
                    "--password", self.session.password,
                ],
                secrets=[self.session.password],
            )
        except CommandError as e:
            raise TransientError(f"Login to {self.session.registry_endpoint} failed: {e}", cause=e)

    def _require_imageset(self) -> Path:
        path = self.session.imageset_path
        if not path.is_file():
            raise MissingPathError(f"ImageSetConfiguration not found at {path}")
        return path

    def _retry_flags(self) -> List[str]:
        return [
            "--retry-times", str(self.settings.retry_times),
            "--retry-delay", f"{self.settings.retry_delay}s",
        ]

    def mirror_to_registry(self, plan=None):
        """Mirror the planned content into the registry"""
        imageset = self._require_imageset()
        logger.info("Running oc mirror...")
        self.runner.run(
            ["oc", "mirror", "--v2", "-c", str(imageset),
             "--workspace", f"file://{self.session.mirror_dir}"]
            + self._retry_flags()
            + [f"docker://{self.session.registry_endpoint}"]
        )

    def mirror_from_disk(self, plan=None):
        """Push the transferred mirror archive into the registry"""
        imageset = self._require_imageset()
        logger.info("Running oc mirror...")
        self.runner.run(
            ["oc", "mirror", "-c", str(imageset),
             "--from", f"file://{self.session.mirror_dir}",
             "--cache-dir", str(self.session.cache_dir)]
            + self._retry_flags()
            + [f"docker://{self.session.registry_endpoint}", "--v2"]
        )
