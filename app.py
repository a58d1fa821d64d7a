#!/usr/bin/env python3
"""
Mirror Planner Web API
Flask endpoints for checking versions, previewing the ImageSetConfiguration
and running preflight checks before a provisioning session.
"""

import os

from flask import Flask, jsonify, request
from flask_cors import CORS

from config_emitter import emit_plan
from input_validator import validate_directory, validate_upgrade_pair, validate_version
from mirror_errors import MirrorError
from mirror_session import DEFAULT_CONFIG_FILE, PHASE_DOWNLOAD, PHASE_UPLOAD, MirrorSession, MirrorSettings
from preflight_checker import PreflightChecker
from release_graph import ReleaseGraphClient

app = Flask(__name__)
CORS(app)

CONFIG_FILE = os.environ.get("OCP_MIRROR_CONFIG", DEFAULT_CONFIG_FILE)

settings = MirrorSettings.load(CONFIG_FILE)
release_client = ReleaseGraphClient(settings.release_graph_url, cache_dir=settings.cache_dir)


def _error(e: MirrorError):
    return jsonify({"error": e.message, "exit_code": e.exit_code}), 400


def _versions(data):
    version = validate_version(data.get("version", ""))
    upgrade = validate_version(data.get("upgrade_version") or str(version))
    order = validate_upgrade_pair(version, upgrade)
    return version, upgrade, order


@app.route("/api/validate", methods=["POST"])
def validate():
    """Validate a version pair"""
    try:
        version, upgrade, order = _versions(request.json or {})
        return jsonify({
            "success": True,
            "version": str(version),
            "upgrade_version": str(upgrade),
            "order": order.value,
            "channel": version.channel,
        })
    except MirrorError as e:
        return _error(e)


@app.route("/api/plan", methods=["POST"])
def plan_preview():
    """Render the ImageSetConfiguration for a version pair"""
    try:
        version, upgrade, _ = _versions(request.json or {})
        session = MirrorSession(
            phase=PHASE_DOWNLOAD,
            workdir=None,
            bastion_host="",
            username="",
            password="",
            version=version,
            upgrade_version=upgrade,
        )
        plan = emit_plan(session, settings)
        return jsonify({
            "success": True,
            "config": plan.render(),
            "summary": {
                "channel": plan.channel,
                "min_version": plan.min_version,
                "max_version": plan.max_version,
                "upgrade_planned": plan.upgrade_planned,
                "catalogs": {c.catalog: len(c.packages) for c in plan.catalogs},
                "additional_images": len(plan.additional_images),
            },
            "downloads": [{"name": a.name, "url": a.url} for a in plan.artifacts],
        })
    except MirrorError as e:
        return _error(e)


@app.route("/api/preflight", methods=["POST"])
def preflight():
    """Run the preflight checks for a working directory"""
    try:
        data = request.json or {}
        phase = data.get("phase", PHASE_DOWNLOAD)
        if phase not in (PHASE_DOWNLOAD, PHASE_UPLOAD):
            return jsonify({"error": f"Unknown phase: {phase}"}), 400

        session = MirrorSession(
            phase=phase,
            workdir=validate_directory(data.get("workdir", "")),
            bastion_host="",
            username="",
            password="",
        )
        result = PreflightChecker(settings).run_checks(session)
        return jsonify({
            "success": result.ok,
            "checks": [
                {
                    "name": c.name,
                    "passed": c.passed,
                    "skipped": c.skipped,
                    "fatal": c.fatal,
                    "detail": c.detail,
                    "exit_code": c.exit_code,
                }
                for c in result.checks
            ],
        })
    except MirrorError as e:
        return _error(e)


@app.route("/api/releases/<channel>", methods=["GET"])
def releases(channel):
    """List releases published in a channel"""
    versions = release_client.fetch_channel_versions(channel)
    if versions is None:
        return jsonify({"error": "Update graph is not reachable"}), 503
    return jsonify({"channel": channel, "versions": versions, "count": len(versions)})


def serve_address(environ=None):
    """Host and port for the development server; loopback unless overridden"""
    environ = os.environ if environ is None else environ
    return environ.get("OCP_MIRROR_API_HOST", "127.0.0.1"), int(environ.get("PORT", "5000"))


if __name__ == "__main__":
    host, port = serve_address()
    app.run(host=host, port=port)
