from __future__ import annotations

import os
from typing import Any, Dict, List, Tuple

import yaml

from .config import settings_path
from .errors import DeploymentSettingsError
from .types import DeploymentScript

SettingsKey = Tuple[str, str]


def _parse_script(raw: Any, where: str) -> DeploymentScript:
    if isinstance(raw, str):
        path, arguments = raw, ""
    elif isinstance(raw, dict):
        path = raw.get("path")
        arguments = raw.get("arguments") or ""
    else:
        raise DeploymentSettingsError(f"{where}: unsupported script entry")

    if not isinstance(path, str) or not path.strip():
        raise DeploymentSettingsError(f"{where}: script path is required")
    if not isinstance(arguments, str):
        raise DeploymentSettingsError(f"{where}: arguments must be a string")
    return DeploymentScript(path=path.strip(), arguments=arguments)


def parse_settings(data: Any) -> Dict[SettingsKey, List[DeploymentScript]]:
    """
    Parse the deployment settings document.

    Format:
      <project>:
        <service>:
          - path: /opt/deploy/app/build.sh
            arguments: "--release"
          - /opt/deploy/app/restart.sh   # shorthand, no arguments
    """
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise DeploymentSettingsError("settings root must be a mapping")

    out: Dict[SettingsKey, List[DeploymentScript]] = {}
    for project, services in data.items():
        if not isinstance(services, dict):
            raise DeploymentSettingsError(f"{project}: services must be a mapping")
        for service, scripts in services.items():
            where = f"{project}/{service}"
            if not isinstance(scripts, list) or not scripts:
                raise DeploymentSettingsError(f"{where}: scripts must be a non-empty list")
            out[(str(project), str(service))] = [
                _parse_script(entry, f"{where}[{idx}]")
                for idx, entry in enumerate(scripts)
            ]
    return out


class DeploymentSettings:
    """
    Scripts to run per (project, service), loaded from DEPLOY_SETTINGS_PATH.

    Strict behavior:
      - Path not set or file missing -> DeploymentSettingsError
      - Invalid YAML or structure -> DeploymentSettingsError

    The file is re-read whenever its mtime changes.
    """

    def __init__(self, path: str | None = None) -> None:
        self._path = path if path is not None else settings_path()
        self._mtime: float | None = None
        self._scripts: Dict[SettingsKey, List[DeploymentScript]] = {}

    def _reload_if_changed(self) -> None:
        if not self._path:
            raise DeploymentSettingsError("DEPLOY_SETTINGS_PATH is not set")
        try:
            mtime = os.path.getmtime(self._path)
        except OSError as exc:
            raise DeploymentSettingsError(
                f"deployment settings missing: {self._path}"
            ) from exc
        if self._mtime == mtime:
            return

        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise DeploymentSettingsError(
                f"deployment settings invalid YAML: {exc}"
            ) from exc

        self._scripts = parse_settings(data)
        self._mtime = mtime

    def scripts_for(self, project: str, service: str) -> List[DeploymentScript] | None:
        self._reload_if_changed()
        scripts = self._scripts.get((project, service))
        return list(scripts) if scripts is not None else None
