# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Utility functions for command checks and YAML files."""

from __future__ import annotations

import tempfile
from pathlib import Path

import sh
import yaml

from mirror_manager.config import Distribution

PROVISIONER_COMMANDS = {
    Distribution.KIND: "kind",
    Distribution.K3D: "k3d",
    Distribution.TALOS: "talosctl",
    Distribution.VCLUSTER: "vcluster",
}


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        RuntimeError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise RuntimeError(f"Required command '{cmd}' not found. Please install it first.") from err


def required_commands(distribution: Distribution, provision: bool = True) -> list[str]:
    """Commands a workflow needs: docker, plus the provisioner when provisioning."""
    commands = ["docker"]
    if provision:
        commands.append(PROVISIONER_COMMANDS[distribution])
    return commands


def load_yaml_file(path: str | Path | None) -> dict | None:
    """Load a YAML mapping, or None when *path* is None."""
    if path is None:
        return None
    with open(path) as f:
        loaded = yaml.safe_load(f)
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{path}: expected a YAML mapping")
    return loaded


def write_temp_yaml(content: dict | str, prefix: str) -> Path:
    """Write YAML to a named temp file the caller deletes.

    Args:
        content: Mapping to dump, or already-rendered YAML text.
        prefix: File name prefix.

    Returns:
        Path of the written file.
    """
    text = content if isinstance(content, str) else yaml.safe_dump(content, sort_keys=False)
    with tempfile.NamedTemporaryFile("w", prefix=prefix, suffix=".yaml", delete=False) as f:
        f.write(text)
    return Path(f.name)
