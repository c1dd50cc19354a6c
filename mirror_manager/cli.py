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

"""
cli.py - CLI for local clusters with pull-through mirror registries.

Subcommands:
    create     Create clusters and mirror registries (cluster, mirrors)
    delete     Delete clusters and mirror registries (cluster, mirrors)

Examples:
    # Kind cluster with the default mirrors
    mirror-manager create cluster --distribution Kind --cluster-name dev

    # Only mirror ghcr.io, with credentials from the environment
    mirror-manager create cluster --mirror-registry '${GH_USER}:${GH_TOKEN}@ghcr.io'

    # Talos cluster, keep the registry caches after deletion
    mirror-manager delete cluster --distribution Talos --cluster-name dev

For detailed usage information, run: mirror-manager --help
"""

from __future__ import annotations

import logging
import sys

import typer
from rich.markup import escape

from mirror_manager import console
from mirror_manager.commands import create_cmd, delete_cmd

app = typer.Typer(
    help="Local Kubernetes clusters with pull-through mirror registries.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.add_typer(create_cmd.app, name="create")
app.add_typer(delete_cmd.app, name="delete")


def main() -> None:
    """Console entry point; prints uncaught errors and exits 1."""
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {escape(str(e))}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
