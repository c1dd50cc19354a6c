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

"""Progress notification sinks."""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from mirror_manager import console as default_console


class Notifier:
    """Sink for user-facing progress messages. The base class discards everything."""

    def title(self, message: str) -> None:
        pass

    def activity(self, message: str) -> None:
        pass

    def success(self, message: str, elapsed: float | None = None) -> None:
        pass

    def warning(self, message: str) -> None:
        pass

    def error(self, message: str) -> None:
        pass


NullNotifier = Notifier


class ConsoleNotifier(Notifier):
    """Render progress on a rich console."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or default_console

    def title(self, message: str) -> None:
        self.console.print(Panel.fit(escape(message), style="bold blue"))

    def activity(self, message: str) -> None:
        self.console.print(f"[yellow]\u2139\ufe0f  {escape(message)}[/yellow]")

    def success(self, message: str, elapsed: float | None = None) -> None:
        suffix = f" [dim]({elapsed:.1f}s)[/dim]" if elapsed is not None else ""
        self.console.print(f"[green]\u2705 {escape(message)}[/green]{suffix}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]\u26a0\ufe0f  {escape(message)}[/yellow]")

    def error(self, message: str) -> None:
        self.console.print(f"[red]\u274c {escape(message)}[/red]")

