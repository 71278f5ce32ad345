"""
Watch mode for shader builds.

One complete build runs first, so the backend is ensured and a manifest
exists. After that the shader crate directory is watched with watchdog, and
every batch of source changes triggers a recompile and a fresh manifest
against the same backend entry.

Compile errors during watching are reported and the watch continues; the
next change gets another attempt. Everything else (and Ctrl+C) ends it.
"""

import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..config.build_config import BuildConfiguration
from ..errors import CompileError, OutputWriteError
from .orchestrator import BuildOrchestrator, BuildResult

# Paths under the shader crate whose changes never trigger a rebuild
IGNORED_DIRS = ("target",)
IGNORED_SUFFIXES = (".spv",)


class _ChangeHandler(FileSystemEventHandler):
    """Forwards file events to the watcher."""

    def __init__(self, watcher: "ShaderCrateWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        for raw_path in (event.src_path, getattr(event, "dest_path", "")):
            if raw_path:
                self.watcher.notify(Path(os.fsdecode(raw_path)))


class ShaderCrateWatcher:
    """
    Rebuilds a shader crate whenever its sources change.

    Example usage:
        watcher = ShaderCrateWatcher(orchestrator, config)
        watcher.run()  # Until Ctrl+C
    """

    def __init__(
        self,
        orchestrator: BuildOrchestrator,
        config: BuildConfiguration,
        debounce: float = 0.3,
        poll_interval: float = 0.5,
        observer_factory: Callable[[], Observer] = Observer,
        on_build: Optional[Callable[[BuildResult], None]] = None,
    ):
        """
        Initialize shader crate watcher.

        Args:
            orchestrator: Orchestrator running the builds
            config: Resolved configuration of the crate to watch
            debounce: Seconds to wait after a change so related writes are batched
            poll_interval: Seconds between checks of the stop event
            observer_factory: Creates the watchdog observer
            on_build: Called with each successful build result
        """
        self.orchestrator = orchestrator
        self.config = config
        self.debounce = debounce
        self.poll_interval = poll_interval
        self.observer_factory = observer_factory
        self.on_build = on_build
        self._changed = threading.Event()

        self.package_dir = Path(os.path.realpath(config.package_dir))
        self._ignored: List[Path] = [self.package_dir / name for name in IGNORED_DIRS]
        output_dir = Path(os.path.realpath(config.output_dir))
        if output_dir.is_relative_to(self.package_dir) and output_dir != self.package_dir:
            self._ignored.append(output_dir)
        self._manifest_path = output_dir / config.manifest_file

    def is_relevant(self, path: Path) -> bool:
        """Check whether a changed path should trigger a rebuild."""
        path = Path(os.path.realpath(path))
        if not path.is_relative_to(self.package_dir):
            return False
        if path == self._manifest_path or path.suffix in IGNORED_SUFFIXES:
            return False
        if any(path.is_relative_to(ignored) for ignored in self._ignored):
            return False
        # Hidden files and directories (.git, editor swap files)
        return not any(part.startswith(".") for part in path.relative_to(self.package_dir).parts)

    def notify(self, path: Path) -> None:
        """Record a changed path."""
        if self.is_relevant(path):
            logging.debug(f"Change detected: {path}")
            self._changed.set()

    def run(
        self, stop: Optional[threading.Event] = None, max_builds: Optional[int] = None
    ) -> int:
        """
        Build once, then rebuild on every change until stopped.

        Args:
            stop: Ends the watch when set
            max_builds: Ends the watch after this many rebuilds

        Returns:
            Number of rebuilds attempted after the initial build

        Raises:
            SpvforgeError: If the initial build fails, or a rebuild fails with
                anything other than a compile or output error
        """
        stop = stop or threading.Event()
        result = self.orchestrator.build(self.config)
        install = result.install
        if self.on_build:
            self.on_build(result)

        self._changed.clear()
        observer = self.observer_factory()
        observer.schedule(_ChangeHandler(self), str(self.package_dir), recursive=True)
        observer.start()
        logging.info(f"Watching {self.package_dir} for changes")
        print(f"Watching {self.package_dir} for changes (Ctrl+C to stop)...")

        rebuilds = 0
        try:
            while not stop.is_set() and (max_builds is None or rebuilds < max_builds):
                if not self._changed.wait(timeout=self.poll_interval):
                    continue
                time.sleep(self.debounce)
                self._changed.clear()
                rebuilds += 1
                self._rebuild(install)
        finally:
            observer.stop()
            observer.join()
        return rebuilds

    def _rebuild(self, install) -> None:
        print(f"Rebuilding {self.package_dir}...")
        try:
            result = self.orchestrator.rebuild(self.config, install)
        except (CompileError, OutputWriteError) as e:
            logging.error(f"Rebuild failed: {e}")
            print(f"Rebuild failed: {e}")
            diagnostics = getattr(e, "diagnostics", "")
            if diagnostics:
                print(diagnostics)
            return

        logging.info(f"Rebuilt {len(result.outputs)} entry point(s) in {result.build_time:.2f}s")
        if self.on_build:
            self.on_build(result)
