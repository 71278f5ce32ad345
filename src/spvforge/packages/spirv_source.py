"""Backend source resolution.

The backend (rust-gpu's `rustc_codegen_spirv` and `spirv-builder`) can come
from three places:

    registry  spirv-std = "0.9.0"                          -> crates.io version
    git       spirv-std = { git = "...", rev = "82a0f69" }  -> repository + revision
    path      spirv-std = { path = "../rust-gpu/..." }     -> local checkout

This module:
    - detects the source from the shader crate's `spirv-std` dependency (cargo tree)
    - pins a locator to a concrete revision before it is fingerprinted
    - reads the Rust toolchain channel the backend requires (rust-toolchain.toml)
"""

import logging
import re
import shutil
import tempfile
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from urllib.parse import parse_qs, urlparse

from ..command_executor import CommandExecutor, CommandResult
from ..config.build_config import SourceKind, SourceLocator
from ..errors import ConfigurationError, UnresolvableSourceReference
from .cache import Cache
from .downloader import DownloadError, ExtractionError, PackageDownloader, RetryableError, retry_with_backoff

CANONICAL_REPO = "https://github.com/Rust-GPU/rust-gpu"
CRATES_IO_API = "https://crates.io/api/v1/crates/spirv-std"
GITHUB_API = "https://api.github.com"

# Canonical backend version -> toolchain channel pairs (major.minor)
KNOWN_TOOLCHAINS = {
    "0.10": "nightly-2024-04-24",
}

_FULL_COMMIT = re.compile(r"[0-9a-fA-F]{40}")
_SHORT_COMMIT = re.compile(r"[0-9a-fA-F]{7,39}")


@dataclass(frozen=True)
class ResolvedSource:
    """A backend source pinned to a concrete revision."""

    locator: SourceLocator
    revision: str

    @property
    def kind(self) -> SourceKind:
        return self.locator.kind

    @property
    def repository(self) -> str:
        """Repository URL or path the backend is built from."""
        if self.kind == SourceKind.REGISTRY:
            return CANONICAL_REPO
        return self.locator.location

    @property
    def identity(self) -> str:
        """Stable identity string, e.g. 'https://github.com/Rust-GPU/rust-gpu+82a0f69'."""
        if self.kind == SourceKind.REGISTRY:
            return f"crates.io+{self.revision}"
        return f"{self.locator.location}+{self.revision}"

    def __str__(self) -> str:
        return self.identity


def _is_github_url(url: str) -> bool:
    return urlparse(url).netloc.lower() in ("github.com", "www.github.com")


def _strip_version_prefix(version: str) -> str:
    return version[1:] if version.startswith("v") else version


class SourceResolver:
    """Detects, pins and inspects backend sources."""

    def __init__(
        self,
        cache: Cache,
        executor: Optional[CommandExecutor] = None,
        downloader: Optional[PackageDownloader] = None,
        attempts: int = 3,
        show_progress: bool = True,
    ):
        """Initialize source resolver.

        Args:
            cache: Cache handle used to store fetched sources
            executor: Command executor for cargo and git
            downloader: Downloader for crates.io queries and source archives
            attempts: Maximum attempts for network operations
            show_progress: Whether to show download progress
        """
        self.cache = cache
        self.executor = executor or CommandExecutor()
        self._downloader = downloader
        self.attempts = attempts
        self.show_progress = show_progress

    @property
    def downloader(self) -> PackageDownloader:
        if self._downloader is None:
            self._downloader = PackageDownloader(attempts=self.attempts)
        return self._downloader

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_from_package(self, package_dir: Path) -> SourceLocator:
        """Get the backend source from the shader crate's spirv-std dependency.

        Args:
            package_dir: Shader crate directory

        Returns:
            Locator described by the crate's dependency graph

        Raises:
            ConfigurationError: If cargo fails or spirv-std is not a dependency
        """
        package_dir = Path(package_dir).resolve()
        if not package_dir.is_dir():
            raise ConfigurationError(f"Shader crate is not a directory: {package_dir}")

        logging.debug(f"Running `cargo tree` on {package_dir}")
        try:
            result = self.executor.run(
                ["cargo", "tree", "--workspace", "--prefix", "none"], cwd=package_dir
            )
        except FileNotFoundError:
            raise ConfigurationError("cargo not found on PATH")

        if not result.success:
            raise ConfigurationError(
                f"Could not query {package_dir} for its spirv-std dependency:\n{result.output}"
            )

        for line in result.stdout.splitlines():
            if line.startswith("spirv-std "):
                return self.parse_spirv_std_line(line)

        raise ConfigurationError(
            f"spirv-std not found in the dependencies of {package_dir}"
        )

    @staticmethod
    def parse_spirv_std_line(line: str) -> SourceLocator:
        """Parse a `cargo tree` line for spirv-std.

        Examples:
            spirv-std v0.9.0
            spirv-std v0.9.0 (https://github.com/Rust-GPU/rust-gpu?rev=54f6978c#54f6978c) (*)
            spirv-std v0.9.0 (/home/me/rust-gpu/crates/spirv-std)

        Returns:
            Registry, git or path locator
        """
        parts = line.split()
        if len(parts) < 2:
            raise ConfigurationError(f"Could not find spirv-std version in: {line!r}")
        version = parts[1]

        if len(parts) < 3 or parts[2] in ("(*)", "(proc-macro)"):
            return SourceLocator.registry(version)

        source_string = parts[2].strip("()")
        parsed = urlparse(source_string)
        if not (parsed.scheme and parsed.netloc):
            return SourceLocator.path(source_string, version)

        repo = f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
        query = parse_qs(parsed.query)
        if len(query) == 1 and len(query.get("rev", [])) == 1:
            revision = query["rev"][0]
        elif parsed.fragment:
            revision = parsed.fragment
        else:
            revision = version
        return SourceLocator.git(repo, revision)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, locator: SourceLocator) -> ResolvedSource:
        """Pin a locator to a concrete revision.

        Raises:
            UnresolvableSourceReference: If the revision cannot be determined
        """
        if locator.kind == SourceKind.REGISTRY:
            resolved = self._resolve_registry(locator)
        elif locator.kind == SourceKind.GIT:
            resolved = self._resolve_git(locator)
        else:
            resolved = self._resolve_path(locator)
        logging.info(f"Resolved backend source {locator} -> {resolved.revision}")
        return resolved

    def _resolve_registry(self, locator: SourceLocator) -> ResolvedSource:
        version = _strip_version_prefix(locator.revision or "")
        if not version:
            raise UnresolvableSourceReference("Registry source has no version")

        try:
            data = self.downloader.get_json(f"{CRATES_IO_API}/{version}")
        except DownloadError as e:
            raise UnresolvableSourceReference(
                f"Could not verify spirv-std {version} on crates.io: {e}"
            ) from e

        if not data or "version" not in data:
            raise UnresolvableSourceReference(
                f"spirv-std version {version} does not exist on crates.io"
            )
        if data["version"].get("yanked"):
            logging.warning(f"spirv-std {version} has been yanked from crates.io")

        return ResolvedSource(SourceLocator.registry(version), version)

    def _resolve_git(self, locator: SourceLocator) -> ResolvedSource:
        url = locator.location
        revision = locator.revision
        if revision and _FULL_COMMIT.fullmatch(revision):
            commit = revision.lower()
            return ResolvedSource(SourceLocator.git(url, commit), commit)

        # Branch and tag names win over an abbreviated commit of the same spelling
        ref = revision or "HEAD"
        result = self._ls_remote(url, ref)
        commit = self._pick_commit(result.stdout, ref)
        if commit is None and revision and _SHORT_COMMIT.fullmatch(revision):
            commit = self._expand_commit(url, revision.lower())
        if commit is None:
            raise UnresolvableSourceReference(
                f"Reference '{ref}' not found in {url}"
            )
        return ResolvedSource(SourceLocator.git(url, commit), commit)

    def _expand_commit(self, url: str, short: str) -> Optional[str]:
        """Expand an abbreviated commit hash to the full 40-character hash.

        GitHub repositories are asked through the commits API. Other hosts
        are cloned bare without trees or blobs and asked with `git rev-parse`.
        """
        logging.debug(f"Expanding abbreviated commit {short} of {url}")
        if _is_github_url(url):
            repo_path = urlparse(url).path.strip("/").removesuffix(".git")
            try:
                data = self.downloader.get_json(f"{GITHUB_API}/repos/{repo_path}/commits/{short}")
            except DownloadError as e:
                raise UnresolvableSourceReference(
                    f"Could not look up commit '{short}' in {url}: {e}"
                ) from e
            sha = data.get("sha") if isinstance(data, dict) else None
            if not sha or not _FULL_COMMIT.fullmatch(sha) or not sha.lower().startswith(short):
                return None
            return sha.lower()

        with tempfile.TemporaryDirectory() as temp_dir:
            bare = Path(temp_dir) / "repo.git"
            self._git_clone(["git", "clone", "--bare", "--filter=tree:0", url, str(bare)], bare)
            result = self.executor.run(
                ["git", "rev-parse", "--verify", "--quiet", f"{short}^{{commit}}"], cwd=bare
            )
        sha = result.stdout.strip().lower()
        if not result.success or not _FULL_COMMIT.fullmatch(sha):
            return None
        return sha

    def _ls_remote(self, url: str, ref: str) -> CommandResult:
        def attempt() -> CommandResult:
            result = self.executor.run(["git", "ls-remote", url, ref])
            if not result.success:
                raise RetryableError(result.stderr.strip() or f"git exited with {result.returncode}")
            return result

        try:
            return retry_with_backoff(attempt, f"git ls-remote {url} {ref}", attempts=self.attempts)
        except FileNotFoundError:
            raise UnresolvableSourceReference("git not found on PATH")
        except RetryableError as e:
            raise UnresolvableSourceReference(
                f"Could not resolve '{ref}' in {url}: {e}"
            ) from e

    @staticmethod
    def _pick_commit(ls_remote_output: str, ref: str) -> Optional[str]:
        """Choose the commit for ref from `git ls-remote` output.

        Annotated tags list a peeled '^{}' line that names the commit; that
        line wins over the tag object itself.
        """
        refs = {}
        for line in ls_remote_output.splitlines():
            if "\t" not in line:
                continue
            sha, name = line.split("\t", 1)
            refs[name.strip()] = sha.strip()

        candidates = [ref, f"refs/heads/{ref}", f"refs/tags/{ref}"]
        for name in candidates:
            peeled = refs.get(f"{name}^{{}}")
            if peeled:
                return peeled
            if name in refs:
                return refs[name]
        return None

    def _resolve_path(self, locator: SourceLocator) -> ResolvedSource:
        path = Path(locator.location)
        if not path.is_dir():
            raise UnresolvableSourceReference(f"Backend source path does not exist: {path}")
        version = _strip_version_prefix(locator.revision or "")
        if not version:
            raise UnresolvableSourceReference(f"Path source {path} has no version")
        return ResolvedSource(SourceLocator.path(str(path.resolve()), version), version)

    # ------------------------------------------------------------------
    # Toolchain requirements
    # ------------------------------------------------------------------

    def toolchain_channel(self, resolved: ResolvedSource) -> str:
        """Get the toolchain channel the backend source requires.

        Args:
            resolved: Pinned backend source

        Returns:
            Channel string such as 'nightly-2024-04-24'

        Raises:
            ConfigurationError: If the channel cannot be determined
        """
        if resolved.kind == SourceKind.REGISTRY:
            known = KNOWN_TOOLCHAINS.get(".".join(resolved.revision.split(".")[:2]))
            if known:
                return known

        source_dir = self.fetch_source(resolved)
        return self.read_toolchain_channel(source_dir)

    @staticmethod
    def read_toolchain_channel(source_dir: Path) -> str:
        """Parse the channel from rust-toolchain.toml (or legacy rust-toolchain)."""
        toml_path = source_dir / "rust-toolchain.toml"
        legacy_path = source_dir / "rust-toolchain"

        if toml_path.is_file():
            path = toml_path
        elif legacy_path.is_file():
            path = legacy_path
            text = legacy_path.read_text(encoding="utf-8").strip()
            if text and not text.startswith("["):
                return text
        else:
            raise ConfigurationError(f"No rust-toolchain.toml found in {source_dir}")

        try:
            with open(path, "rb") as f:
                toml = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Failed to parse {path}: {e}") from e

        channel = toml.get("toolchain", {}).get("channel")
        if not isinstance(channel, str) or not channel:
            raise ConfigurationError(f"No [toolchain] channel in {path}")
        return channel

    def fetch_source(self, resolved: ResolvedSource) -> Path:
        """Ensure the backend source tree is available locally.

        Path sources are used in place. GitHub sources are fetched as a source
        archive; other git hosts are cloned. Fetched trees are stored under the
        cache's sources directory and only appear there once complete.

        Returns:
            Path to the source tree root
        """
        if resolved.kind == SourceKind.PATH:
            return self._find_workspace_root(Path(resolved.locator.location))

        if self.cache.is_source_cached(resolved.identity):
            return self.cache.get_source_dir(resolved.identity)

        final_dir = self.cache.get_source_dir(resolved.identity)
        final_dir.parent.mkdir(parents=True, exist_ok=True)

        if resolved.kind == SourceKind.REGISTRY:
            archive_ref = f"refs/tags/v{resolved.revision}"
        else:
            archive_ref = resolved.revision

        with tempfile.TemporaryDirectory(dir=final_dir.parent) as temp_dir:
            temp_path = Path(temp_dir)
            if _is_github_url(resolved.repository):
                src_dir = self._fetch_archive(resolved.repository, archive_ref, temp_path)
            else:
                src_dir = self._clone(resolved.repository, resolved.revision, temp_path)

            if final_dir.exists():
                shutil.rmtree(final_dir)
            shutil.move(str(src_dir), str(final_dir))

        logging.info(f"Backend source {resolved} ready at {final_dir}")
        return final_dir

    def _fetch_archive(self, repository: str, ref: str, temp_path: Path) -> Path:
        url = f"{repository.rstrip('/').removesuffix('.git')}/archive/{ref}.tar.gz"
        archive_path = temp_path / "source.tar.gz"
        extract_dir = temp_path / "extracted"
        try:
            self.downloader.download(url, archive_path, show_progress=self.show_progress)
            self.downloader.extract_archive(archive_path, extract_dir)
        except (DownloadError, ExtractionError) as e:
            raise UnresolvableSourceReference(f"Could not fetch backend source: {e}") from e

        # GitHub archives hold a single top-level directory
        extracted = list(extract_dir.iterdir())
        if len(extracted) == 1 and extracted[0].is_dir():
            return extracted[0]
        return extract_dir

    def _clone(self, repository: str, revision: str, temp_path: Path) -> Path:
        checkout = temp_path / "checkout"
        self._git_clone(["git", "clone", "--no-checkout", repository, str(checkout)], checkout)

        result = self.executor.run(["git", "checkout", revision], cwd=checkout)
        if not result.success:
            raise UnresolvableSourceReference(
                f"Could not check out revision '{revision}' of {repository}:\n{result.output}"
            )
        return checkout

    def _git_clone(self, cmd: List[str], dest: Path) -> None:
        repository = cmd[-2]

        def clone() -> None:
            if dest.exists():
                shutil.rmtree(dest)
            result = self.executor.run(cmd)
            if not result.success:
                raise RetryableError(result.stderr.strip())

        try:
            retry_with_backoff(clone, f"git clone {repository}", attempts=self.attempts)
        except FileNotFoundError:
            raise UnresolvableSourceReference("git not found on PATH")
        except RetryableError as e:
            raise UnresolvableSourceReference(f"Could not clone {repository}: {e}") from e

    @staticmethod
    def _find_workspace_root(path: Path) -> Path:
        """Walk up from a crate inside a rust-gpu checkout to the directory holding rust-toolchain.toml."""
        for candidate in [path, *path.parents]:
            if (candidate / "rust-toolchain.toml").is_file() or (candidate / "rust-toolchain").is_file():
                return candidate
        return path
