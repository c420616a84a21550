"""Build profiles and configuration for the Chromium layer builder.

A profile captures what differs between base images (package manager,
package lists, interpreter); ``BuildConfig`` captures where a single build
reads from and writes to.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

DEFAULT_SEARCH_PATH: Tuple[str, ...] = (
    "/usr/lib64",
    "/usr/lib",
    "/lib64",
    "/lib",
    "/opt/lib64",
    "/usr/lib/x86_64-linux-gnu",
)

# Runtime library directories of the Lambda execution environment
DEFAULT_FALLBACK_SEARCH_PATH: Tuple[str, ...] = ("/opt/lib", "/var/lang/lib")

DEFAULT_STEP_TIMEOUT = 900.0

BASE_PACKAGES: Tuple[str, ...] = (
    "which",
    "findutils",
    "tar",
    "xz",
    "unzip",
    "curl",
    "fontconfig",
    "freetype",
    "freetype-devel",
    "glibc-langpack-en",
)

CHROMIUM_PACKAGES: Tuple[str, ...] = (
    "alsa-lib",
    "atk",
    "at-spi2-atk",
    "dbus-glib",
    "cups-libs",
    "freetype",
    "fontconfig",
    "gtk3",
    "libX11",
    "libXcomposite",
    "libXcursor",
    "libXdamage",
    "libXrandr",
    "libXtst",
    "libXrender",
    "libXfixes",
    "libXext",
    "libXScrnSaver",
    "libxcb",
    "libxshmfence",
    "libxkbcommon",
    "mesa-libgbm",
    "libdrm",
    "nspr",
    "nss",
    "nss-util",
    "expat",
    "systemd-libs",
    "pango",
    "cairo",
    "pulseaudio-libs",
)

DOWNLOAD_PACKAGES: Tuple[str, ...] = ("curl", "tar", "gzip", "unzip", "xz")


@dataclass(frozen=True)
class BuildProfile:
    """Everything that differs between supported base images."""

    name: str
    base_image: str
    package_manager: str
    base_packages: Tuple[str, ...] = BASE_PACKAGES
    chromium_packages: Tuple[str, ...] = CHROMIUM_PACKAGES
    download_packages: Tuple[str, ...] = DOWNLOAD_PACKAGES
    python_invocation: Optional[str] = None

    def __post_init__(self) -> None:
        if self.package_manager not in ("yum", "dnf"):
            raise ValueError(
                f"Unsupported package manager for profile {self.name}: "
                f"{self.package_manager}"
            )


PROFILES: Dict[str, BuildProfile] = {
    "lambda-python3.12": BuildProfile(
        name="lambda-python3.12",
        base_image="public.ecr.aws/lambda/python:3.12",
        package_manager="yum",
    ),
    "amazonlinux2023": BuildProfile(
        name="amazonlinux2023",
        base_image="amazonlinux:2023",
        package_manager="dnf",
    ),
    "amazonlinux2": BuildProfile(
        name="amazonlinux2",
        base_image="amazonlinux:2",
        package_manager="yum",
    ),
}

DEFAULT_PROFILE = "lambda-python3.12"


def get_profile(name: str) -> BuildProfile:
    """Look up a built-in profile by name."""
    try:
        return PROFILES[name]
    except KeyError:
        known = ", ".join(sorted(PROFILES))
        raise ValueError(f"Unknown build profile '{name}' (known: {known})") from None


def _split_path_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(":") if part.strip()]


@dataclass
class BuildConfig:
    """Paths and switches for one layer build."""

    profile: BuildProfile
    workspace: Path = Path("/workspace")
    out_dir: Path = Path("/out")
    python_version: str = "3.12"
    # Browser download location; also where the built tree is searched from
    browsers_path: Path = Path("/tmp/ms-playwright")
    search_path: List[Path] = field(
        default_factory=lambda: [Path(p) for p in DEFAULT_SEARCH_PATH]
    )
    fallback_search_path: List[Path] = field(
        default_factory=lambda: [Path(p) for p in DEFAULT_FALLBACK_SEARCH_PATH]
    )
    step_timeout: Optional[float] = DEFAULT_STEP_TIMEOUT
    with_deps: bool = False
    layer_name: Optional[str] = None
    layer_bucket: Optional[str] = None

    @property
    def wheelhouse(self) -> Path:
        return self.workspace / "wheelhouse"

    @property
    def requirements(self) -> Path:
        return self.workspace / "requirements.txt"

    @property
    def site_packages(self) -> Path:
        return (
            self.out_dir / "python" / "lib" / f"python{self.python_version}"
            / "site-packages"
        )

    @property
    def lib_dir(self) -> Path:
        return self.out_dir / "lib64"

    @property
    def staged_browsers_dir(self) -> Path:
        return self.out_dir / ".cache" / "ms-playwright"

    @property
    def log_path(self) -> Path:
        return self.out_dir / "build.log"

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides):
        """Build a config from LAYER_BUILD_* environment variables.

        Keyword overrides win over the environment; ``None`` overrides are
        ignored so argparse defaults can be passed straight through.
        """
        env = os.environ if environ is None else environ

        profile_name = env.get("LAYER_BUILD_PROFILE", DEFAULT_PROFILE)
        kwargs = {
            "profile": get_profile(profile_name),
            "workspace": Path(env.get("LAYER_BUILD_WORKSPACE", "/workspace")),
            "out_dir": Path(env.get("LAYER_BUILD_OUT", "/out")),
            "python_version": env.get("LAYER_BUILD_PYTHON_VERSION", "3.12"),
            "browsers_path": Path(
                env.get("PLAYWRIGHT_BROWSERS_PATH", "/tmp/ms-playwright")
            ),
            "layer_name": env.get("LAYER_NAME") or None,
            "layer_bucket": env.get("LAYER_BUCKET_NAME") or None,
        }

        search_path = _split_path_list(env.get("LAYER_BUILD_SEARCH_PATH"))
        if search_path:
            kwargs["search_path"] = [Path(p) for p in search_path]

        timeout = env.get("LAYER_BUILD_STEP_TIMEOUT")
        if timeout:
            kwargs["step_timeout"] = _positive_timeout(timeout)

        for key, value in overrides.items():
            if value is None:
                continue
            if key == "step_timeout":
                value = _positive_timeout(value)
            elif key == "profile" and isinstance(value, str):
                value = get_profile(value)
            elif key in ("workspace", "out_dir", "browsers_path"):
                value = Path(value)
            elif key in ("search_path", "fallback_search_path"):
                value = [Path(p) for p in _as_sequence(value)]
            kwargs[key] = value

        return cls(**kwargs)


def _positive_timeout(value) -> Optional[float]:
    """Zero or a negative value disables the timeout."""
    seconds = float(value)
    return seconds if seconds > 0 else None


def _as_sequence(value) -> Sequence[str]:
    if isinstance(value, (str, os.PathLike)):
        return [os.fspath(value)]
    return list(value)
