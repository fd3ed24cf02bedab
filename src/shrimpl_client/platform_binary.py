"""Bundled language server binary selection per platform."""

from __future__ import annotations

from dataclasses import dataclass
import platform
import sys

SERVER_BINARY_STEM = "shrimpl-lsp"

OS_WINDOWS = "win32"
OS_MACOS = "darwin"
OS_LINUX = "linux"

ARCH_X64 = "x64"
ARCH_ARM64 = "arm64"

_OS_ALIASES: dict[str, str] = {
    "win32": OS_WINDOWS,
    "cygwin": OS_WINDOWS,
    "msys": OS_WINDOWS,
    "darwin": OS_MACOS,
}

_ARCH_ALIASES: dict[str, str] = {
    "x86_64": ARCH_X64,
    "amd64": ARCH_X64,
    "x64": ARCH_X64,
    "arm64": ARCH_ARM64,
    "aarch64": ARCH_ARM64,
}


@dataclass(frozen=True)
class PlatformId:
    os_family: str
    arch: str


def os_family(raw: str | None = None) -> str:
    value = (raw if raw is not None else sys.platform).strip().lower()
    if value.startswith("linux"):
        return OS_LINUX
    return _OS_ALIASES.get(value, value)


def cpu_arch(raw: str | None = None) -> str:
    value = (raw if raw is not None else platform.machine()).strip().lower()
    return _ARCH_ALIASES.get(value, value)


def current_platform() -> PlatformId:
    return PlatformId(os_family=os_family(), arch=cpu_arch())


def platform_binary_name(
    os_name: str,
    arch: str,
    *,
    stem: str = SERVER_BINARY_STEM,
) -> str:
    """Return the bundled server filename for ``(os_name, arch)``.

    Every pair maps to a name; anything not listed falls back to the
    Linux x64 build.
    """
    if os_name == OS_WINDOWS:
        return f"{stem}-win32-x64.exe"
    if os_name == OS_MACOS and arch == ARCH_ARM64:
        return f"{stem}-darwin-arm64"
    return f"{stem}-linux-x64"
