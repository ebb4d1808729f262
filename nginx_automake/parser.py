"""Parsing of ``nginx -V`` output into structured build information."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

__all__ = [
    "ParseError",
    "ParseResult",
    "parse_nginx_v",
    "valid_version",
    "extract_modules",
    "split_shell_args",
]

_VERSION_RE = re.compile(r"nginx/([0-9]+\.[0-9.]+)")
_PLAIN_VERSION_RE = re.compile(r"[0-9]+\.[0-9.]+")

_VERSION_MARKER = "nginx version:"
_CONFIGURE_MARKER = "configure arguments:"
_MODULE_PREFIXES = ("--with-", "--add-module=", "--add-dynamic-module=", "--without-")


class ParseError(ValueError):
    """Raised when ``nginx -V`` output lacks required information."""


@dataclass
class ParseResult:
    """Build information extracted from ``nginx -V`` output."""

    version: str = ""
    configure_arguments: str = ""
    arguments: list[str] = field(default_factory=list)
    modules: list[str] = field(default_factory=list)
    built_by: str = ""
    built_with: str = ""
    compiler: str = ""

    def to_dict(self) -> dict:
        """Return the JSON representation used by the web API."""
        return {
            "version": self.version,
            "configureArguments": self.configure_arguments,
            "arguments": list(self.arguments),
            "modules": list(self.modules),
            "builtBy": self.built_by,
            "builtWith": self.built_with,
            "compiler": self.compiler,
        }


def parse_nginx_v(output: str) -> ParseResult:
    """Parse the text printed by ``nginx -V``.

    Raises :class:`ParseError` if the version or the configure arguments
    cannot be found.
    """
    result = ParseResult()
    for line in output.split("\n"):
        trimmed = line.strip()
        if not trimmed:
            continue
        if _VERSION_MARKER in trimmed:
            match = _VERSION_RE.search(trimmed)
            if match:
                result.version = match.group(1)
            continue
        if _CONFIGURE_MARKER in trimmed:
            idx = trimmed.index(_CONFIGURE_MARKER)
            result.configure_arguments = trimmed[idx + len(_CONFIGURE_MARKER):].strip()
            continue
        if "built by" in trimmed:
            result.built_by = trimmed
            continue
        if "built with" in trimmed:
            result.built_with = trimmed
            continue
        if "gcc" in trimmed or "clang" in trimmed:
            if not result.compiler:
                result.compiler = trimmed
            continue

    if not result.version:
        raise ParseError("无法解析 Nginx 版本，请确认输出中包含 nginx version")
    if not result.configure_arguments:
        raise ParseError("无法解析 configure arguments，请确认输出包含 configure arguments")

    result.arguments = split_shell_args(result.configure_arguments)
    result.modules = extract_modules(result.arguments)
    return result


def valid_version(version: str) -> bool:
    """Return True if *version* looks like a plain nginx version such as 1.24.0."""
    return _PLAIN_VERSION_RE.fullmatch(version.strip()) is not None


def extract_modules(args: list[str]) -> list[str]:
    """Return the module-related arguments, in order, without duplicates."""
    seen: set[str] = set()
    modules: list[str] = []
    for arg in args:
        if arg.startswith(_MODULE_PREFIXES) and arg not in seen:
            seen.add(arg)
            modules.append(arg)
    return modules


def split_shell_args(text: str) -> list[str]:
    """Split a command line into words, honouring quotes and backslash escapes."""
    args: list[str] = []
    current: list[str] = []
    quote = ""
    escaped = False

    def flush() -> None:
        if current:
            args.append("".join(current))
            current.clear()

    for ch in text:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif quote:
            if ch == quote:
                quote = ""
            else:
                current.append(ch)
        elif ch in ("'", '"'):
            quote = ch
        elif ch in (" ", "\n", "\t"):
            flush()
        else:
            current.append(ch)
    flush()
    return args