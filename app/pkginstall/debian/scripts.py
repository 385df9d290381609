"""Maintainer lifecycle scripts.

Debian recognizes exactly four lifecycle slots. Deferred symlinks are
turned into a POSIX shell block that links each target only if nothing
exists there yet, so reinstalling the package never overwrites files.
"""

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pkginstall.symlinks.processor import SymlinkRequest

SYMLINK_SCRIPT_HEADER = "# Deferred symlinks generated by pkginstall"

_LINK_FUNCTION = """\
link_if_absent() {
    if [ -e "$2" ] || [ -L "$2" ]; then
        echo "Warning: $2 already exists, not creating symlink" >&2
        return 0
    fi
    mkdir -p "$(dirname "$2")"
    ln -s "$1" "$2"
}
"""


def _quote(value: str) -> str:
    """Single-quote a value for POSIX sh, always."""
    return "'" + value.replace("'", "'\"'\"'") + "'"


class LifecycleScript(str, Enum):
    """Recognized maintainer script slots."""

    PREINST = "preinst"
    POSTINST = "postinst"
    PRERM = "prerm"
    POSTRM = "postrm"

    @classmethod
    def parse(cls, name: str) -> "LifecycleScript":
        """Resolve a slot name, raising ValueError for unknown names."""
        try:
            return cls(name)
        except ValueError:
            msg = f"Invalid maintainer script name: {name}"
            raise ValueError(msg) from None


def slot_from_filename(path: str | Path) -> LifecycleScript:
    """Infer the lifecycle slot from a script file name.

    ``postinst``, ``postinst.sh`` and ``postinst-myapp`` all map to
    POSTINST. Longer slot names are tried first.

    Raises:
        ValueError: If the name does not start with a slot name.
    """
    name = Path(path).name
    for slot in sorted(LifecycleScript, key=lambda s: len(s.value), reverse=True):
        if name.startswith(slot.value):
            return slot
    msg = f"Cannot determine script type from file name: {name}"
    raise ValueError(msg)


def render_symlink_script(requests: "list[SymlinkRequest]", include_shebang: bool = True) -> str:
    """Render the postinst block that creates deferred symlinks.

    Args:
        requests: Queued symlink requests, in queue order.
        include_shebang: Emit the interpreter line and ``set -e``. Disable
            when appending to an existing user script.

    Returns:
        Shell script text.
    """
    parts: list[str] = []
    if include_shebang:
        parts.append("#!/bin/sh\nset -e\n")
    parts.append(SYMLINK_SCRIPT_HEADER + "\n")
    parts.append(_LINK_FUNCTION)
    for request in requests:
        if request.description:
            parts.append(f"# {request.description}\n")
        parts.append(f"link_if_absent {_quote(request.source)} {_quote(request.target)}\n")
    return "\n".join(parts)
