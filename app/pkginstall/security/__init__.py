"""Path transformation and validation.

This package maps sensitive system paths into the secure root, validates
individual paths, symlink pairs and staged package trees, and statically
analyzes lifecycle scripts for dangerous operations.
"""

from pkginstall.security.pathmap import DirectorySet, MappingRule, Membership, PathMapper
from pkginstall.security.policy import MapperConfig, ScriptPolicy, SecurityLevel, SecurityPolicy
from pkginstall.security.scripts import ScriptValidationResult, ScriptValidator
from pkginstall.security.validator import FileValidationResult, PathValidator

__all__ = [
    "DirectorySet",
    "FileValidationResult",
    "MapperConfig",
    "MappingRule",
    "Membership",
    "PathMapper",
    "PathValidator",
    "ScriptPolicy",
    "ScriptValidationResult",
    "ScriptValidator",
    "SecurityLevel",
    "SecurityPolicy",
]
