"""pkginstall - secure Debian package builder.

Builds installable packages from an arbitrary source tree while keeping
package contents and maintainer scripts out of sensitive system locations.
"""

__version__ = "0.1.0"
