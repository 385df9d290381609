"""Command-line interface for pkginstall."""
