"""Debian package assembly: metadata, lifecycle scripts, archiving and the builder."""
