"""Core building blocks shared by all pkginstall domains."""
