"""
pkglog diagnostics CLI.
"""
