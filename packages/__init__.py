"""Shared packages for the utility bill manager.

Modules here hold domain code that any application in the repository can
import. Keep their public API small and free of web or storage concerns.
"""
