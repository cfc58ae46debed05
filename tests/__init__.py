"""
filebackup snapshot engine test suite.

This package contains:
- unit/: Unit tests per component (temporary directories only)
- integration/: Engine flows and the command line against a temp workspace
"""
