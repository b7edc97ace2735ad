"""
CONVOY - Static Analysis Provider Orchestrator

Coordinates pluggable static-analysis providers, drives rule evaluation and
dependency extraction against them, and writes deterministic output artifacts.

Copyright (c) 2025
Licensed under MIT License
"""

__version__ = "1.0.0"
__author__ = "CONVOY Team"
__status__ = "Development"
