"""
Deterministic lifecycle control of operating system services on local or remote hosts.
"""

__version__ = "1.0.0"
