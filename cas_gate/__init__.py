"""
cas-gate: CAS single sign-on authentication gate.
"""

__version__ = "0.1.0"
