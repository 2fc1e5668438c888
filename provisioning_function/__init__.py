"""
Site provisioning function: copy a provisioning template from one site to another.
"""

__version__ = "1.0.0"
