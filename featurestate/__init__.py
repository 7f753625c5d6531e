"""
featurestate - feature flag state engine.
"""

__version__ = "0.1.0"
