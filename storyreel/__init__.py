"""
storyreel — usage-metered story and video-short generation worker.
"""

__version__ = "0.1.0"
