"""ORB feature extraction with semantic label descriptors, and descriptor matching for SLAM."""

__version__ = "0.1.0"