"""Clip QA - Video Segmentation Job Manager.

A Python CLI tool for ingesting videos and cutting them into fixed-duration
clips for review, with two segmentation modes:
1. Fast Mode: Stream-copy segmentation, cuts land on existing keyframes
2. Precise Mode: Re-keyframe the source once, then segment on exact boundaries
"""

__version__ = "0.1.0"
