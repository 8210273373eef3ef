"""Clearmark - watermark detection and removal backed by Gemini."""

__version__ = "0.1.0"
