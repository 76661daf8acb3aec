"""
Test suite for zstage_control package.

This directory contains automated unit tests that run without hardware:
the stage and frame source are replaced by in-memory fakes or by the
simulated backend.
"""
