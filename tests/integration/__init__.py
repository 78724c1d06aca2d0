"""
Integration tests for the oven monitor.

These drive the controller end to end with virtual timers: serial lines in,
session documents and temperature records out, and a simulated restart that
recovers persisted sessions.
"""
