"""
Contract tests for the Oven Monitor HTTP and WebSocket API.

Usage:
    pytest tests/contract/ -m contract
"""
