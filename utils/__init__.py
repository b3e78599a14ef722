"""
Shared utilities: exceptions, retry policy and time-window helpers.
"""
