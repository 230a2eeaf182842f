"""
loopkit test suite.
"""
