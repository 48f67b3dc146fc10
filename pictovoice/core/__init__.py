"""
core — configuration, constants, structured logging and the board session.
"""
