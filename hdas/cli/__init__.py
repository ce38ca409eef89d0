"""
HDAS command line tools.
"""
