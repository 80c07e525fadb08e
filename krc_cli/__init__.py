"""
Command line interface for the KRC Transfer SDK.
"""
