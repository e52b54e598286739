"""
File asset lifecycle and integrity service.
"""
