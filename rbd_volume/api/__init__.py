"""
Docker volume plugin HTTP API.
"""
