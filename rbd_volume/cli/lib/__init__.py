"""
Shared libraries: configuration, state, device and mount helpers.
"""
