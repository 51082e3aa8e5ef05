"""
Service layer used by the plugin API.
"""
