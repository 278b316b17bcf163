"""
Retention sweeping plus the admin and diagnostic endpoints.
"""
