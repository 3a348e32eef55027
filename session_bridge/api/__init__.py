"""
HTTP surface - status and administration endpoints
"""
