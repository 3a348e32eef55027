"""
Application layer - administrative and status services built on the domain
"""
