"""
Infrastructure layer - configuration, store adapters and external collaborators
"""
