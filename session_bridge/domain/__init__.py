"""
Domain layer - session lifecycle models, collaborator ports and services
"""
