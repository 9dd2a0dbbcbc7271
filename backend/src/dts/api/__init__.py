"""
API package - FastAPI routes, schemas and error mapping.
"""
