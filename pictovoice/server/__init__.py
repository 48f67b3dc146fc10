"""
server — FastAPI phrase proxy (health, connection test, phrase generation).
"""
