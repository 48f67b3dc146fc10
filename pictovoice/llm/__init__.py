"""
llm — phrase generation: proxy client, availability tracking, composition,
local template fallback, and the server-side model engine.
"""
