"""
intent — pictogram board vocabulary and the bounded selection buffer.
"""
