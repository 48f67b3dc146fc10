"""
output — spoken output of composed phrases.
"""
