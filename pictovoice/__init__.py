"""
PictoVoice — gaze-driven pictogram communication.

Gaze (or pointer) dwell → pictogram selection → AI phrase generation with
local fallback → speech.
"""

__version__ = "1.0.0"
__author__ = "PictoVoice Team"
