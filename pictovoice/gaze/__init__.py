"""
gaze — gaze message decoding, cursor smoothing, dwell selection and ingress.
"""
