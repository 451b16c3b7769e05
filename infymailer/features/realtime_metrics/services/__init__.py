"""
Services for the real-time metrics feature.
"""
