"""
Decoders for binary upstream formats.
"""
