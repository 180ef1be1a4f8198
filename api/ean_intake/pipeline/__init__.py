# ean_intake/pipeline/__init__.py
"""Import session stages: intake, parsing, EAN analysis, conversion, activation."""
