# ean_intake/routers/__init__.py
