# Web Layer
# =========
# FastAPI JSON API (app.py). Served by uvicorn from main.py.
