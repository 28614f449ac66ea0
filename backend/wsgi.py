# backend/wsgi.py
from stockpos import create_app

app = create_app()
