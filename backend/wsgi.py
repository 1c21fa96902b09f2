# backend/wsgi.py
from salon import create_app

app = create_app()
