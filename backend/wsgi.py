# backend/wsgi.py
from pinauth import create_app

app = create_app()
