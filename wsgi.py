"""WSGI entry point for the compliance service (gunicorn wsgi:app)."""
from app.web import create_app

app = create_app()

if __name__ == "__main__":
    app.run()
