"""
WSGI entrypoint for Gunicorn or other WSGI servers.

Usage:
  gunicorn -w 4 -b 0.0.0.0:8000 wsgi:app
  flask --app wsgi db upgrade
"""
import os

from app import create_app

app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", "8000"))
    app.run(host="0.0.0.0", port=port)
