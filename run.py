"""Local development entry point.

Usage:
    python run.py

Loads .env first so create_app() sees the same variables `flask run` would.
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from saaskit import create_app

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=5001)
