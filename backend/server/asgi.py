"""
ASGI entry point for the relay.

    uvicorn server.asgi:app --app-dir backend

Environment comes from the process, then .env.local, then .env
(earlier sources win; python-dotenv never overrides existing variables).
"""

from dotenv import load_dotenv

load_dotenv(".env.local")
load_dotenv()

from server.app import create_app  # pylint: disable=wrong-import-position

# Fails fast with RuntimeError when DASHSCOPE_API_KEY is missing
app = create_app()
