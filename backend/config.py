# backend/config.py
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
CLIENT_URL = os.getenv("CLIENT_URL")
JWT_SECRET = os.getenv("JWT_SECRET")
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_CALLBACK_URL = os.getenv("GOOGLE_CALLBACK_URL")
GOOGLE_SERVICE_ACCOUNT_KEY = os.getenv("GOOGLE_SERVICE_ACCOUNT_KEY")
GOOGLE_SERVICE_ACCOUNT_EMAIL = os.getenv("GOOGLE_SERVICE_ACCOUNT_EMAIL")
FIREBASE_CREDENTIALS = os.getenv("FIREBASE_CREDENTIALS")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

if not DATABASE_URL:
    raise ValueError("DATABASE_URL is not set in .env file")
if not CLIENT_URL or not JWT_SECRET:
    raise ValueError("CLIENT_URL and JWT_SECRET must be set in .env file!")
if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
    raise ValueError("Google OAuth credentials are not set in .env file.")

# Comma separated; the client app is always allowed.
CORS_ORIGINS = [CLIENT_URL] + [
    origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",")
    if origin.strip() and origin.strip() != CLIENT_URL
]
