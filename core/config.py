import os

# Application environment
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
DEBUG = ENVIRONMENT == "development"

APP_NAME = "Coded Signal API"
APP_VERSION = "1.0.0"
PORT = int(os.getenv("PORT", "5000"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "/var/log/codedsignal_api/app.log")

# Database settings
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./codedsignal.db")
DB_TIMEOUT_SECONDS = float(os.getenv("DB_TIMEOUT_SECONDS", "10"))

# Token settings
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_DAYS = int(os.getenv("ACCESS_TOKEN_EXPIRE_DAYS", "7"))

# Federated sign-in
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")

# Uploads
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "/tmp/uploads")
PUBLIC_UPLOAD_BASE_URL = os.getenv("PUBLIC_UPLOAD_BASE_URL", "/Uploads")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))  # 5MB
MAX_PROFILE_IMAGES = 5

# Post acceptance quota
ACCEPTANCE_QUOTA = int(os.getenv("ACCEPTANCE_QUOTA", "5"))
BANK_NAME = os.getenv("BANK_NAME", "Your Bank Name")
ACCOUNT_NUMBER = os.getenv("ACCOUNT_NUMBER", "1234567890")
ACCOUNT_NAME = os.getenv("ACCOUNT_NAME", "Coded Signal")

# Posts and chat
POST_CONTENT_MAX_LENGTH = 500
POST_SUMMARY_LENGTH = 50
MESSAGE_MAX_LENGTH = int(os.getenv("MESSAGE_MAX_LENGTH", "1000"))
POST_EXPIRY_SWEEP_SECONDS = int(os.getenv("POST_EXPIRY_SWEEP_SECONDS", "60"))

# CORS
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "https://codedsignal.org,http://localhost:5000"
    ).split(",")
    if origin.strip()
]
