import os

DATABASE_URL = os.getenv("BOOKING_DB")

RABBIT_URL = os.getenv("RABBIT_URL")  # optional in dev, required if you want events
REDIS_URL = os.getenv("REDIS_URL")

USER_SERVICE_URL = os.getenv("USER_SERVICE_URL") or "http://user-service:8000"
NOTIFICATION_SERVICE_URL = os.getenv("NOTIFICATION_SERVICE_URL") or "http://notification-service:8000"
CHAT_SERVICE_URL = os.getenv("CHAT_SERVICE_URL") or "http://chat-service:8000"
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT") or "3.0")

OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES") or "15")
OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS") or "5")

# assigned provider may not cancel this close to the scheduled time
CANCELLATION_LEAD_HOURS = float(os.getenv("CANCELLATION_LEAD_HOURS") or "2")

TX_MAX_RETRIES = int(os.getenv("TX_MAX_RETRIES") or "5")

LOG_LEVEL = os.getenv("LOG_LEVEL") or "INFO"
