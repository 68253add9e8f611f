"""
Agendify configuration. Values come from the environment; no secrets in this file.
DATABASE_URL has no default: startup fails without it (see database.init_db).
"""
import os
import shlex

# X/Twitter OAuth2 app credentials (confidential client)
CLIENT_ID = os.environ.get("CLIENT_ID", "")
CLIENT_SECRET = os.environ.get("CLIENT_SECRET", "")

# Job queue storage; required
DATABASE_URL = os.environ.get("DATABASE_URL")

# Signs the browser session cookie that keys pending authorization flows
SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-session-secret-change-me")

# Must exactly match the callback registered with the provider
REDIRECT_URI = os.environ.get(
    "OAUTH_REDIRECT_URI", "https://agendifyx.up.railway.app/api/auth/twitter/callback2"
)
AUTHORIZE_URL = os.environ.get("OAUTH_AUTHORIZE_URL", "https://twitter.com/i/oauth2/authorize")
TOKEN_URL = os.environ.get("OAUTH_TOKEN_URL", "https://api.twitter.com/2/oauth2/token")
SCOPE = os.environ.get("OAUTH_SCOPE", "tweet.read tweet.write users.read")

# Platform API for authenticated calls made by jobs
API_BASE_URL = os.environ.get("TWITTER_API_BASE_URL", "https://api.twitter.com").rstrip("/")

# Deadline (seconds) for every outbound HTTP call
HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "10"))

# Fixed timezone for cron schedules and the engagement trigger
TIMEZONE = os.environ.get("TIMEZONE", "Asia/Jerusalem")

# Job queue: poll interval and how long a "running" lock is honoured (seconds)
JOB_POLL_INTERVAL = float(os.environ.get("JOB_POLL_INTERVAL", "5"))
JOB_LOCK_LIFETIME = float(os.environ.get("JOB_LOCK_LIFETIME", "600"))

# Engagement metrics maintenance procedure (external, run twice daily)
ENGAGEMENT_UPDATE_COMMAND = shlex.split(
    os.environ.get("ENGAGEMENT_UPDATE_COMMAND", "node ./scripts/update_engagement_metrics.js")
)
ENGAGEMENT_UPDATE_TIMEOUT = float(os.environ.get("ENGAGEMENT_UPDATE_TIMEOUT", "900"))
ENGAGEMENT_UPDATE_ENABLED = os.environ.get("ENGAGEMENT_UPDATE_ENABLED", "1").lower() not in ("0", "false", "no")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
PORT = int(os.environ.get("PORT", "3000"))
