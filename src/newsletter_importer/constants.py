"""Constants for Newsletter Importer."""

import os
from pathlib import Path

# --- Config paths ---
CONFIG_DIR = Path(os.environ.get("NEWSLETTER_IMPORTER_HOME", Path.home() / ".newsletter-importer"))
CREDENTIALS_PATH = CONFIG_DIR / "credentials.json"  # Google OAuth client secrets
ENV_PATH = CONFIG_DIR / ".env"
DB_PATH = CONFIG_DIR / "newsletters.db"
RULES_PATH = CONFIG_DIR / "rules.json"  # optional override of the packaged rules

# --- Providers ---
PROVIDER_GMAIL = "gmail"
PROVIDER_OUTLOOK = "outlook"
PROVIDERS = (PROVIDER_GMAIL, PROVIDER_OUTLOOK)

# --- Gmail API ---
GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.modify"]
GMAIL_SEARCH_PAGE_SIZE = 50  # ids per search query
GMAIL_NEWSLETTER_LABEL = "Newsletters"
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

GMAIL_SEARCH_QUERIES = [
    "category:promotions",
    "category:updates",
    "label:newsletters",
    "has:unsubscribe",
    "has:list-unsubscribe",
    "subject:(newsletter OR digest OR update OR bulletin)",
    "from:(mailchimp.com OR constantcontact.com OR substack.com OR beehiiv.com OR buttondown.email)",
    "from:(noreply OR no-reply OR newsletter)",
    "-category:personal -category:social -category:forums -category:primary",
    "from:(newsletter OR digest OR weekly OR monthly)",
    "from:(hello@ OR hi@ OR team@ OR noreply@)",
    "from:(beehiiv.com OR substack.com OR ghost.org)",
    "subject:(issue OR edition OR weekly)",
    "{unsubscribe newsletter}",
]

# --- Microsoft Graph ---
OUTLOOK_SCOPES = ["offline_access", "Mail.Read", "Mail.ReadWrite", "User.Read"]
OUTLOOK_TENANT = os.environ.get("OUTLOOK_TENANT", "common")
MICROSOFT_LOGIN_URL = "https://login.microsoftonline.com"
GRAPH_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SEARCH_PAGE_SIZE = 100
GRAPH_BATCH_LIMIT = 20  # requests per $batch call
OUTLOOK_NEWSLETTER_FOLDER = "Newsletters"
HTTP_TIMEOUT = 30  # seconds

OUTLOOK_SEARCH_FILTERS = [
    "categories/any(c:c eq 'newsletters' or c eq 'updates' or c eq 'promotions')",
    "contains(subject,'newsletter') or contains(subject,'unsubscribe')",
    "contains(from/emailAddress/address,'noreply') or contains(from/emailAddress/address,'no-reply')",
    "hasAttachments eq false and importance eq 'low'",
]

# --- Sync ---
CHUNK_SIZE = 5  # messages fetched and classified together
CHUNK_DELAY = 0.2  # seconds between chunks
RECENT_DAYS = 30  # look-back window for allow-list syncs
TOKEN_REFRESH_SKEW_MINUTES = 5

# --- Thresholds ---
PREVIEW_THRESHOLD = 35
COMMIT_THRESHOLD = 40
CONFIDENCE_HIGH = 60
CONFIDENCE_MEDIUM = 40
