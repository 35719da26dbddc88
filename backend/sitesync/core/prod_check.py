"""
Startup security checks for APP_ENV=prod.
Any failure raises RuntimeError and the process does not start.
"""
from sitesync.core.config import settings

# Values considered insecure defaults in production
INSECURE_DEFAULTS = {
    "HMAC_SECRET": "change_me_hmac_secret",
    "ENCRYPTION_KEY": "change_me_encryption_key",
}


def validate_production_config() -> None:
    """Refuse default secrets, an open control API, wildcard CORS and plain-http webhooks in production."""
    if (getattr(settings, "app_env", "dev") or "dev").strip().lower() != "prod":
        return

    errors: list[str] = []

    if (settings.cors_origins or "").strip() in ("", "*"):
        errors.append("CORS_ORIGINS must list explicit origins in production.")

    if (settings.hmac_secret or "").strip() in ("", INSECURE_DEFAULTS["HMAC_SECRET"]):
        errors.append("HMAC_SECRET must be set and must not use the default value in production.")
    if (settings.encryption_key or "").strip() in ("", INSECURE_DEFAULTS["ENCRYPTION_KEY"]):
        errors.append("ENCRYPTION_KEY must be set and must not use the default value in production.")

    if not (settings.scheduler_control_token or "").strip():
        errors.append("SCHEDULER_CONTROL_TOKEN must be set in production.")

    webhook = (settings.alert_webhook_url or "").strip().lower()
    if webhook and not webhook.startswith("https://"):
        errors.append("ALERT_WEBHOOK_URL must use https in production.")

    if "change_me" in (settings.database_url or ""):
        errors.append("DATABASE_URL must not contain a default password (change_me) in production.")

    if errors:
        raise RuntimeError(
            "Invalid production configuration:\n  - " + "\n  - ".join(errors)
        )
