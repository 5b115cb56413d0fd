"""
Service configuration

Built once at startup and handed to every component. Nothing else in the
service reads the environment.
"""
import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "storefront"

    jwt_secret: str = "devsecret"
    jwt_algorithm: str = "HS256"
    token_ttl_hours: int = 3

    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    stripe_webhook_secret: str = ""

    email_host: str = ""
    email_port: int = 587
    email_user: str = ""
    email_password: str = ""
    from_name: str = "Storefront"

    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = "http://localhost:8000/auth/google/callback"
    frontend_url: str = "http://localhost:5173"

    page_size: int = Field(4, ge=1)
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = env.get(name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        return cls(**values)
