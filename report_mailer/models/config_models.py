from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the report mailer.

These are built by ``report_mailer.config.loader.load_config`` after the YAML
document passed schema validation; defaults live here so that a minimal (even
empty) config file is usable.
"""

DEFAULT_CHUNK_SIZE = 5
DEFAULT_DELAY_SECONDS = 20.0  # 5 requests / 20 s = 15 RPM (provider free tier)
DEFAULT_MODEL = "gemini-flash-latest"
DEFAULT_FROM_ADDRESS = "Intelligent Report Mailer <onboarding@resend.dev>"
DEFAULT_DISPATCH_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class BatchConfig:
    """Pacing for whole-set draft generation.

    ``chunk_size / delay_seconds`` must stay at or below the provider's
    requests-per-minute quota.
    """
    chunk_size: int = DEFAULT_CHUNK_SIZE
    delay_seconds: float = DEFAULT_DELAY_SECONDS


@dataclass(frozen=True)
class GenerationConfig:
    """Generative-text provider settings. The API key itself is read from the environment."""
    model: str = DEFAULT_MODEL
    api_key_env: str = "GEMINI_API_KEY"


@dataclass(frozen=True)
class DispatchConfig:
    """Transactional email provider settings."""
    from_address: str = DEFAULT_FROM_ADDRESS
    api_url: str = DEFAULT_DISPATCH_URL
    api_key_env: str = "RESEND_API_KEY"
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class MailerConfig:
    """Root configuration object for a report mailer run."""
    batch: BatchConfig = field(default_factory=BatchConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    recipients_file: str = "recipients.json"  # RecipientMapping の永続化先
    export_directory: str = "exports"
