from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Completion service (Anthropic Messages API shape)
	claude_api_key: str | None = Field(default=None, validation_alias="CLAUDE_API_KEY")
	completion_base_url: str = Field(default="https://api.anthropic.com", validation_alias="COMPLETION_BASE_URL")
	completion_api_version: str = Field(default="2023-06-01", validation_alias="COMPLETION_API_VERSION")
	completion_timeout_seconds: float = Field(default=60.0, validation_alias="COMPLETION_TIMEOUT_SECONDS")
	completion_max_tokens: int = Field(default=2048, validation_alias="COMPLETION_MAX_TOKENS")
	# Models per task; topic derivation and evaluation default to the cheap text model
	topic_model: str = Field(default="claude-3-haiku-20240307", validation_alias="TOPIC_MODEL")
	evaluation_model: str = Field(default="claude-3-haiku-20240307", validation_alias="EVALUATION_MODEL")
	vision_model: str = Field(default="claude-3-5-sonnet-20241022", validation_alias="VISION_MODEL")
	document_max_tokens: int = Field(default=4096, validation_alias="DOCUMENT_MAX_TOKENS")

	# Pipeline tuning
	# "local" reads PDFs with pypdf, "completion" sends them to the completion service as a document block
	pdf_backend: str = Field(default="local", validation_alias="PDF_BACKEND")
	topic_prefix_chars: int = Field(default=10000, validation_alias="TOPIC_PREFIX_CHARS")
	context_prefix_chars: int = Field(default=3000, validation_alias="CONTEXT_PREFIX_CHARS")
	strict_topic_count: bool = Field(default=False, validation_alias="STRICT_TOPIC_COUNT")
	# "max" keeps the best score seen for a topic, "overwrite" keeps the latest one
	mastery_policy: str = Field(default="max", validation_alias="MASTERY_POLICY")

	# Server-side speech recognition (Google Cloud Speech-to-Text)
	speech_language: str = Field(default="en-US", validation_alias="SPEECH_LANGUAGE")
	speech_encoding: str = Field(default="WEBM_OPUS", validation_alias="SPEECH_ENCODING")
	speech_sample_rate_hertz: int = Field(default=48000, validation_alias="SPEECH_SAMPLE_RATE_HERTZ")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
