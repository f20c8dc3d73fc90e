from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
	model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

	APP_NAME: str = Field(default="Storefront Core API")
	DEBUG: bool = Field(default=False)
	API_PREFIX: str = Field(default="")

	# Database
	DATABASE_URL: str = Field(default="")

	# Auth / JWT
	JWT_SECRET: str = Field(default="dev-change-me")
	JWT_ALGORITHM: str = Field(default="HS256")
	ACCESS_TOKEN_EXPIRES_MINUTES: int = Field(default=60)

	# Azure Monitor / Application Insights
	AZURE_MONITOR_CONN_STR: str = Field(default="")
	ENABLE_APP_INSIGHTS: bool = Field(default=True)
	SAMPLING_RATIO: float = Field(default=1.0)

	# Service Bus (order / quota notifications)
	SERVICEBUS_CONNECTION_STRING: str = Field(default="")
	SERVICEBUS_QUEUE_NAME: str = Field(default="storefront-notifications")

	# Payment gateways (cash on delivery needs no configuration)
	PESAPAL_API_URL: str = Field(default="")
	PESAPAL_API_KEY: str = Field(default="")
	PAYPAL_API_URL: str = Field(default="")
	PAYPAL_API_KEY: str = Field(default="")
	PAYMENT_PROVIDER_TIMEOUT_SECONDS: float = Field(default=15.0)

	# Checkout / reservations
	CHECKOUT_MAX_RETRIES: int = Field(default=3, ge=1)
	RESERVATION_TTL_MINUTES: int = Field(default=60, ge=1)

	# Inventory alerts (a tenant may override it in its settings)
	LOW_STOCK_THRESHOLD: int = Field(default=10, ge=0)


settings = Settings()
