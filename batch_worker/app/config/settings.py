from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from batch_worker.app.constants import DEFAULT_MAX_BATCH_SIZE
from batch_worker.app.domain.models import AckMode, BatchConfig


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    broker_host: str = Field(..., validation_alias="BROKER_HOST")
    broker_port: int = Field(..., validation_alias="BROKER_PORT")
    broker_user: str = Field(..., validation_alias="BROKER_USER")
    broker_password: str = Field(..., validation_alias="BROKER_PASSWORD")
    broker_vhost: str = Field("/", validation_alias="BROKER_VHOST")

    queue_name: str = Field(..., validation_alias="QUEUE_NAME")
    consumer_tag: str = Field("batch_consumer", validation_alias="CONSUMER_TAG")
    # Must be >= batch_max_size or full batches never arrive and every flush is timer-driven.
    prefetch_count: int = Field(50, validation_alias="PREFETCH_COUNT")
    consumer_backend: str = Field("rabbitmq", validation_alias="CONSUMER_BACKEND")

    batch_max_size: int = Field(DEFAULT_MAX_BATCH_SIZE, gt=0, validation_alias="BATCH_MAX_SIZE")
    batch_max_wait_ms: int = Field(100, gt=0, validation_alias="BATCH_MAX_WAIT_MS")
    batch_ack_mode: AckMode = Field(AckMode.INDIVIDUAL, validation_alias="BATCH_ACK_MODE")
    stop_on_processing_error: bool = Field(True, validation_alias="STOP_ON_PROCESSING_ERROR")

    failure_keyword: str = Field("error", validation_alias="FAILURE_KEYWORD")

    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    log_serialize: bool = Field(False, validation_alias="LOG_SERIALIZE")

    def batch_config(self) -> BatchConfig:
        return BatchConfig(
            max_batch_size=self.batch_max_size,
            max_wait_time=self.batch_max_wait_ms / 1000.0,
            ack_mode=self.batch_ack_mode,
        )
