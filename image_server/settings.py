from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional

class Settings(BaseSettings):
    aws_region: str = Field("us-east-1")
    s3_bucket: str = Field("image-server-bucket")
    dynamodb_table: str = Field("Images")
    aws_endpoint_url: Optional[str] = Field(None)

    aws_access_key_id: str = Field("test")
    aws_secret_access_key: str = Field("test")

    app_title: str = Field("Image Server")
    log_level: str = Field("INFO")

    # JSON file with the allowed size entries
    image_config_path: str = Field("configuration.json")
    cache_max_age: int = Field(315360000)

    # external converter used when Pillow cannot decode an image, empty disables it
    converter_binary: str = Field("convert")
    converter_timeout: float = Field(30.0)

    smartcrop_enabled: bool = Field(True)
    # defaults to the frontal face cascade shipped with opencv
    haarcascade_path: Optional[str] = Field(None)
    smartcrop_working_size: int = Field(1024)
    smartcrop_min_region_fraction: float = Field(0.005)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="allow",  # tolerate unknown vars if needed
    )

settings = Settings()
