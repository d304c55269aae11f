from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./interior_studio.db"

    # Frontend
    frontend_url: str = "http://localhost:3000"

    log_level: str = "INFO"

    # Durable storage (Cloudinary); passed into StorageService by get_storage()
    cloudinary_cloud_name: str = ""
    cloudinary_upload_preset: str = "Image_Gen"
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_api_base: str = "https://api.cloudinary.com/v1_1"
    cloudinary_image_folder: str = "generated_interiors"
    cloudinary_video_folder: str = "generated_videos"

    # Generation job queue (fal.ai queue REST API)
    fal_key: str = ""
    fal_queue_url: str = "https://queue.fal.run"
    fal_video_model: str = "fal-ai/kling-video/v1/standard/image-to-video"
    fal_image_model: str = "fal-ai/flux/dev/image-to-image"

    # Styled image generation
    openai_api_key: str = ""
    openai_image_model: str = "gpt-image-1"
    openai_image_size: str = "1024x1536"
    openai_image_quality: str = "medium"

    # Job polling
    poll_interval_seconds: float = 2.0
    poll_max_attempts: int = 150
    # 0 disables the wall-clock deadline (max attempts still applies)
    poll_deadline_seconds: float = 600.0

    # Uploads
    upload_max_attempts: int = 3
    upload_retry_delay_seconds: float = 1.0
    max_upload_bytes: int = 10 * 1024 * 1024

    # Gallery
    gallery_page_size: int = 12
    probe_batch_size: int = 5
    probe_timeout_seconds: float = 10.0

    model_config = {"env_file": ".env"}


settings = Settings()
