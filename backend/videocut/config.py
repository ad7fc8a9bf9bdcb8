"""Application configuration."""
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8"
    )
    
    # App settings
    app_name: str = "VideoCut"
    debug: bool = True
    
    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    frontend_url: str = "http://localhost:5173"
    
    # Data directories
    data_dir: Path = Path("./data")
    scratch_dir: Path = Path("./data/tmp/video-edits")  # Created lazily
    exports_dir: Path = Path("./data/exports")
    
    # FFmpeg settings
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    
    # Export settings
    export_video_codec: str = "libx264"
    export_video_preset: str = "veryfast"
    export_video_crf: int = 18
    export_audio_codec: str = "aac"
    export_audio_bitrate: str = "192k"
    export_frame_rate: int = 30  # Used for generated end card frames
    export_audio_sample_rate: int = 44100
    
    # Overlay settings
    default_font_size: int = 24
    default_font_color: str = "white"
    end_card_font_size: int = 64
    
    # Segmentation
    default_clip_duration: float = 7.0
    default_clip_count: int = 5
    min_segment_seconds: float = 3.0  # Detection service defaults
    max_segment_seconds: float = 30.0
    default_confidence_threshold: float = 0.5
    scene_threshold: float = 0.3  # FFmpeg scene detection threshold
    
    # Object detection service
    detection_service_url: str = "http://localhost:8100/api/video-segmentation"
    detection_api_key: Optional[str] = None
    detection_timeout_seconds: float = 300.0
    
    # Remote input fetching
    fetch_timeout_seconds: float = 120.0
    
    # Batch export
    poll_interval_seconds: float = 1.0
    event_history_limit: int = 1000  # Most recent job events kept in memory


settings = Settings()
