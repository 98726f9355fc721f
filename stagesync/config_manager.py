"""
Unified Configuration Manager for StageSync

Loads course configuration from config.json and credentials from the
environment (.env supported).
"""
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Default configuration file location
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.json"


class AssignmentConfig:
    """Group settings for a single assignment."""

    def __init__(self, assignment_data: Dict[str, Any]):
        self.data = assignment_data
        self.id = assignment_data.get("id")
        self.title = assignment_data.get("title")
        self.slug = assignment_data.get("slug")
        self.min_group_size = assignment_data.get("min_group_size")
        self.max_group_size = assignment_data.get("max_group_size")
        self.due_date = assignment_data.get("due_date")

    def to_dict(self) -> Dict[str, Any]:
        return self.data


class CourseConfig:
    """Configuration for a single course."""

    def __init__(self, course_data: Dict[str, Any]):
        self.data = course_data
        self.id = course_data.get("id")
        self.name = course_data.get("name")
        self.class_id = course_data.get("class_id")
        self.time_zone = course_data.get("time_zone", "America/New_York")
        self.reply_to = course_data.get("reply_to")
        self.assignments: Dict[int, AssignmentConfig] = {}
        for assignment_data in course_data.get("assignments", []):
            assignment = AssignmentConfig(assignment_data)
            if assignment.id is None:
                logger.warning("Skipping assignment entry without id in course %s", self.id)
                continue
            self.assignments[int(assignment.id)] = assignment

    def get_assignment(self, assignment_id: int) -> Optional[AssignmentConfig]:
        return self.assignments.get(int(assignment_id))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return self.data


class ConfigManager:
    """Manages application configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        env_path = os.getenv("STAGESYNC_CONFIG")
        self.config_path = Path(config_path or env_path or DEFAULT_CONFIG_PATH)
        self.config_data: Dict[str, Any] = {}
        self.courses: Dict[str, CourseConfig] = {}
        self.global_settings: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self):
        """Load configuration from JSON file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r') as f:
                self.config_data = json.load(f)

            for course_data in self.config_data.get("courses", []):
                course_config = CourseConfig(course_data)
                if not course_config.id:
                    logger.warning("Skipping course entry without id: %s", course_data)
                    continue
                self.courses[course_config.id] = course_config

            self.global_settings = self.config_data.get("global_settings", {})

            logger.info(f"Loaded configuration for {len(self.courses)} courses")

        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {e}")

    def get_course(self, course_id: str) -> Optional[CourseConfig]:
        """Get configuration for a specific course."""
        return self.courses.get(course_id)

    def list_courses(self) -> List[str]:
        """List all available course IDs."""
        return list(self.courses.keys())

    def list_course_configs(self) -> List[CourseConfig]:
        """List all course configurations."""
        return list(self.courses.values())

    def get_global_setting(self, key: str, default: Any = None) -> Any:
        """Get a global setting value."""
        return self.global_settings.get(key, default)

    @property
    def publish_max_workers(self) -> int:
        return int(self.get_global_setting("publish_max_workers", 8))

    @property
    def cache_ttl_seconds(self) -> int:
        return int(self.get_global_setting("cache_ttl_seconds", 300))

    @property
    def enforce_group_size(self) -> bool:
        return bool(self.get_global_setting("enforce_group_size", False))

    @property
    def app_url(self) -> Optional[str]:
        """Base URL of the course web app, used for links in emails."""
        url = self.get_global_setting("app_url")
        return url.rstrip("/") if url else None

    def assignment_url(self, class_id: int, assignment_id: int) -> Optional[str]:
        if not self.app_url:
            return None
        return f"{self.app_url}/course/{class_id}/assignments/{assignment_id}"

    def reload(self):
        """Reload configuration from file."""
        self.courses.clear()
        self.global_settings.clear()
        self._load_config()


# Global configuration manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_path: Optional[Path] = None) -> ConfigManager:
    """Get or create the global configuration manager."""
    global _config_manager
    if _config_manager is None or config_path is not None:
        _config_manager = ConfigManager(config_path)
    return _config_manager


def get_course_config(course_id: str) -> Optional[CourseConfig]:
    """Convenience function to get a course configuration."""
    return get_config_manager().get_course(course_id)


# Environment variables configuration
class EnvConfig:
    """Manages environment variables."""

    @staticmethod
    def get_backend_credentials() -> tuple[str, str]:
        """Get backend project URL and service key."""
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_KEY")
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
        return url, key

    @staticmethod
    def get_backend_max_tries() -> int:
        """Attempts per backend call on transient failures (1 = no retry)."""
        return int(os.getenv("BACKEND_MAX_TRIES", "1"))

    @staticmethod
    def get_backend_request_timeout() -> float:
        return float(os.getenv("BACKEND_REQUEST_TIMEOUT", "30"))

    @staticmethod
    def get_redis_settings() -> Dict[str, Any]:
        """Get redis connection settings for the read-view cache."""
        return {
            "host": os.getenv("REDIS_HOST", "localhost"),
            "port": int(os.getenv("REDIS_PORT", "6379")),
            "db": int(os.getenv("REDIS_DB", "0")),
            "password": os.getenv("REDIS_PW") or None,
        }

    @staticmethod
    def get_log_level() -> str:
        return os.getenv("LOG_LEVEL", "INFO").upper()
