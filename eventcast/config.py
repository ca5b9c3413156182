# eventcast/config.py

"""
Configuration Module

Defines the configuration settings for the event publication engine,
including database, Discord credentials, timer intervals and external
call time boxes. Values are loaded primarily from environment variables.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def get_env_variable(var_name, default=None):
    return os.getenv(var_name, default)


class Config:
    """Application configuration settings."""
    # Database Configuration
    DATABASE_URL = get_env_variable('DATABASE_URL', 'sqlite:///eventcast.db')
    DATABASE_ECHO = get_env_variable('DATABASE_ECHO', 'false').lower() == 'true'

    # Discord
    DISCORD_BOT_TOKEN = get_env_variable('DISCORD_BOT_TOKEN')
    COMMAND_PREFIX = get_env_variable('COMMAND_PREFIX', '!')

    # Scheduled publication queue timers (seconds)
    PUBLICATION_POLL_INTERVAL = int(get_env_variable('PUBLICATION_POLL_INTERVAL', 60))
    PUBLICATION_FAST_POLL_INTERVAL = int(get_env_variable('PUBLICATION_FAST_POLL_INTERVAL', 15))
    PUBLICATION_IMMINENT_WINDOW = int(get_env_variable('PUBLICATION_IMMINENT_WINDOW', 300))  # 5 minutes

    # Reminder and attendance timers (seconds)
    REMINDER_CHECK_INTERVAL = int(get_env_variable('REMINDER_CHECK_INTERVAL', 60))
    ATTENDANCE_REFRESH_INTERVAL = int(get_env_variable('ATTENDANCE_REFRESH_INTERVAL', 5))
    COUNTDOWN_CHECK_INTERVAL = int(get_env_variable('COUNTDOWN_CHECK_INTERVAL', 60))

    # External call time boxes (seconds)
    CHANNEL_CALL_TIMEOUT = float(get_env_variable('CHANNEL_CALL_TIMEOUT', 30))
    IMAGE_UPLOAD_TIMEOUT = float(get_env_variable('IMAGE_UPLOAD_TIMEOUT', 20))
    RECORD_CREATE_TIMEOUT = float(get_env_variable('RECORD_CREATE_TIMEOUT', 15))

    # Reminder formatting
    DEFAULT_TIMEZONE = get_env_variable('DEFAULT_TIMEZONE', 'America/New_York')

    # Push-update stream (Socket.IO)
    RSVP_STREAM_URL = get_env_variable('RSVP_STREAM_URL')
    RSVP_STREAM_API_KEY = get_env_variable('RSVP_STREAM_API_KEY')

    # Image storage
    IMAGE_STORE_DIR = get_env_variable('IMAGE_STORE_DIR', 'data/images')
    IMAGE_UPLOAD_URL = get_env_variable('IMAGE_UPLOAD_URL')
    MAX_ADDITIONAL_IMAGES = int(get_env_variable('MAX_ADDITIONAL_IMAGES', 4))

    # Participant groups -> channel integration and members (JSON file)
    PARTICIPANT_DIRECTORY_PATH = get_env_variable('PARTICIPANT_DIRECTORY_PATH', 'data/participants.json')

    # Client-local fallback cache for message ids
    MESSAGE_ID_CACHE_PATH = get_env_variable('MESSAGE_ID_CACHE_PATH', 'data/event_message_ids.json')

    # REST API
    API_HOST = get_env_variable('API_HOST', '0.0.0.0')
    API_PORT = int(get_env_variable('API_PORT', 5001))

    # Logging
    LOG_DIR = get_env_variable('LOG_DIR', 'logs')


class TestingConfig(Config):
    """Configuration used by the test suite."""
    DATABASE_URL = 'sqlite:///:memory:'
    PUBLICATION_POLL_INTERVAL = 1
    PUBLICATION_FAST_POLL_INTERVAL = 1
    REMINDER_CHECK_INTERVAL = 1
    ATTENDANCE_REFRESH_INTERVAL = 1
    COUNTDOWN_CHECK_INTERVAL = 1
    CHANNEL_CALL_TIMEOUT = 1.0
    IMAGE_UPLOAD_TIMEOUT = 1.0
    RECORD_CREATE_TIMEOUT = 1.0
    RSVP_STREAM_URL = None
    IMAGE_UPLOAD_URL = None
    MESSAGE_ID_CACHE_PATH = None
    PARTICIPANT_DIRECTORY_PATH = None
