import os
import json
import logging
from pathlib import Path

import yaml
from dotenv import load_dotenv

from chatiq.utils.errors import ConfigurationFailure

# -----------------------------------------------------------------------------
# Load environment variables
# -----------------------------------------------------------------------------
load_dotenv()

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "config.yaml"
DEFAULT_APP_ID = "default-app-id"


def load_config(path: str = None) -> dict:
    """
    Load the YAML configuration file.

    The path comes from the argument, then CONFIG_PATH, then config/config.yaml
    at the repository root. A missing or unreadable file is a ConfigurationFailure.
    """
    config_path = path or os.getenv("CONFIG_PATH") or str(DEFAULT_CONFIG_PATH)
    try:
        with open(config_path, "r") as f:
            cfg = yaml.safe_load(f)
            if not cfg:
                raise ValueError("Config file is empty or invalid.")
            return cfg
    except FileNotFoundError:
        logging.error(f"❌ Config not found at {config_path}")
        raise ConfigurationFailure(f"Config not found: {config_path}")
    except yaml.YAMLError as e:
        logging.error(f"❌ Error parsing {config_path}: {e}")
        raise ConfigurationFailure(f"Error parsing config: {e}")
    except ValueError as e:
        logging.error(f"❌ Invalid config at {config_path}: {e}")
        raise ConfigurationFailure(str(e))


def firebase_credentials_info() -> dict:
    """Service-account JSON from FIREBASE_CREDENTIALS_JSON, parsed."""
    raw = os.getenv("FIREBASE_CREDENTIALS_JSON")
    if not raw:
        raise ConfigurationFailure("FIREBASE_CREDENTIALS_JSON not set in environment")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationFailure(f"FIREBASE_CREDENTIALS_JSON is not valid JSON: {e}")


def gemini_api_key() -> str:
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise ConfigurationFailure("GEMINI_API_KEY not set in environment")
    return api_key


def app_id(config: dict) -> str:
    """Namespace under `artifacts/` that scopes all stored chat data."""
    return os.getenv("CHATIQ_APP_ID") or config.get("firestore", {}).get("app_id") or DEFAULT_APP_ID


def allowed_origins() -> list:
    return os.getenv("ALLOWED_ORIGINS", "*").split(",")
