"""
Manager Settings
Manages the addon-manager.json file holding the user's configuration
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path

from addon_errors import PathViolation

log = logging.getLogger(__name__)

SETTINGS_FILE = 'addon-manager.json'

DEFAULT_SETTINGS = {
    'game_path': '',
    'expansion': 'wotlk',
    'catalog_url': '',
    'github_token': '',
    'log_level': 'INFO',
}


def addons_dir_for(game_path):
    """The AddOns directory of a game install.

    Args:
        game_path: str/Path - Game directory, or the game executable inside it

    Returns:
        Path - <game>/Interface/AddOns

    Raises:
        PathViolation - If the result does not lie inside the game directory
    """
    game_dir = Path(game_path)
    if game_dir.suffix.lower() == '.exe':
        game_dir = game_dir.parent
    game_dir = game_dir.resolve()
    addons_dir = (game_dir / 'Interface' / 'AddOns').resolve()
    if not addons_dir.is_relative_to(game_dir):
        raise PathViolation(addons_dir, game_dir)
    return addons_dir


class ManagerSettings:
    def __init__(self, config_dir):
        self.config_dir = Path(config_dir)
        self.settings_file = self.config_dir / SETTINGS_FILE
        self.data = self._load()

    def _load(self):
        """Load settings from addon-manager.json"""
        if not self.settings_file.exists():
            return self._create_empty_structure()
        try:
            with open(self.settings_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log.warning("Could not read %s, using defaults: %s", self.settings_file, e)
            return self._create_empty_structure()
        if not isinstance(data, dict) or not isinstance(data.get('settings'), dict):
            log.warning("Unexpected layout in %s, using defaults", self.settings_file)
            return self._create_empty_structure()
        return data

    def _create_empty_structure(self):
        return {
            'version': '1.0',
            'last_updated': datetime.now().isoformat(),
            'settings': {}
        }

    def save(self):
        """Save settings to addon-manager.json"""
        self.data['last_updated'] = datetime.now().isoformat()
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, 'w', encoding='utf-8') as f:
                json.dump(self.data, f, indent=2, ensure_ascii=False)
            return True
        except OSError as e:
            log.error("Error saving settings: %s", e)
            return False

    def get_setting(self, key, default=None):
        """Get a setting value, falling back to the built-in default"""
        if default is None:
            default = DEFAULT_SETTINGS.get(key)
        return self.data['settings'].get(key, default)

    def set_setting(self, key, value):
        """Set a setting value"""
        self.data['settings'][key] = value
        return self.save()

    def get_all_settings(self):
        """Get all settings, defaults included"""
        return {**DEFAULT_SETTINGS, **self.data['settings']}

    def github_token(self):
        """GitHub token from the settings, then the GITHUB_TOKEN environment variable"""
        return self.get_setting('github_token') or os.environ.get('GITHUB_TOKEN') or None
