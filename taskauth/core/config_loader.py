"""
TASKAUTH - Config Loader Implementation
Charge la configuration depuis un fichier YAML et l'environnement.
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from .interfaces import AuthSettings, IConfigLoader


class ConfigIntegrityError(Exception):
    """Erreur d'intégrité de configuration."""

    pass


class ConfigLoader(IConfigLoader):
    """
    Chargement de AuthSettings.

    Ordre de priorité: variables d'environnement TASKAUTH_* > fichier YAML
    > valeurs par défaut du modèle.

    Example:
        settings = ConfigLoader("config/auth.yaml").load()
    """

    ENV_PREFIX: str = "TASKAUTH_"

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        self.config_path = Path(config_path) if config_path else None
        self._environ = environ if environ is not None else os.environ

    def load(self) -> AuthSettings:
        """
        Charge la configuration.

        Returns:
            AuthSettings validé

        Raises:
            ConfigIntegrityError: Fichier inexistant, YAML invalide ou modèle invalide
        """
        raw: Dict[str, Any] = {}

        if self.config_path is not None:
            raw = self._read_file(self.config_path)

        raw.update(self._read_environ())

        if "jwe_secret_key" not in raw:
            raise ConfigIntegrityError("Champ obligatoire manquant: jwe_secret_key")

        try:
            return AuthSettings(**raw)
        except PydanticValidationError as e:
            raise ConfigIntegrityError(f"Configuration invalide: {e}")

    def _read_file(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise ConfigIntegrityError(f"Configuration non trouvée: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigIntegrityError(f"Erreur de parsing YAML: {e}")
        except OSError as e:
            raise ConfigIntegrityError(f"Erreur de lecture fichier: {e}")

        if config is None:
            return {}

        if not isinstance(config, dict):
            raise ConfigIntegrityError("Configuration doit être un objet YAML")

        # Section optionnelle "auth:" pour cohabiter avec d'autres blocs
        if "auth" in config and isinstance(config["auth"], dict):
            config = config["auth"]

        return dict(config)

    def _read_environ(self) -> Dict[str, Any]:
        """Extrait les surcharges TASKAUTH_* (clé en minuscules)."""
        overrides: Dict[str, Any] = {}
        for name, value in self._environ.items():
            if not name.startswith(self.ENV_PREFIX):
                continue
            field_name = name[len(self.ENV_PREFIX):].lower()
            if field_name in AuthSettings.model_fields:
                overrides[field_name] = value
        return overrides
