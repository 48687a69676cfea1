"""
Journalisation de l'agent de télémétrie

Un seul logger nommé est partagé par tous les composants. Il écrit
dans un fichier tournant et sur la sortie standard.
"""

import os
import sys
import logging
import logging.handlers
from typing import Any, Dict


LOGGER_NAME = 'TelemetryAgent'
SENSITIVE_KEYS = ('password', 'token')

FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
CONSOLE_FORMAT = '%(levelname)s - %(message)s'

FALLBACK_SETTINGS = {
    'level': 'INFO',
    'log_file': os.path.join(os.environ.get("TEMP", "C:\\temp"), "telemetry-agent.log")
    if sys.platform == "win32" else "/tmp/telemetry-agent.log",
    'max_log_size': 10485760,  # 10MB
    'backup_count': 5
}


class AgentLogger:
    """
    Point d'accès unique au logger de l'agent

    Les handlers ne sont installés qu'une fois par processus, une seconde
    instance réutilise le logger déjà configuré.
    """

    def __init__(self, config=None):
        """
        Args:
            config: Instance de AgentConfig (réglages par défaut si absente)
        """
        self.config = config
        self.logger = logging.getLogger(LOGGER_NAME)

        if not self.logger.handlers:
            settings = config.get_logging_config() if config else FALLBACK_SETTINGS
            self._install_handlers(settings)

    def _install_handlers(self, settings: Dict[str, Any]):
        level = getattr(logging, str(settings['level']).upper(), logging.INFO)
        self.logger.setLevel(level)

        file_handler = self._open_log_file(settings)
        if file_handler is not None:
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
            self.logger.addHandler(file_handler)

        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(level)
        stdout_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        self.logger.addHandler(stdout_handler)

        self.logger.info(f"Journalisation prête (niveau {settings['level']}, fichier {settings['log_file']})")

    def _open_log_file(self, settings: Dict[str, Any]):
        """
        Crée le handler du fichier de log, répertoire compris

        Returns:
            RotatingFileHandler: Handler prêt, None si le fichier est inaccessible
        """
        log_file = settings['log_file']
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            return logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=settings['max_log_size'],
                backupCount=settings['backup_count'],
                encoding='utf-8'
            )
        except OSError as e:
            # Le logger n'existe pas encore, seule la console reste disponible
            print(f"Fichier de log inaccessible ({log_file}): {e}")
            return None

    def get_logger(self) -> logging.Logger:
        """Logger partagé par les composants de l'agent"""
        return self.logger

    def info(self, message: str):
        self.logger.info(message)

    def log_config_info(self, config):
        """
        Journalise la configuration effective, secrets masqués

        Args:
            config: Instance de AgentConfig
        """
        sections = (
            ('InfluxDB', config.get_influx_config()),
            ('Agent', config.get_agent_config()),
            ('Write', config.get_write_config()),
            ('Tags', config.get_default_tags()),
        )

        self.info("--- Configuration effective ---")
        for prefix, values in sections:
            for key, value in values.items():
                self.info(f"{prefix}.{key}: {mask_secret(key, value)}")
        self.info("--- Fin de la configuration ---")


def mask_secret(key: str, value) -> str:
    """
    Masque les valeurs sensibles avant de les écrire dans les logs

    Args:
        key: Nom du paramètre
        value: Valeur du paramètre

    Returns:
        str: Valeur affichable
    """
    if not any(word in key.lower() for word in SENSITIVE_KEYS):
        return str(value)
    value = str(value or '')
    return value[:4] + "..." if len(value) > 8 else "***"
