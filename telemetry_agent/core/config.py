"""
Configuration de l'agent de télémétrie

Trois couches, de la plus faible à la plus forte :
valeurs par défaut, fichier INI, variables d'environnement.
"""

import os
import sys
import socket
import configparser
from typing import Dict, Any, Optional, List


# Variables d'environnement prioritaires sur le fichier de configuration
ENV_OVERRIDES = {
    'INFLUXDB_USERNAME': ('influxdb', 'username'),
    'INFLUXDB_PASSWORD': ('influxdb', 'password'),
    'INFLUXDB_ORG': ('influxdb', 'org'),
    'INFLUXDB_BUCKET': ('influxdb', 'bucket'),
    'INFLUXDB_URL': ('influxdb', 'url'),
    'INFLUXDB_RETENTION': ('influxdb', 'retention_seconds'),
    'TELEMETRY_INTERVAL': ('agent', 'interval_ms'),
    'TELEMETRY_LOG_LEVEL': ('agent', 'log_level'),
    'TELEMETRY_GPU_VENDOR': ('agent', 'gpu_vendor'),
}

DEFAULT_MONITOR = 'uuid,currentLoad,mem,graphics,fsSize'
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

DEFAULTS = {
    'influxdb': {
        'url': 'http://localhost:8086',
        'username': 'development',
        'password': 'development',
        'org': 'development',
        'bucket': 'development',
        'retention_seconds': '0',  # 0 = infinie
        'timeout': '10000',  # ms
        'ping_timeout': '10000',  # ms
        'verify_ssl': 'true',
    },
    'agent': {
        'interval_ms': '3000',
        'log_level': 'INFO',
        'gpu_vendor': 'NVIDIA',
        'monitor': DEFAULT_MONITOR,
        'startup_retries': '3',
        'retry_delay': '5',  # secondes
    },
    'write': {
        'batch_size': '500',
        'flush_interval': '1000',  # ms
    },
    'tags': {
        'app': 'telemetry',
    },
    'logging': {
        'max_log_size': '10485760',  # 10MB
        'backup_count': '5',
    },
}


def _program_data(*parts: str) -> str:
    return os.path.join(os.environ.get("PROGRAMDATA", "C:\\ProgramData"), "TelemetryAgent", *parts)


def default_config_path() -> str:
    if sys.platform == "win32":
        return _program_data("config.ini")
    return "/etc/telemetry-agent/config.ini"


def default_log_path() -> str:
    if sys.platform == "win32":
        return _program_data("logs", "agent.log")
    return "/var/log/telemetry-agent/agent.log"


def local_hostname() -> str:
    try:
        return socket.gethostname() or 'localhost'
    except OSError:
        return 'localhost'


class AgentConfig:
    """
    Configuration de l'agent, lue une fois au démarrage

    Les valeurs restent des chaînes dans le ConfigParser, les accesseurs
    get_*_config() renvoient des dictionnaires typés.
    """

    def __init__(self, config_file: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """
        Args:
            config_file: Fichier INI à lire (chemin système par défaut)
            environ: Variables d'environnement à utiliser (os.environ par défaut)
        """
        # Pas d'interpolation : les mots de passe peuvent contenir '%'
        self.config = configparser.ConfigParser(interpolation=None)
        self.config_file = config_file or default_config_path()
        self.environ = os.environ if environ is None else environ

        self.config.read_dict(DEFAULTS)
        self.config.set('tags', 'hostname', local_hostname())
        self.config.set('logging', 'log_file', default_log_path())

        self._read_file()
        self._apply_environment()

    def _read_file(self):
        """Fusionne le fichier INI s'il existe, un fichier illisible est ignoré"""
        if not os.path.exists(self.config_file):
            print(f"Aucun fichier de configuration ({self.config_file}), valeurs par défaut")
            return

        try:
            self.config.read(self.config_file, encoding='utf-8')
        except configparser.Error as e:
            print(f"Fichier de configuration ignoré ({self.config_file}): {e}")
            return

        print(f"Configuration lue depuis {self.config_file}")

    def _apply_environment(self):
        for variable, (section, option) in ENV_OVERRIDES.items():
            value = self.environ.get(variable)
            # Une variable vide ne remplace pas la valeur existante
            if value:
                self.set(section, option, value)

    def get(self, section: str, option: str, fallback: Any = None) -> str:
        return self.config.get(section, option, fallback=fallback)

    def getboolean(self, section: str, option: str, fallback: bool = False) -> bool:
        return self.config.getboolean(section, option, fallback=fallback)

    def getint(self, section: str, option: str, fallback: int = 0) -> int:
        return self.config.getint(section, option, fallback=fallback)

    def set(self, section: str, option: str, value: str):
        """Modifie une option, la section est créée au besoin"""
        if not self.config.has_section(section):
            self.config.add_section(section)
        self.config.set(section, option, str(value))

    def save(self):
        """Écrit la configuration courante dans config_file"""
        parent = os.path.dirname(self.config_file)
        if parent:
            os.makedirs(parent, exist_ok=True)

        with open(self.config_file, 'w', encoding='utf-8') as f:
            self.config.write(f)

        print(f"Configuration écrite dans {self.config_file}")

    def get_influx_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration de connexion à InfluxDB

        Returns:
            dict: Configuration InfluxDB
        """
        return {
            'url': self.get('influxdb', 'url').rstrip('/'),
            'username': self.get('influxdb', 'username'),
            'password': self.get('influxdb', 'password'),
            'org': self.get('influxdb', 'org'),
            'bucket': self.get('influxdb', 'bucket'),
            'timeout': self.getint('influxdb', 'timeout', 10000),
            'ping_timeout': self.getint('influxdb', 'ping_timeout', 10000),
            'verify_ssl': self.getboolean('influxdb', 'verify_ssl', True)
        }

    def get_setup_config(self) -> Dict[str, Any]:
        """
        Paramètres de la première initialisation de la base

        Returns:
            dict: Corps de la requête de setup
        """
        setup = {
            'username': self.get('influxdb', 'username'),
            'password': self.get('influxdb', 'password'),
            'org': self.get('influxdb', 'org'),
            'bucket': self.get('influxdb', 'bucket'),
        }
        retention = self.getint('influxdb', 'retention_seconds', 0)
        if retention > 0:
            setup['retentionPeriodSeconds'] = retention
        return setup

    def get_agent_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration complète de l'agent

        Returns:
            dict: Configuration agent
        """
        return {
            'interval_ms': self.getint('agent', 'interval_ms', 3000),
            'log_level': self.get('agent', 'log_level', 'INFO'),
            'gpu_vendor': self.get('agent', 'gpu_vendor', 'NVIDIA'),
            'monitor': self.get_monitor_modules(),
            'startup_retries': self.getint('agent', 'startup_retries', 3),
            'retry_delay': self.getint('agent', 'retry_delay', 5)
        }

    def get_monitor_modules(self) -> List[str]:
        """Liste des groupes de métriques à collecter"""
        raw = self.get('agent', 'monitor', DEFAULT_MONITOR)
        return [m.strip() for m in raw.split(',') if m.strip()]

    def get_write_config(self) -> Dict[str, Any]:
        return {
            'batch_size': self.getint('write', 'batch_size', 500),
            'flush_interval': self.getint('write', 'flush_interval', 1000)
        }

    def get_logging_config(self) -> Dict[str, Any]:
        return {
            'level': self.get('agent', 'log_level', 'INFO'),
            'log_file': self.get('logging', 'log_file', default_log_path()),
            'max_log_size': self.getint('logging', 'max_log_size', 10485760),
            'backup_count': self.getint('logging', 'backup_count', 5)
        }

    def get_default_tags(self) -> Dict[str, str]:
        """
        Tags ajoutés à chaque point écrit

        Returns:
            dict: Nom du tag -> valeur
        """
        return dict(self.config.items('tags')) if self.config.has_section('tags') else {}

    def validate(self) -> bool:
        """
        Vérifie les paramètres indispensables au démarrage

        Les problèmes détectés sont affichés un par un.

        Returns:
            bool: True si aucun problème n'a été trouvé
        """
        problems = []

        url = self.get('influxdb', 'url') or ''
        if not url.startswith(('http://', 'https://')):
            problems.append(f"influxdb.url doit commencer par http:// ou https:// ({url!r})")

        for option in ('username', 'password', 'org', 'bucket'):
            if not self.get('influxdb', option):
                problems.append(f"influxdb.{option} est vide")

        try:
            if self.getint('agent', 'interval_ms') <= 0:
                problems.append("agent.interval_ms doit être strictement positif")
        except ValueError:
            problems.append("agent.interval_ms doit être un entier")

        if self.get('agent', 'log_level', 'INFO').upper() not in LOG_LEVELS:
            problems.append(f"agent.log_level doit valoir {', '.join(LOG_LEVELS)}")

        for problem in problems:
            print(f"Configuration invalide: {problem}")

        return not problems


def create_default_config(config_path: str) -> AgentConfig:
    """Écrit un fichier INI contenant uniquement les valeurs par défaut"""
    config = AgentConfig(config_path, environ={})
    config.save()
    return config
