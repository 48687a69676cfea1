"""
Telemetry Agent - Collecte périodique de métriques système vers InfluxDB

Ce module principal fournit un agent qui échantillonne la charge CPU, la mémoire,
l'occupation des disques et les cartes graphiques, puis écrit les points
dans InfluxDB sous une session authentifiée par token.

Author: Telemetry Agent Team
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Telemetry Agent Team"

# Imports principaux pour faciliter l'utilisation
from .core.config import AgentConfig
from .core.logger import AgentLogger
from .core.shaper import MetricShaper

__all__ = ['AgentConfig', 'AgentLogger', 'MetricShaper']
