"""
Mise en forme des échantillons de métriques

Transforme un échantillon brut (groupes nommés fournis par le collecteur
d'inventaire) en entités (champs numériques, tags texte) prêtes à être
converties en points InfluxDB.
"""

import numbers
from dataclasses import dataclass, field
from functools import singledispatch
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import ShapeError


# Conversion octets -> mégaoctets décimaux
BYTES_PER_MEGABYTE = 1_000_000

DEFAULT_GPU_VENDOR = 'NVIDIA'

FIELD = 'field'
TAG = 'tag'


@dataclass(frozen=True)
class ShapedEntity:
    """Champs et tags dérivés d'une unité logique (système, GPU, disque)"""
    fields: Dict[str, float] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ShapedSample:
    """Résultat de la mise en forme d'une capture complète"""
    system: ShapedEntity
    graphics: List[ShapedEntity] = field(default_factory=list)
    fs_size: List[ShapedEntity] = field(default_factory=list)

    def entity_count(self) -> int:
        return 1 + len(self.graphics) + len(self.fs_size)


@singledispatch
def value_kind(value: Any) -> Optional[str]:
    """
    Détermine la partition d'une valeur selon son type à l'exécution

    Returns:
        str: FIELD pour un nombre, TAG pour une chaîne, None sinon
    """
    return None


@value_kind.register(numbers.Real)
def _(value) -> Optional[str]:
    return FIELD


@value_kind.register(bool)
def _(value) -> Optional[str]:
    # bool hérite de int mais n'est pas une mesure
    return None


@value_kind.register(str)
def _(value) -> Optional[str]:
    return TAG


def split_by_value_type(obj: Mapping[str, Any]) -> ShapedEntity:
    """
    Sépare les paires clé/valeur d'un objet en champs et tags

    Les nombres vont dans les champs, les chaînes dans les tags,
    toute autre valeur est ignorée. Aucune clé n'est traitée à part.

    Args:
        obj: Dictionnaire à partitionner

    Returns:
        ShapedEntity: Champs et tags
    """
    fields = {}
    tags = {}
    for key, value in obj.items():
        kind = value_kind(value)
        if kind == FIELD:
            fields[key] = float(value)
        elif kind == TAG:
            tags[key] = value
    return ShapedEntity(fields=fields, tags=tags)


def to_megabytes(value: Any) -> Optional[float]:
    """Convertit une valeur en octets vers des mégaoctets décimaux"""
    if value_kind(value) != FIELD:
        return None
    return value / BYTES_PER_MEGABYTE



class MetricShaper:
    """
    Transformation pure d'un échantillon brut en entités typées

    Le filtre constructeur des cartes graphiques est une politique
    configurable (sous-chaîne recherchée dans le champ vendor).
    Une entrée disque ou GPU malformée est ignorée seule, les autres
    entités de la capture sont conservées.
    """

    def __init__(self, gpu_vendor: str = DEFAULT_GPU_VENDOR, logger=None):
        self.gpu_vendor = gpu_vendor
        self.logger = logger

    def shape(self, raw_sample: Mapping[str, Any]) -> ShapedSample:
        """
        Met en forme un échantillon brut

        Args:
            raw_sample: Groupes de métriques aplatis (currentLoad, mem, fsSize, graphics)

        Returns:
            ShapedSample: Entité système, entités GPU et entités disque

        Raises:
            ShapeError: Si un groupe n'a pas la structure attendue
        """
        try:
            system = split_by_value_type(self._system_metrics(raw_sample))
            controllers = (raw_sample.get('graphics') or {}).get('controllers') or []
            graphics = self._shape_entries('graphics', controllers, self._graphics_metrics)
            fs_size = self._shape_entries('fsSize', raw_sample.get('fsSize') or [], self._fs_metrics)
        except (AttributeError, TypeError) as e:
            raise ShapeError(f"Échantillon invalide: {e}") from e

        return ShapedSample(system=system, graphics=graphics, fs_size=fs_size)

    def _shape_entries(self, group: str, entries, metrics) -> List[ShapedEntity]:
        shaped = []
        for index, entry in enumerate(entries):
            try:
                values = metrics(entry)
            except (AttributeError, TypeError) as e:
                if self.logger:
                    self.logger.warning(f"Entrée {group}[{index}] ignorée: {e}")
                continue
            if values is not None:
                shaped.append(split_by_value_type(values))
        return shaped

    def _system_metrics(self, raw_sample: Mapping[str, Any]) -> Dict[str, Any]:
        load = raw_sample.get('currentLoad') or {}
        mem = raw_sample.get('mem') or {}
        return {
            'cpuLoadAvg': load.get('avgLoad'),
            'cpuLoadCurrent': load.get('currentLoad'),
            'memActive': to_megabytes(mem.get('active')),
            'memFree': to_megabytes(mem.get('free')),
            'memTotal': to_megabytes(mem.get('total')),
            'memUsed': to_megabytes(mem.get('used')),
        }

    def _fs_metrics(self, filesystem: Mapping[str, Any]) -> Dict[str, Any]:
        return {'fsName': filesystem.get('fs'), 'usePercent': filesystem.get('use')}

    def _graphics_metrics(self, controller: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Métriques d'une carte, None si le constructeur ne correspond pas"""
        if not self.matches_vendor(controller):
            return None
        return {
            'model': controller.get('model'),
            'vram': controller.get('vram'),
            'fanspeed': controller.get('fanSpeed'),
            'utilizationMemory': controller.get('utilizationMemory'),
            'memoryUsed': controller.get('memoryUsed'),
            'memoryFree': controller.get('memoryFree'),
            'powerDraw': controller.get('powerDraw'),
            'powerLimit': controller.get('powerLimit'),
            'temperatureGpu': controller.get('temperatureGpu'),
        }

    def matches_vendor(self, controller: Mapping[str, Any]) -> bool:
        vendor = controller.get('vendor')
        return isinstance(vendor, str) and self.gpu_vendor in vendor


def flatten(groups: List[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Fusionne une liste de groupes [{nom: valeur}, ...] en un seul dictionnaire

    En cas de doublon, le dernier groupe l'emporte.
    """
    merged = {}
    for group in groups:
        merged.update(group)
    return merged


def entity_pairs(shaped: ShapedSample) -> List[Tuple[str, ShapedEntity]]:
    """
    Associe chaque entité au nom de sa mesure

    Returns:
        list: [(mesure, entité), ...] dans l'ordre système, GPU, disques
    """
    pairs = [('system', shaped.system)]
    pairs.extend(('graphics', g) for g in shaped.graphics)
    pairs.extend(('fs', f) for f in shaped.fs_size)
    return pairs
