"""
Collecteur d'inventaire système pour l'agent de télémétrie

Ce module fournit les groupes de métriques bruts consommés par l'agent :
- uuid : identifiants de la machine
- currentLoad : charge CPU
- mem : mémoire (en octets)
- fsSize : occupation des systèmes de fichiers
- graphics : cartes graphiques (statistiques NVIDIA via nvidia-smi)
"""

import os
import uuid
from typing import Any, Dict, List, Optional

import psutil

from .base import GroupCollector


NVIDIA_QUERY_FIELDS = [
    ('model', 'name'),
    ('vram', 'memory.total'),
    ('fanSpeed', 'fan.speed'),
    ('utilizationGpu', 'utilization.gpu'),
    ('utilizationMemory', 'utilization.memory'),
    ('memoryUsed', 'memory.used'),
    ('memoryFree', 'memory.free'),
    ('powerDraw', 'power.draw'),
    ('powerLimit', 'power.limit'),
    ('temperatureGpu', 'temperature.gpu'),
    ('busAddress', 'pci.bus_id'),
]

LSPCI_DISPLAY_CLASSES = ('VGA compatible controller', '3D controller', 'Display controller')

KNOWN_VENDORS = {
    'nvidia': 'NVIDIA',
    'amd': 'AMD',
    'ati ': 'AMD',
    'intel': 'Intel',
}


class InventoryCollector(GroupCollector):
    """
    Collecteur des métriques système brutes

    Utilise principalement psutil, et nvidia-smi/lspci pour
    les cartes graphiques.
    """

    def __init__(self, config, logger):
        super().__init__(config, logger)

        # Le premier appel non bloquant de cpu_percent renvoie toujours 0.0
        psutil.cpu_percent(interval=None)

    def register_groups(self):
        return {
            'uuid': self._collect_uuid,
            'currentLoad': self._collect_current_load,
            'mem': self._collect_memory,
            'fsSize': self._collect_fs_size,
            'graphics': self._collect_graphics,
        }

    def _collect_uuid(self) -> Dict[str, Any]:
        machine_id = self._read_machine_id()
        mac_int = uuid.getnode()
        mac_hex = f"{mac_int:012x}"

        macs = []
        for name, addresses in psutil.net_if_addrs().items():
            for address in addresses:
                if address.family == psutil.AF_LINK and address.address and name != 'lo':
                    macs.append(address.address)

        return {
            'os': machine_id or mac_hex,
            'hardware': ":".join(mac_hex[i:i + 2] for i in range(0, 12, 2)),
            'macs': sorted(set(macs))
        }

    def _read_machine_id(self) -> Optional[str]:
        for path in ('/etc/machine-id', '/var/lib/dbus/machine-id'):
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    return f.read().strip() or None
            except OSError:
                continue
        return None

    def _collect_current_load(self) -> Dict[str, Any]:
        """
        Charge CPU courante (pourcentage depuis le dernier appel)
        et charge moyenne sur une minute rapportée au nombre de cœurs
        """
        load = {
            'currentLoad': psutil.cpu_percent(interval=None),
            'avgLoad': None
        }

        times = psutil.cpu_times_percent(interval=None)
        load['currentLoadUser'] = times.user
        load['currentLoadSystem'] = times.system

        if hasattr(os, 'getloadavg'):
            cpus = psutil.cpu_count(logical=True) or 1
            load['avgLoad'] = round(os.getloadavg()[0] / cpus, 2)

        return load

    def _collect_memory(self) -> Dict[str, Any]:
        virtual_mem = psutil.virtual_memory()
        swap_mem = psutil.swap_memory()

        return {
            'total': virtual_mem.total,
            'free': virtual_mem.free,
            'used': virtual_mem.used,
            # 'active' n'existe que sous Linux et macOS
            'active': getattr(virtual_mem, 'active', virtual_mem.used),
            'available': virtual_mem.available,
            'swaptotal': swap_mem.total,
            'swapused': swap_mem.used
        }

    def _collect_fs_size(self) -> List[Dict[str, Any]]:
        filesystems = []

        for partition in psutil.disk_partitions(all=False):
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except OSError as e:
                # Partition non accessible (lecteur vide, droits insuffisants)
                self.logger.debug(f"Partition ignorée {partition.mountpoint}: {e}")
                continue

            filesystems.append({
                'fs': partition.device,
                'type': partition.fstype,
                'size': usage.total,
                'used': usage.used,
                'available': usage.free,
                'use': usage.percent,
                'mount': partition.mountpoint
            })

        return filesystems

    def _collect_graphics(self) -> Dict[str, Any]:
        nvidia = self._get_nvidia_controllers()
        others = [
            c for c in self._get_lspci_controllers()
            if not (nvidia and c['vendor'] == 'NVIDIA')
        ]
        return {'controllers': nvidia + others}

    def _get_nvidia_controllers(self) -> List[Dict[str, Any]]:
        """
        Cartes NVIDIA et leurs statistiques via nvidia-smi

        Returns:
            list: Une entrée par carte, vide si nvidia-smi est absent
        """
        query = ','.join(name for _, name in NVIDIA_QUERY_FIELDS)
        output = self._execute_command([
            'nvidia-smi',
            f'--query-gpu={query}',
            '--format=csv,noheader,nounits'
        ])
        if not output:
            return []

        controllers = []
        for line in output.splitlines():
            values = [v.strip() for v in line.split(',')]
            if len(values) != len(NVIDIA_QUERY_FIELDS):
                self.logger.debug(f"Ligne nvidia-smi ignorée: {line}")
                continue

            controller = {'vendor': 'NVIDIA'}
            for (key, _), value in zip(NVIDIA_QUERY_FIELDS, values):
                if key in ('model', 'busAddress'):
                    controller[key] = self._clean_string(value)
                else:
                    controller[key] = parse_number(value)
            controllers.append(controller)

        return controllers

    def _get_lspci_controllers(self) -> List[Dict[str, Any]]:
        output = self._execute_command(['lspci'])
        if not output:
            return []

        controllers = []
        for line in output.splitlines():
            parts = line.split(': ', 1)
            if len(parts) < 2 or not any(cls in parts[0] for cls in LSPCI_DISPLAY_CLASSES):
                continue

            name = self._clean_string(parts[1])
            controllers.append({
                'vendor': guess_vendor(name),
                'model': name,
                'busAddress': parts[0].split(' ', 1)[0]
            })

        return controllers


def parse_number(value: str) -> Optional[float]:
    """
    Convertit une valeur nvidia-smi en nombre

    Returns:
        float: Valeur numérique, None pour "[N/A]", "[Not Supported]"...
    """
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def guess_vendor(name: str) -> str:
    """Déduit le constructeur à partir du libellé lspci"""
    name_lower = f"{name.lower()} "
    for keyword, vendor in KNOWN_VENDORS.items():
        if keyword in name_lower:
            return vendor
    return 'Unknown'
