"""
Module Core - Composants principaux de l'agent de télémétrie

Ce module contient les fonctionnalités de base de l'agent :
- Configuration et logging
- Session et token InfluxDB
- Mise en forme des métriques
- Tampon d'écriture et planification des collectes
"""
