"""
Package des collecteurs de données pour l'agent de télémétrie

Ce package contient :
- Le socle des collecteurs par groupes de métriques
- Le collecteur d'inventaire système (CPU, mémoire, disques, GPU)
"""
