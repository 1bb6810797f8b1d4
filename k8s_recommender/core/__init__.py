"""
Core module for the K8s Recommender.

This module contains cluster discovery, the decision oracle boundary, the
recommendation stages and the session workflow that drives them.
"""
