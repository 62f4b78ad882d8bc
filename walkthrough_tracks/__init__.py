"""Utilities for analysing recorded walkthrough trajectories.

This package provides modular building blocks to read raw walkthrough tables,
build keyed trajectories, estimate a spatial density heatmap, and summarise
each trajectory against the shortest navigable path.
"""
