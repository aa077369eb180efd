"""Simulation, configuration and Cox fitting primitives"""
