"""Sensitivity analysis over the control-arm ADA allocation"""
