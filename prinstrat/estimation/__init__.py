"""Principal stratum estimators"""
