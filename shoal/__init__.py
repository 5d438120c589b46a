"""
Shoal - Plugin Metrics Agent

Runs check and metric plugin commands on an interval and ships the results
to CloudWatch and Mackerel.
"""

__version__ = "1.0.0"
